from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

CENTS = Decimal("0.01")


def now() -> datetime:
    return datetime.now(timezone.utc)


def money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Quantize to cents, half-up. Floats go through str() to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def build_success(data: Dict[str, Any],
                  trace_id: Optional[str] = None, request_id: Optional[str] = None,) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id,
    }


def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id,
    }


def json_ok(content: Dict[str, Any], status_code: int = 200, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)


def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)
