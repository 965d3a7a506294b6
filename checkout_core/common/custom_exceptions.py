from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from checkout_core import logger
from checkout_core.common.utils import build_error, json_error
from checkout_core.common.constants import request_id_ctx


class CheckoutEngineError(Exception):
    """Base for engine failures that carry a stable code and a retry hint."""

    code = "CHECKOUT_ERROR"
    retryable = False
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.code.lower()
        self.details = details or {}
        super().__init__(self.message)


class InsufficientStock(CheckoutEngineError):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, shortfalls: Optional[List[Dict[str, Any]]] = None, message: Optional[str] = None):
        self.shortfalls = shortfalls or []
        super().__init__(message or "insufficient stock", details={"insufficient": self.shortfalls})


class AmountMismatch(CheckoutEngineError):
    code = "amount_mismatch"
    status_code = status.HTTP_409_CONFLICT


class DuplicatePayment(CheckoutEngineError):
    code = "already_processed"
    status_code = status.HTTP_200_OK

    def __init__(self, order_id: Optional[int] = None, message: Optional[str] = None):
        self.order_id = order_id
        super().__init__(message or "payment already processed", details={"order_id": order_id})


class ProviderUnavailable(CheckoutEngineError):
    code = "provider_unavailable"
    retryable = True
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class SessionExpired(CheckoutEngineError):
    code = "session_expired"
    status_code = status.HTTP_410_GONE


class SessionAlreadyProcessed(CheckoutEngineError):
    code = "session_already_processed"
    status_code = status.HTTP_409_CONFLICT


class InternalStoreError(CheckoutEngineError):
    code = "internal_error"
    retryable = True
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class SessionNotFound(CheckoutEngineError):
    code = "session_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PaymentNotFound(CheckoutEngineError):
    code = "payment_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidCheckoutInput(CheckoutEngineError):
    code = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message": "invalid request"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message": exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def engine_exception_handler(request: Request, exc: CheckoutEngineError):
    rid = request_id_ctx.get(None)
    logger.info(
        "engine.error",
        extra={"code": exc.code, "retryable": exc.retryable, "path": request.url.path, "request_id": rid},
    )
    details = {"message": exc.message, **exc.details}
    headers = {"Retry-After": "5"} if exc.retryable else None
    payload = build_error(code=exc.code, details=details, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=headers)


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception,  # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )

    app.add_exception_handler(
        CheckoutEngineError,
        engine_exception_handler
    )
