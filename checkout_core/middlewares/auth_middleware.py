from typing import Iterable
from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from checkout_core.auth.dependencies import Authentication
from checkout_core.common import logger
from checkout_core.common.utils import build_error, json_error


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Resolves the bearer JWT into request.state.user_identifier for everything outside `paths`."""

    def __init__(self, app, *, paths: Iterable[str]):
        super().__init__(app)
        self.paths = tuple(paths)

    async def dispatch(self, request: Request, call_next):

        path = request.url.path
        if any(path.startswith(p) for p in self.paths):
            return await call_next(request)

        try:
            auth_token = await Authentication()(request)
        except HTTPException as e:
            logger.warning("auth.middleware.failed", extra={
                "reason": e.detail,
                "path": path,
                "method": request.method,
            })
            payload = build_error(code="INVALID_AUTH", details={"message": "Missing or Invalid Auth Headers"})
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        request.state.user_identifier = auth_token.get("sub")
        return await call_next(request)
