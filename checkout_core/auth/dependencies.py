import hmac
from typing import Optional
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from checkout_core.auth.utils import decode_token
from checkout_core.config.settings import config_settings


class Authentication(HTTPBearer):
    def __init__(self, auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> Optional[dict]:
        auth_creds: Optional[HTTPAuthorizationCredentials] = await super().__call__(request)
        if auth_creds is None:
            return None

        decoded_token = decode_token(auth_creds.credentials)
        if not decoded_token or not decoded_token.get("sub"):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token provided.")
        return decoded_token


def get_current_user(request: Request) -> str:
    user_identifier = getattr(request.state, "user_identifier", None)
    if not user_identifier:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    return user_identifier


class CronAuthorization(HTTPBearer):
    """Static bearer token for scheduler-triggered maintenance endpoints."""

    async def __call__(self, request: Request) -> str:
        expected = config_settings.CRON_AUTH_TOKEN
        if not expected:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="cron endpoints are disabled")
        creds = await super().__call__(request)
        if creds is None or not hmac.compare_digest(creds.credentials, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid cron token")
        return creds.credentials


require_cron_token = CronAuthorization(auto_error=False)
