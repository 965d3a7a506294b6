import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from jose import jwt, JWTError
from checkout_core.config.settings import config_settings

ACCESS_TOKEN_EXPIRE_MINUTES = 30


def create_access_token(user_id, expires_dur: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_dur)

    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims=payload, key=config_settings.JWT_SECRET, algorithm=config_settings.JWT_ALGO)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify signature and expiry; None when the token is unusable."""
    try:
        return jwt.decode(token, key=config_settings.JWT_SECRET, algorithms=[config_settings.JWT_ALGO])
    except JWTError:
        return None
