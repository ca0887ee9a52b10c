"""Bearer token verification. Tokens are issued elsewhere; this service only checks them."""

import jwt

from app.core.config import get_settings


def decode_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
