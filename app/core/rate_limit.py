from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import get_settings
from app.core.security import decode_token

settings = get_settings()


def identity_or_address(request: Request) -> str:
    """Bucket authenticated callers by company (or admin subject), anonymous ones by IP."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        payload = decode_token(auth[7:])
        if payload:
            return f"company:{payload['company_id']}" if payload.get("company_id") else f"user:{payload.get('sub')}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=identity_or_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=["60/minute"],
)
