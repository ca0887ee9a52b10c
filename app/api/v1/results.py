"""Translate ServiceResult failures into HTTP errors."""

from fastapi import HTTPException, status

from app.core.dependencies import CurrentUser
from app.models.enums import ActorType
from app.services.audit import Actor
from app.services.results import ErrorKind, ServiceResult

STATUS_CODES = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ILLEGAL_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.PROVIDER: status.HTTP_502_BAD_GATEWAY,
}


def unwrap(result: ServiceResult):
    """Return the payload of a successful result or raise the matching HTTPException."""
    if result.success:
        return result.data
    detail = {"kind": result.error_kind.value, "message": result.message}
    if result.error_kind == ErrorKind.ILLEGAL_TRANSITION:
        detail["current"] = result.current
        detail["allowed"] = result.allowed
    raise HTTPException(status_code=STATUS_CODES[result.error_kind], detail=detail)


def actor_for(user: CurrentUser) -> Actor:
    return Actor(id=user.id, type=ActorType(user.role))
