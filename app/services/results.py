"""Tagged result values returned by every business operation."""

import enum
from dataclasses import dataclass, field
from typing import Any


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    ILLEGAL_TRANSITION = "illegal_transition"
    CONFLICT = "conflict"
    PROVIDER = "provider"


@dataclass
class ServiceResult:
    success: bool
    error_kind: ErrorKind | None = None
    message: str | None = None
    data: Any = None
    current: str | None = None
    allowed: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> "ServiceResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **kwargs) -> "ServiceResult":
        return cls(success=False, error_kind=kind, message=message, **kwargs)

    @classmethod
    def validation(cls, message: str) -> "ServiceResult":
        return cls.fail(ErrorKind.VALIDATION, message)

    @classmethod
    def not_found(cls, message: str) -> "ServiceResult":
        return cls.fail(ErrorKind.NOT_FOUND, message)

    @classmethod
    def conflict(cls, message: str) -> "ServiceResult":
        return cls.fail(ErrorKind.CONFLICT, message)

    @classmethod
    def provider_error(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls.fail(ErrorKind.PROVIDER, message, data=data)

    @classmethod
    def illegal(cls, current: enum.Enum, attempted: enum.Enum, allowed) -> "ServiceResult":
        allowed_values = sorted(a.value for a in allowed)
        return cls.fail(
            ErrorKind.ILLEGAL_TRANSITION,
            f"Cannot transition from {current.value} to {attempted.value}",
            current=current.value,
            allowed=allowed_values,
        )
