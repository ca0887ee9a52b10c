"""Canonical enumerations. Stored in the database as their lowercase string values."""

import enum

from sqlalchemy import Enum as SAEnum


class ShortlistStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    PRICING_PENDING = "pricing_pending"
    PRICING_APPROVED = "pricing_approved"
    AUTHORIZED = "authorized"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ShortlistOutcome(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    PARTIAL = "partial"
    NO_MATCH = "no_match"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ShortlistOutcome.PENDING


class PaymentStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    PARTIAL = "partial"
    RELEASED = "released"
    FAILED = "failed"
    EXPIRED = "expired"


class PricingCategory(str, enum.Enum):
    NEW = "new"
    FOLLOW_UP = "follow_up"
    FREE_REGEN = "free_regen"


class SeniorityLevel(enum.IntEnum):
    JUNIOR = 0
    MID = 1
    SENIOR = 2
    LEAD = 3
    PRINCIPAL = 4


class Availability(str, enum.Enum):
    OPEN = "open"
    PASSIVE = "passive"
    NOT_NOW = "not_now"


class RemotePreference(str, enum.Enum):
    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"
    FLEXIBLE = "flexible"


class ActorType(str, enum.Enum):
    SYSTEM = "system"
    ADMIN = "admin"
    COMPANY = "company"


class ShortlistEventType(str, enum.Enum):
    CREATED = "created"
    MATCHING_STARTED = "matching_started"
    MATCHING_COMPLETED = "matching_completed"
    CANDIDATE_REINCLUDED = "candidate_reincluded"
    RANKINGS_UPDATED = "rankings_updated"
    PRICING_SET = "pricing_set"
    PRICING_APPROVED = "pricing_approved"
    PRICING_DECLINED = "pricing_declined"
    PAYMENT_AUTHORIZED = "payment_authorized"
    AUTHORIZATION_EXPIRED = "authorization_expired"
    DELIVERED = "delivered"
    OUTCOME_DECIDED = "outcome_decided"
    PAYMENT_CAPTURED = "payment_captured"
    PAYMENT_RELEASED = "payment_released"
    MARKED_PAID = "marked_paid"
    ADJUSTMENT_SUGGESTED = "adjustment_suggested"
    SEARCH_EXTENDED = "search_extended"
    CANCELLED = "cancelled"


class EmailEvent(str, enum.Enum):
    PRICING_READY = "pricing_ready"
    AUTHORIZATION_REQUIRED = "authorization_required"
    DELIVERED = "delivered"
    NO_MATCH = "no_match"
    ADJUSTMENT_SUGGESTED = "adjustment_suggested"
    SEARCH_EXTENDED = "search_extended"
    COMPLETED = "completed"
    PRICING_DECLINED = "pricing_declined"


def str_enum(enum_cls: type[enum.Enum]) -> SAEnum:
    """VARCHAR-backed enum column type storing member values."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=30,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )
