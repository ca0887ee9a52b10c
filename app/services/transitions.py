"""Status and outcome transition graphs, built once at import time."""

from types import MappingProxyType

from app.models.enums import PaymentStatus, ShortlistOutcome, ShortlistStatus
from app.services.results import ServiceResult

S = ShortlistStatus
P = PaymentStatus

STATUS_TRANSITIONS = MappingProxyType({
    S.SUBMITTED: frozenset({S.PROCESSING, S.PRICING_PENDING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.PRICING_PENDING, S.CANCELLED}),
    S.PRICING_PENDING: frozenset({S.PRICING_APPROVED, S.PROCESSING, S.CANCELLED}),
    S.PRICING_APPROVED: frozenset({S.AUTHORIZED, S.CANCELLED}),
    S.AUTHORIZED: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
})

# Only the authorization-expiry handler may use these.
SYSTEM_STATUS_TRANSITIONS = MappingProxyType({
    S.AUTHORIZED: frozenset({S.PRICING_APPROVED}),
})

OUTCOME_TRANSITIONS = MappingProxyType({
    ShortlistOutcome.PENDING: frozenset({
        ShortlistOutcome.DELIVERED,
        ShortlistOutcome.PARTIAL,
        ShortlistOutcome.NO_MATCH,
        ShortlistOutcome.CANCELLED,
    }),
    ShortlistOutcome.DELIVERED: frozenset(),
    ShortlistOutcome.PARTIAL: frozenset(),
    ShortlistOutcome.NO_MATCH: frozenset(),
    ShortlistOutcome.CANCELLED: frozenset(),
})

PAYMENT_TRANSITIONS = MappingProxyType({
    P.PENDING_APPROVAL: frozenset({P.AUTHORIZED, P.FAILED}),
    P.AUTHORIZED: frozenset({P.CAPTURED, P.PARTIAL, P.RELEASED, P.EXPIRED, P.FAILED}),
    P.CAPTURED: frozenset(),
    P.PARTIAL: frozenset(),
    P.RELEASED: frozenset(),
    P.FAILED: frozenset(),
    P.EXPIRED: frozenset(),
})

ACTIVE_PAYMENT_STATUSES = frozenset({P.PENDING_APPROVAL, P.AUTHORIZED})


def allowed_status_transitions(current: ShortlistStatus) -> frozenset:
    return STATUS_TRANSITIONS.get(ShortlistStatus(current), frozenset())


def can_transition(current: ShortlistStatus, target: ShortlistStatus) -> bool:
    return ShortlistStatus(target) in allowed_status_transitions(current)


def validate_status_transition(current: ShortlistStatus, target: ShortlistStatus) -> ServiceResult:
    current, target = ShortlistStatus(current), ShortlistStatus(target)
    allowed = allowed_status_transitions(current)
    if target not in allowed:
        return ServiceResult.illegal(current, target, allowed)
    return ServiceResult.ok()


def validate_system_transition(current: ShortlistStatus, target: ShortlistStatus) -> ServiceResult:
    current, target = ShortlistStatus(current), ShortlistStatus(target)
    allowed = SYSTEM_STATUS_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        return ServiceResult.illegal(current, target, allowed)
    return ServiceResult.ok()


def validate_outcome_transition(current: ShortlistOutcome, target: ShortlistOutcome) -> ServiceResult:
    current, target = ShortlistOutcome(current), ShortlistOutcome(target)
    allowed = OUTCOME_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        return ServiceResult.illegal(current, target, allowed)
    return ServiceResult.ok()


def validate_payment_transition(current: PaymentStatus, target: PaymentStatus) -> ServiceResult:
    current, target = PaymentStatus(current), PaymentStatus(target)
    allowed = PAYMENT_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        return ServiceResult.illegal(current, target, allowed)
    return ServiceResult.ok()
