"""Inbound provider webhooks: the asynchronous authorization-confirmation path."""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import PaymentStatus
from app.services import payments
from app.services.results import ServiceResult

logger = structlog.get_logger()

STRIPE_EVENTS = (
    "payment_intent.amount_capturable_updated",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
)


async def handle_stripe_event(db: AsyncSession, event: dict) -> ServiceResult:
    """Apply a verified Stripe event. Unknown events and payments are acknowledged and ignored."""
    event_type = event.get("type")
    if event_type not in STRIPE_EVENTS:
        logger.info("stripe_event_ignored", event_id=event.get("id"), event_type=event_type)
        return ServiceResult.ok(message="ignored")

    intent = (event.get("data") or {}).get("object") or {}
    payment = await payments.find_by_reference(db, "stripe", intent.get("id"))
    if payment is None:
        logger.warning(
            "stripe_event_unknown_payment",
            event_id=event.get("id"),
            event_type=event_type,
            provider_reference=intent.get("id"),
        )
        return ServiceResult.ok(message="unknown payment")

    logger.info(
        "stripe_event_received",
        event_id=event.get("id"),
        event_type=event_type,
        payment_id=str(payment.id),
    )

    if event_type == "payment_intent.amount_capturable_updated":
        if intent.get("status") != "requires_capture":
            return ServiceResult.ok(message="not capturable")
        return await payments.confirm_authorization(db, payment.id, verify_with_provider=False, source="webhook")

    if event_type == "payment_intent.payment_failed":
        error = intent.get("last_payment_error") or {}
        return await payments.fail_pending_authorization(
            db, payment.id, error.get("message") or "Payment failed at provider"
        )

    # payment_intent.canceled
    if PaymentStatus(payment.status) == PaymentStatus.AUTHORIZED:
        return await payments.expire_authorization(
            db, payment.id, reason=intent.get("cancellation_reason") or "canceled_by_provider"
        )
    if PaymentStatus(payment.status) == PaymentStatus.PENDING_APPROVAL:
        return await payments.fail_pending_authorization(db, payment.id, "Payment intent canceled")
    return ServiceResult.ok(payment)
