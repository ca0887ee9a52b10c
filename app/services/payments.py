"""Payment authorization, capture and release, kept in step with the shortlist lifecycle.

Every status change goes through a guarded UPDATE on the expected current
status and leaves a PaymentAuditEntry behind. Provider failures move the
payment to ``failed`` and are committed before the error is returned, so the
record survives the HTTP layer rolling back the request transaction.
"""

from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.models.company import Company
from app.models.enums import (
    PaymentStatus,
    ShortlistEventType,
    ShortlistOutcome,
    ShortlistStatus,
)
from app.models.payment import Payment
from app.models.shortlist import ShortlistRequest
from app.services.audit import SYSTEM_ACTOR, Actor, record_event, record_payment_audit
from app.services.locking import guarded_status_update, lock_shortlist
from app.services.pricing import apply_discount
from app.services.providers.base import AuthorizationRequest
from app.services.providers.registry import available_providers, get_provider
from app.services.results import ServiceResult
from app.services.transitions import (
    ACTIVE_PAYMENT_STATUSES,
    PAYMENT_TRANSITIONS,
    validate_payment_transition,
    validate_system_transition,
)

logger = structlog.get_logger()

CENT = Decimal("0.01")

FINALIZE_TARGETS = {
    ShortlistOutcome.DELIVERED: PaymentStatus.CAPTURED,
    ShortlistOutcome.PARTIAL: PaymentStatus.PARTIAL,
    ShortlistOutcome.NO_MATCH: PaymentStatus.RELEASED,
    ShortlistOutcome.CANCELLED: PaymentStatus.RELEASED,
}


def payment_snapshot(payment: Payment) -> dict:
    return {
        "payment_id": str(payment.id),
        "provider": payment.provider,
        "provider_reference": payment.provider_reference,
        "status": PaymentStatus(payment.status).value,
        "amount_authorized": str(payment.amount_authorized),
        "amount_captured": str(payment.amount_captured),
        "currency": payment.currency,
    }


async def get_payment(db: AsyncSession, payment_id: UUID, for_update: bool = False) -> Payment | None:
    query = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalar_one_or_none()


async def _lock_payment(db: AsyncSession, payment_id: UUID) -> Payment | None:
    """Serialise with the owning shortlist, then re-read the payment."""
    payment = await get_payment(db, payment_id)
    if payment is None:
        return None
    await lock_shortlist(db, payment.shortlist_request_id)
    return await get_payment(db, payment_id, for_update=True)


async def get_active_payment(db: AsyncSession, shortlist: ShortlistRequest) -> Payment | None:
    if shortlist.payment_id is None:
        return None
    payment = await get_payment(db, shortlist.payment_id, for_update=True)
    if payment is None or PaymentStatus(payment.status) not in ACTIVE_PAYMENT_STATUSES:
        return None
    return payment


async def latest_payment(db: AsyncSession, shortlist_id: UUID) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(Payment.shortlist_request_id == shortlist_id)
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_payments(db: AsyncSession, shortlist_id: UUID) -> list[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.shortlist_request_id == shortlist_id)
        .order_by(Payment.created_at)
    )
    return list(result.scalars().all())


async def find_by_reference(db: AsyncSession, provider: str, reference: str) -> Payment | None:
    result = await db.execute(
        select(Payment).where(Payment.provider == provider, Payment.provider_reference == reference)
    )
    return result.scalar_one_or_none()


async def _transition(
    db: AsyncSession,
    payment: Payment,
    target: PaymentStatus,
    action: str,
    context: dict | None = None,
    **values,
) -> bool:
    previous = PaymentStatus(payment.status)
    moved = await guarded_status_update(db, Payment, payment.id, previous, target, **values)
    await db.refresh(payment)
    if not moved:
        logger.warning(
            "payment_transition_lost_race",
            payment_id=str(payment.id),
            expected=previous.value,
            current=PaymentStatus(payment.status).value,
            target=target.value,
        )
        return False
    await record_payment_audit(
        db,
        payment_id=payment.id,
        previous_status=previous,
        new_status=target,
        action=action,
        context=context,
    )
    logger.info(
        "payment_transition",
        payment_id=str(payment.id),
        previous_status=previous.value,
        new_status=target.value,
        action=action,
    )
    return True


async def _fail(db: AsyncSession, payment: Payment, action: str, message: str, context: dict | None = None) -> ServiceResult:
    """Mark the payment failed, persist it and report a provider error."""
    context = {**(context or {}), "error": message}
    await _transition(db, payment, PaymentStatus.FAILED, action, context, error_message=message)
    await db.commit()
    logger.error("payment_provider_failure", payment_id=str(payment.id), action=action, error=message)
    return ServiceResult.provider_error(message, data=payment)


async def initiate_authorization(
    db: AsyncSession,
    shortlist: ShortlistRequest,
    provider_name: str,
    actor: Actor = SYSTEM_ACTOR,
) -> ServiceResult:
    """Create a payment for the approved price and place a hold with the provider.

    The caller holds the shortlist lock and has checked its status.
    """
    provider = get_provider(provider_name)
    if provider is None:
        return ServiceResult.validation(
            f"Unknown payment provider '{provider_name}'. Available: {', '.join(available_providers())}"
        )
    amount = shortlist.approved_price
    if amount is None or Decimal(amount) <= 0:
        return ServiceResult.validation("Shortlist has no approved price to authorize")

    company = await db.get(Company, shortlist.company_id)
    payment = Payment(
        company_id=shortlist.company_id,
        shortlist_request_id=shortlist.id,
        provider=provider.name,
        currency=shortlist.price_currency,
        amount_authorized=Decimal(amount),
        amount_captured=Decimal("0"),
        status=PaymentStatus.PENDING_APPROVAL,
    )
    db.add(payment)
    await db.flush()
    await record_payment_audit(
        db,
        payment_id=payment.id,
        previous_status=None,
        new_status=PaymentStatus.PENDING_APPROVAL,
        action="authorization_initiated",
        context={"provider": provider.name, "amount": str(amount), "actor_type": actor.type.value},
    )

    result = await provider.authorize(
        AuthorizationRequest(
            company_id=shortlist.company_id,
            shortlist_request_id=shortlist.id,
            amount=Decimal(amount),
            currency=shortlist.price_currency,
            customer_id=company.stripe_customer_id if company and provider.name == "stripe" else None,
            customer_email=company.email if company else None,
            description=f"Shortlist: {shortlist.role_title}",
        )
    )
    if not result.success:
        return await _fail(
            db,
            payment,
            "authorization_failed",
            result.error_message or "Authorization failed",
            {"error_code": result.error_code},
        )

    payment.provider_reference = result.provider_reference
    payment.client_handle = result.client_handle
    shortlist.payment_id = payment.id
    await db.flush()
    await record_payment_audit(
        db,
        payment_id=payment.id,
        previous_status=PaymentStatus.PENDING_APPROVAL,
        new_status=PaymentStatus.PENDING_APPROVAL,
        action="authorization_requested",
        context={"provider_reference": result.provider_reference, "provider_status": result.status},
    )
    logger.info(
        "authorization_initiated",
        shortlist_id=str(shortlist.id),
        payment_id=str(payment.id),
        provider=provider.name,
        amount=str(amount),
    )
    return ServiceResult.ok(payment)


async def confirm_authorization(
    db: AsyncSession,
    payment_id: UUID,
    verify_with_provider: bool = True,
    actor: Actor = SYSTEM_ACTOR,
    source: str = "api",
) -> ServiceResult:
    """Move pending_approval -> authorized and the shortlist pricing_approved -> authorized.

    Idempotent: a payment that is no longer pending is reported as-is.
    """
    payment = await _lock_payment(db, payment_id)
    if payment is None:
        return ServiceResult.not_found("Payment not found")

    if PaymentStatus(payment.status) != PaymentStatus.PENDING_APPROVAL:
        logger.info(
            "authorization_confirm_noop",
            payment_id=str(payment.id),
            status=PaymentStatus(payment.status).value,
            source=source,
        )
        return ServiceResult.ok(payment, message=f"Payment already {PaymentStatus(payment.status).value}")

    if verify_with_provider:
        provider = get_provider(payment.provider)
        if provider is None or not payment.provider_reference:
            return ServiceResult.validation("Payment cannot be verified with its provider")
        if not await provider.is_authorization_valid(payment.provider_reference):
            return ServiceResult.validation("Authorization has not been completed with the provider")

    moved = await _transition(
        db,
        payment,
        PaymentStatus.AUTHORIZED,
        "authorization_confirmed",
        {"source": source},
        authorized_at=utcnow(),
    )
    if not moved:
        # Someone else confirmed (or failed) it first
        return ServiceResult.ok(payment, message=f"Payment already {PaymentStatus(payment.status).value}")

    shortlist = await db.get(
        ShortlistRequest, payment.shortlist_request_id, with_for_update=True, populate_existing=True
    )
    if shortlist is not None and shortlist.payment_id == payment.id:
        advanced = await guarded_status_update(
            db,
            ShortlistRequest,
            shortlist.id,
            ShortlistStatus.PRICING_APPROVED,
            ShortlistStatus.AUTHORIZED,
        )
        if advanced:
            await record_event(
                db,
                shortlist_id=shortlist.id,
                event_type=ShortlistEventType.PAYMENT_AUTHORIZED,
                previous_status=ShortlistStatus.PRICING_APPROVED,
                new_status=ShortlistStatus.AUTHORIZED,
                actor=actor,
                metadata={**payment_snapshot(payment), "source": source},
            )
    return ServiceResult.ok(payment)


async def fail_pending_authorization(db: AsyncSession, payment_id: UUID, message: str) -> ServiceResult:
    """Provider reported the hold could not be placed."""
    payment = await _lock_payment(db, payment_id)
    if payment is None:
        return ServiceResult.not_found("Payment not found")
    if PaymentStatus(payment.status) != PaymentStatus.PENDING_APPROVAL:
        return ServiceResult.ok(payment, message=f"Payment already {PaymentStatus(payment.status).value}")
    await _transition(
        db,
        payment,
        PaymentStatus.FAILED,
        "authorization_failed",
        {"error": message, "source": "webhook"},
        error_message=message,
    )
    return ServiceResult.ok(payment)


def _final_partial_amount(
    payment: Payment, override_amount: Decimal | None, discount_percent: Decimal | None
) -> Decimal | None:
    authorized = Decimal(payment.amount_authorized)
    if override_amount is not None:
        return Decimal(override_amount).quantize(CENT)
    if discount_percent is None:
        return None
    return apply_discount(authorized, Decimal(discount_percent))


async def finalize_payment(
    db: AsyncSession,
    payment: Payment,
    outcome: ShortlistOutcome,
    override_amount: Decimal | None = None,
    discount_percent: Decimal | None = None,
    actor: Actor = SYSTEM_ACTOR,
) -> ServiceResult:
    """Capture, partially capture or release according to the shortlist outcome.

    Only legal from ``authorized``.
    """
    current = PaymentStatus(payment.status)
    if current != PaymentStatus.AUTHORIZED:
        target = FINALIZE_TARGETS.get(ShortlistOutcome(outcome), PaymentStatus.CAPTURED)
        result = ServiceResult.illegal(current, target, PAYMENT_TRANSITIONS[current])
        result.message = f"Payment must be authorized to finalize (currently {current.value})"
        return result

    provider = get_provider(payment.provider)
    if provider is None:
        return ServiceResult.validation(f"Unknown payment provider '{payment.provider}'")

    outcome = ShortlistOutcome(outcome)
    authorized = Decimal(payment.amount_authorized)
    base_context = {"outcome": outcome.value, "actor_type": actor.type.value}

    if outcome == ShortlistOutcome.DELIVERED:
        response = await provider.capture_full(payment.provider_reference, authorized)
        if not response.success:
            return await _fail(db, payment, "capture_failed", response.error_message or "Capture failed", base_context)
        captured = min(Decimal(response.amount_captured or authorized), authorized)
        target, action, event_type = PaymentStatus.CAPTURED, "captured", ShortlistEventType.PAYMENT_CAPTURED

    elif outcome == ShortlistOutcome.PARTIAL:
        final_amount = _final_partial_amount(payment, override_amount, discount_percent)
        if final_amount is None:
            return ServiceResult.validation("Partial outcome needs an override amount or a discount")
        if final_amount <= 0 or final_amount > authorized:
            return ServiceResult.validation(
                f"Partial capture amount must be between 0 and {authorized} (got {final_amount})"
            )
        response = await provider.capture_partial(payment.provider_reference, authorized, final_amount)
        if not response.success:
            return await _fail(
                db,
                payment,
                "partial_capture_failed",
                response.error_message or "Partial capture failed",
                {**base_context, "final_amount": str(final_amount)},
            )
        captured = min(Decimal(response.amount_captured or final_amount), authorized)
        target, action, event_type = PaymentStatus.PARTIAL, "partial_captured", ShortlistEventType.PAYMENT_CAPTURED

    elif outcome in (ShortlistOutcome.NO_MATCH, ShortlistOutcome.CANCELLED):
        response = await provider.release(payment.provider_reference)
        if not response.success:
            return await _fail(db, payment, "release_failed", response.error_message or "Release failed", base_context)
        captured = Decimal("0")
        target, action, event_type = PaymentStatus.RELEASED, "released", ShortlistEventType.PAYMENT_RELEASED

    else:
        return ServiceResult.validation(f"Outcome {outcome.value} does not finalize a payment")

    now = utcnow()
    values = {"amount_captured": captured.quantize(CENT)}
    if target == PaymentStatus.RELEASED:
        values["released_at"] = now
    else:
        values["captured_at"] = now

    moved = await _transition(
        db, payment, target, action, {**base_context, "amount_captured": str(captured)}, **values
    )
    if not moved:
        return ServiceResult.conflict("Payment changed while it was being finalized")

    await record_event(
        db,
        shortlist_id=payment.shortlist_request_id,
        event_type=event_type,
        actor=actor,
        metadata=payment_snapshot(payment),
    )
    return ServiceResult.ok(payment)


async def release_payment(db: AsyncSession, payment: Payment, actor: Actor = SYSTEM_ACTOR) -> ServiceResult:
    return await finalize_payment(db, payment, ShortlistOutcome.NO_MATCH, actor=actor)


async def expire_authorization(
    db: AsyncSession, payment_id: UUID, reason: str = "expired", actor: Actor = SYSTEM_ACTOR
) -> ServiceResult:
    """authorized -> expired. The shortlist drops back to pricing_approved for re-authorization."""
    payment = await _lock_payment(db, payment_id)
    if payment is None:
        return ServiceResult.not_found("Payment not found")
    current = PaymentStatus(payment.status)
    check = validate_payment_transition(current, PaymentStatus.EXPIRED)
    if not check.success:
        return check

    moved = await _transition(
        db, payment, PaymentStatus.EXPIRED, "authorization_expired", {"reason": reason}, expired_at=utcnow()
    )
    if not moved:
        return ServiceResult.conflict("Payment changed while it was being expired")

    shortlist = await db.get(
        ShortlistRequest, payment.shortlist_request_id, with_for_update=True, populate_existing=True
    )
    if (
        shortlist is not None
        and shortlist.payment_id == payment.id
        and validate_system_transition(shortlist.status, ShortlistStatus.PRICING_APPROVED).success
    ):
        reverted = await guarded_status_update(
            db,
            ShortlistRequest,
            shortlist.id,
            ShortlistStatus.AUTHORIZED,
            ShortlistStatus.PRICING_APPROVED,
            payment_id=None,
        )
        if reverted:
            await record_event(
                db,
                shortlist_id=shortlist.id,
                event_type=ShortlistEventType.AUTHORIZATION_EXPIRED,
                previous_status=ShortlistStatus.AUTHORIZED,
                new_status=ShortlistStatus.PRICING_APPROVED,
                actor=actor,
                metadata={**payment_snapshot(payment), "reason": reason},
            )
    logger.info("authorization_expired", payment_id=str(payment.id), reason=reason)
    return ServiceResult.ok(payment)


async def abandon_pending_authorization(
    db: AsyncSession, payment: Payment, reason: str, actor: Actor = SYSTEM_ACTOR
) -> ServiceResult:
    """Close out a hold the payer never completed (shortlist cancelled first)."""
    if PaymentStatus(payment.status) != PaymentStatus.PENDING_APPROVAL:
        return ServiceResult.ok(payment)
    provider = get_provider(payment.provider)
    if provider is not None and payment.provider_reference:
        response = await provider.release(payment.provider_reference)
        if not response.success:
            logger.warning(
                "abandoned_authorization_release_failed",
                payment_id=str(payment.id),
                error=response.error_message,
            )
    await _transition(
        db,
        payment,
        PaymentStatus.FAILED,
        "authorization_abandoned",
        {"reason": reason, "actor_type": actor.type.value},
        error_message=f"Abandoned: {reason}",
    )
    return ServiceResult.ok(payment)
