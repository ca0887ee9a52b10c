import asyncio
from datetime import timedelta

import structlog
from celery import shared_task

logger = structlog.get_logger()


async def scan_stale_authorizations(session_factory=None, now=None) -> dict:
    """Expire authorizations past their TTL or no longer valid at the provider."""
    from sqlalchemy import select

    from app.core.clock import as_utc, utcnow
    from app.core.config import get_settings
    from app.core.database import async_session, engine
    from app.models.enums import PaymentStatus
    from app.models.payment import Payment
    from app.services.payments import expire_authorization
    from app.services.providers.registry import get_provider

    settings = get_settings()
    now = now or utcnow()
    sessions = session_factory or async_session
    cutoff = now - timedelta(days=settings.AUTHORIZATION_TTL_DAYS)
    expired = 0
    checked = 0

    try:
        async with sessions() as db:
            result = await db.execute(
                select(Payment.id, Payment.provider, Payment.provider_reference, Payment.authorized_at).where(
                    Payment.status == PaymentStatus.AUTHORIZED
                )
            )
            candidates = result.all()

        for payment_id, provider_name, reference, authorized_at in candidates:
            checked += 1
            authorized_at = as_utc(authorized_at)
            if authorized_at is not None and authorized_at <= cutoff:
                reason = "ttl_elapsed"
            else:
                provider = get_provider(provider_name)
                if provider is None or not reference or await provider.is_authorization_valid(reference):
                    continue
                reason = "invalid_at_provider"

            async with sessions() as db:
                outcome = await expire_authorization(db, payment_id, reason=reason)
                await db.commit()
            if outcome.success:
                expired += 1
            else:
                logger.info("authorization_expiry_skipped", payment_id=str(payment_id), reason=outcome.message)
    finally:
        if session_factory is None:
            # Pooled asyncpg connections are bound to this event loop
            await engine.dispose()

    logger.info("stale_authorizations_scanned", checked=checked, expired=expired)
    return {"checked": checked, "expired": expired}


@shared_task(name="payments.expire_stale_authorizations")
def expire_stale_authorizations():
    return asyncio.run(scan_stale_authorizations())
