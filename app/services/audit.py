"""Append-only audit trail: shortlist lifecycle events and payment audit entries.

Writes are fire-and-forget. Each one runs in a SAVEPOINT so a failed insert
never poisons the caller's transaction, and failures are logged, never raised.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ActorType, PaymentStatus, ShortlistEventType, ShortlistStatus
from app.models.payment import PaymentAuditEntry
from app.models.shortlist_event import ShortlistEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class Actor:
    id: UUID | None
    type: ActorType


SYSTEM_ACTOR = Actor(id=None, type=ActorType.SYSTEM)


async def record_event(
    db: AsyncSession,
    *,
    shortlist_id: UUID,
    event_type: ShortlistEventType,
    previous_status: ShortlistStatus | None = None,
    new_status: ShortlistStatus | None = None,
    actor: Actor = SYSTEM_ACTOR,
    metadata: dict | None = None,
) -> None:
    """Write a ShortlistEvent. Never raises."""
    try:
        async with db.begin_nested():
            db.add(
                ShortlistEvent(
                    shortlist_request_id=shortlist_id,
                    event_type=event_type,
                    previous_status=previous_status,
                    new_status=new_status,
                    actor_id=actor.id,
                    actor_type=actor.type,
                    metadata_=metadata,
                )
            )
        logger.info(
            "shortlist_event",
            shortlist_id=str(shortlist_id),
            event_type=event_type.value,
            previous_status=previous_status.value if previous_status else None,
            new_status=new_status.value if new_status else None,
            actor_type=actor.type.value,
        )
    except Exception as e:
        logger.error(
            "shortlist_event_write_failed",
            shortlist_id=str(shortlist_id),
            event_type=event_type.value,
            error=str(e),
        )


async def record_payment_audit(
    db: AsyncSession,
    *,
    payment_id: UUID,
    previous_status: PaymentStatus | None,
    new_status: PaymentStatus,
    action: str,
    context: dict | None = None,
) -> None:
    """Write a PaymentAuditEntry. Never raises."""
    try:
        async with db.begin_nested():
            db.add(
                PaymentAuditEntry(
                    payment_id=payment_id,
                    previous_status=previous_status,
                    new_status=new_status,
                    action=action,
                    context=context,
                )
            )
        logger.info(
            "payment_audit",
            payment_id=str(payment_id),
            action=action,
            previous_status=previous_status.value if previous_status else None,
            new_status=new_status.value,
        )
    except Exception as e:
        logger.error(
            "payment_audit_write_failed",
            payment_id=str(payment_id),
            action=action,
            error=str(e),
        )


async def list_events(db: AsyncSession, shortlist_id: UUID) -> list[ShortlistEvent]:
    result = await db.execute(
        select(ShortlistEvent)
        .where(ShortlistEvent.shortlist_request_id == shortlist_id)
        .order_by(ShortlistEvent.created_at, ShortlistEvent.id)
    )
    return list(result.scalars().all())


async def list_payment_audit(db: AsyncSession, payment_ids: list[UUID]) -> list[PaymentAuditEntry]:
    if not payment_ids:
        return []
    result = await db.execute(
        select(PaymentAuditEntry)
        .where(PaymentAuditEntry.payment_id.in_(payment_ids))
        .order_by(PaymentAuditEntry.created_at, PaymentAuditEntry.id)
    )
    return list(result.scalars().all())
