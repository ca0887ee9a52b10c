"""Per-shortlist serialisation of mutating operations."""

from uuid import UUID

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.shortlist import ShortlistRequest


async def lock_shortlist(db: AsyncSession, shortlist_id: UUID) -> None:
    """Take a transaction-scoped advisory lock keyed on the shortlist id.

    PostgreSQL only; other dialects rely on the row lock and the guarded
    status updates.
    """
    if db.bind.dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": f"shortlist:{shortlist_id}"},
    )


async def load_for_update(db: AsyncSession, shortlist_id: UUID) -> ShortlistRequest | None:
    """Lock and re-read the shortlist so checks run against the current row."""
    await lock_shortlist(db, shortlist_id)
    result = await db.execute(
        select(ShortlistRequest)
        .where(ShortlistRequest.id == shortlist_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def guarded_status_update(db: AsyncSession, model, obj_id: UUID, expected, target, **values) -> bool:
    """UPDATE ... SET status = target WHERE id = :id AND status = :expected.

    Returns False when another transaction moved the row first.
    """
    result = await db.execute(
        update(model)
        .where(model.id == obj_id, model.status == expected)
        .values(status=target, **values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1
