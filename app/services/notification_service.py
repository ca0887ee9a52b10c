"""Lifecycle notification hooks.

The lifecycle calls a NotificationGateway at fixed transition points. The
default gateway hands the work to the Celery notifications queue; failures to
enqueue are logged and never reach the caller. Lifecycle notifications are held
on the database session and only leave once its transaction commits.
"""

from uuid import UUID

import structlog
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.models.enums import EmailEvent

logger = structlog.get_logger()


class NotificationGateway:
    def enqueue(
        self,
        shortlist_id: UUID,
        event: EmailEvent,
        context: dict | None = None,
        sent_by: UUID | None = None,
        is_resend: bool = False,
    ) -> None:
        raise NotImplementedError

    def notify(
        self,
        shortlist_id: UUID,
        event: EmailEvent,
        context: dict | None = None,
        sent_by: UUID | None = None,
        is_resend: bool = False,
    ) -> bool:
        """Fire a lifecycle notification. Returns False if it could not be queued."""
        try:
            self.enqueue(shortlist_id, event, context=context, sent_by=sent_by, is_resend=is_resend)
        except Exception as e:
            logger.error(
                "notification_enqueue_failed",
                shortlist_id=str(shortlist_id),
                email_event=event.value,
                error=str(e),
            )
            return False
        logger.info("notification_queued", shortlist_id=str(shortlist_id), email_event=event.value)
        return True


class CeleryNotificationGateway(NotificationGateway):
    def enqueue(self, shortlist_id, event, context=None, sent_by=None, is_resend=False):
        from app.workers.notifications import send_shortlist_email

        send_shortlist_email.delay(
            str(shortlist_id),
            event.value,
            context or {},
            str(sent_by) if sent_by else None,
            is_resend,
        )


_gateway: NotificationGateway = CeleryNotificationGateway()


def get_notifier() -> NotificationGateway:
    return _gateway


_PENDING_KEY = "pending_notifications"


def notify_on_commit(
    db: AsyncSession,
    gateway: NotificationGateway,
    shortlist_id: UUID,
    event: EmailEvent,
    context: dict | None = None,
) -> None:
    """Hold a notification until the session commits; a rollback drops it."""
    db.sync_session.info.setdefault(_PENDING_KEY, []).append((gateway, shortlist_id, event, context))


@sa_event.listens_for(Session, "after_commit")
def _send_pending(session):
    # Also fired when a SAVEPOINT is released
    if session.in_nested_transaction():
        return
    for gateway, shortlist_id, event, context in session.info.pop(_PENDING_KEY, []):
        gateway.notify(shortlist_id, event, context=context)


@sa_event.listens_for(Session, "after_rollback")
def _drop_pending(session):
    if session.in_nested_transaction():
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info("notifications_dropped_on_rollback", count=len(dropped))
