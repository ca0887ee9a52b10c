import structlog
from celery import shared_task

from app.models.enums import EmailEvent
from app.services.email import OPERATOR_EVENTS, render_shortlist_email

logger = structlog.get_logger()

RESEND_URL = "https://api.resend.com/emails"


def get_sync_session():
    from sqlalchemy import create_engine
    from sqlalchemy.orm import Session

    from app.core.config import get_settings

    settings = get_settings()
    sync_url = settings.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
    engine = create_engine(sync_url)
    return Session(engine)


def deliver_email(to: str, subject: str, html_body: str) -> None:
    """POST to the Resend API. Raises httpx.HTTPError on transport or HTTP failure."""
    import httpx

    from app.core.config import get_settings

    settings = get_settings()
    response = httpx.post(
        RESEND_URL,
        headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        json={
            "from": settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html_body,
        },
        timeout=10,
    )
    response.raise_for_status()


@shared_task(name="notifications.send_shortlist_email", bind=True, max_retries=3, default_retry_delay=60)
def send_shortlist_email(
    self,
    shortlist_id: str,
    event: str,
    context: dict | None = None,
    sent_by: str | None = None,
    is_resend: bool = False,
):
    """Render and send one lifecycle email, then record it in the shortlist's email history."""
    import httpx

    session = get_sync_session()
    try:
        from uuid import UUID

        from app.core.config import get_settings
        from app.models.company import Company
        from app.models.shortlist import ShortlistRequest
        from app.models.shortlist_email import ShortlistEmail

        settings = get_settings()
        email_event = EmailEvent(event)
        shortlist = session.get(ShortlistRequest, UUID(shortlist_id))
        if not shortlist:
            logger.warning("shortlist_email_skip", shortlist_id=shortlist_id, reason="not_found")
            return {"status": "skipped", "reason": "not_found"}

        company = session.get(Company, shortlist.company_id)
        if email_event in OPERATOR_EVENTS:
            recipient = settings.OPERATOR_EMAIL
        else:
            recipient = company.email if company else None
        if not recipient:
            logger.warning("shortlist_email_skip", shortlist_id=shortlist_id, reason="no_recipient")
            return {"status": "skipped", "reason": "no_recipient"}

        subject, html = render_shortlist_email(
            email_event,
            shortlist.role_title,
            **{
                **(context or {}),
                "company_name": company.name if company else "",
                "shortlist_url": f"{settings.FRONTEND_URL}/shortlists/{shortlist.id}",
                "is_resend": is_resend,
            },
        )

        if not settings.RESEND_API_KEY:
            logger.warning("email_skip_no_api_key", to=recipient, email_event=email_event.value)
            status = "skipped"
        else:
            try:
                deliver_email(recipient, subject, html)
                status = "sent"
            except httpx.HTTPError as e:
                if self.request.retries < self.max_retries:
                    logger.warning(
                        "shortlist_email_retry",
                        shortlist_id=shortlist_id,
                        attempt=self.request.retries + 1,
                        error=str(e),
                    )
                    raise self.retry(exc=e)
                logger.error("shortlist_email_failed", shortlist_id=shortlist_id, error=str(e))
                status = "failed"

        session.add(
            ShortlistEmail(
                shortlist_request_id=shortlist.id,
                event=email_event,
                recipient=recipient,
                subject=subject,
                status=status,
                is_resend=is_resend,
                sent_by=UUID(sent_by) if sent_by else None,
            )
        )
        session.commit()
        logger.info(
            "shortlist_email_recorded",
            shortlist_id=shortlist_id,
            email_event=email_event.value,
            status=status,
            is_resend=is_resend,
        )
        return {"status": status}

    finally:
        session.close()
