import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import EmailEvent, str_enum


class ShortlistEmail(Base):
    """History of lifecycle emails sent for a shortlist."""

    __tablename__ = "shortlist_emails"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shortlist_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("shortlist_requests.id"), index=True
    )
    event: Mapped[EmailEvent] = mapped_column(str_enum(EmailEvent))
    recipient: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="sent")
    is_resend: Mapped[bool] = mapped_column(Boolean, default=False)
    sent_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
