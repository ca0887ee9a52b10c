import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, JSONType
from app.models.enums import ActorType, ShortlistEventType, ShortlistStatus, str_enum


class ShortlistEvent(Base):
    __tablename__ = "shortlist_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shortlist_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("shortlist_requests.id"), index=True
    )
    event_type: Mapped[ShortlistEventType] = mapped_column(str_enum(ShortlistEventType))
    previous_status: Mapped[ShortlistStatus | None] = mapped_column(
        str_enum(ShortlistStatus), nullable=True
    )
    new_status: Mapped[ShortlistStatus | None] = mapped_column(
        str_enum(ShortlistStatus), nullable=True
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    actor_type: Mapped[ActorType] = mapped_column(str_enum(ActorType), default=ActorType.SYSTEM)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
