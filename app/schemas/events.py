from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.enums import ActorType, EmailEvent, ShortlistEventType, ShortlistStatus


class ShortlistEventResponse(BaseModel):
    id: UUID
    event_type: ShortlistEventType
    previous_status: ShortlistStatus | None
    new_status: ShortlistStatus | None
    actor_id: UUID | None
    actor_type: ActorType
    metadata: dict | None = Field(None, validation_alias="metadata_")
    created_at: datetime

    model_config = {"from_attributes": True}


class ShortlistEmailResponse(BaseModel):
    id: UUID
    event: EmailEvent
    recipient: str
    subject: str
    status: str
    is_resend: bool
    sent_by: UUID | None
    sent_at: datetime

    model_config = {"from_attributes": True}


class ResendEmailResponse(BaseModel):
    event: EmailEvent
    recipient: str
    queued: bool = True
