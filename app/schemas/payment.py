from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from app.models.enums import PaymentStatus


class PaymentResponse(BaseModel):
    id: UUID
    shortlist_request_id: UUID
    provider: str
    provider_reference: str | None
    client_handle: str | None
    status: PaymentStatus
    currency: str
    amount_authorized: Decimal
    amount_captured: Decimal
    error_message: str | None
    authorized_at: datetime | None
    captured_at: datetime | None
    released_at: datetime | None
    expired_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentAuditResponse(BaseModel):
    id: UUID
    payment_id: UUID
    previous_status: PaymentStatus | None
    new_status: PaymentStatus
    action: str
    context: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}
