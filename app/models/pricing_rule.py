import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class FollowUpPricingRule(Base):
    """One step of the follow-up discount staircase."""

    __tablename__ = "follow_up_pricing_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    days_threshold: Mapped[int] = mapped_column(Integer, unique=True)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
