import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.core.database import Base, JSONType
from app.models.enums import PricingCategory, ShortlistOutcome, ShortlistStatus, str_enum


class OutcomeLockedError(RuntimeError):
    """Raised when code tries to overwrite a terminal outcome."""


class ShortlistRequest(Base):
    __tablename__ = "shortlist_requests"
    __table_args__ = (
        CheckConstraint(
            "outcome = 'pending' OR outcome_reason IS NOT NULL", name="ck_shortlist_outcome_reason"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("companies.id"), index=True)

    # Hiring brief
    role_title: Mapped[str] = mapped_column(String(255))
    tech_stack_required: Mapped[list] = mapped_column(JSONType, default=list)
    seniority_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_remote: Mapped[bool] = mapped_column(Boolean, default=True)
    location_country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lifecycle
    status: Mapped[ShortlistStatus] = mapped_column(
        str_enum(ShortlistStatus), default=ShortlistStatus.SUBMITTED, index=True
    )
    outcome: Mapped[ShortlistOutcome] = mapped_column(
        str_enum(ShortlistOutcome), default=ShortlistOutcome.PENDING, index=True
    )
    outcome_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    outcome_decided_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Pricing
    pricing_category: Mapped[PricingCategory] = mapped_column(
        str_enum(PricingCategory), default=PricingCategory.NEW
    )
    follow_up_discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    previous_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("shortlist_requests.id"), nullable=True, index=True
    )
    suggested_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    pricing_factors: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    is_rare_role: Mapped[bool] = mapped_column(Boolean, default=False)
    proposed_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    proposed_candidates: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scope_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    price_overridden: Mapped[bool] = mapped_column(Boolean, default=False)
    price_currency: Mapped[str] = mapped_column(String(3), default="USD")
    pricing_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Active payment (1:1, cleared when an authorization expires)
    payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Delivery
    candidates_requested: Mapped[int | None] = mapped_column(Integer, nullable=True)
    candidates_delivered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_confirmed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    paid_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Side paths
    adjustment_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    adjustment_suggested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    search_extended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    search_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    extension_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    company = relationship("Company", back_populates="shortlist_requests")
    candidates = relationship(
        "ShortlistCandidate",
        back_populates="shortlist_request",
        foreign_keys="ShortlistCandidate.shortlist_request_id",
        order_by="ShortlistCandidate.rank",
    )

    @validates("outcome")
    def _guard_outcome(self, key, value):
        current = self.outcome
        if current is not None and ShortlistOutcome(current).is_terminal and value != current:
            raise OutcomeLockedError(
                f"Outcome {ShortlistOutcome(current).value} is final and cannot change to "
                f"{ShortlistOutcome(value).value}"
            )
        return value


# Core UPDATEs bypass the validator above, so the database refuses them too.
OUTCOME_LOCK_FUNCTION_PG = DDL(
    """
    CREATE OR REPLACE FUNCTION shortlist_outcome_locked() RETURNS trigger AS $$
    BEGIN
        IF OLD.outcome <> 'pending' AND NEW.outcome IS DISTINCT FROM OLD.outcome THEN
            RAISE EXCEPTION 'shortlist outcome is final' USING ERRCODE = 'check_violation';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """
)
OUTCOME_LOCK_TRIGGER_PG = DDL(
    "CREATE TRIGGER trg_shortlist_outcome_locked BEFORE UPDATE OF outcome ON shortlist_requests "
    "FOR EACH ROW EXECUTE FUNCTION shortlist_outcome_locked()"
)
OUTCOME_LOCK_TRIGGER_SQLITE = DDL(
    """
    CREATE TRIGGER trg_shortlist_outcome_locked BEFORE UPDATE OF outcome ON shortlist_requests
    FOR EACH ROW WHEN OLD.outcome <> 'pending' AND NEW.outcome IS NOT OLD.outcome
    BEGIN
        SELECT RAISE(ABORT, 'shortlist outcome is final');
    END
    """
)

event.listen(
    ShortlistRequest.__table__, "after_create", OUTCOME_LOCK_FUNCTION_PG.execute_if(dialect="postgresql")
)
event.listen(
    ShortlistRequest.__table__, "after_create", OUTCOME_LOCK_TRIGGER_PG.execute_if(dialect="postgresql")
)
event.listen(
    ShortlistRequest.__table__, "after_create", OUTCOME_LOCK_TRIGGER_SQLITE.execute_if(dialect="sqlite")
)


class ShortlistCandidate(Base):
    __tablename__ = "shortlist_candidates"
    __table_args__ = (UniqueConstraint("shortlist_request_id", "candidate_id", name="uq_shortlist_candidate"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shortlist_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("shortlist_requests.id"), index=True
    )
    candidate_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("candidates.id"), index=True)
    match_score: Mapped[float] = mapped_column(Float)
    match_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rank: Mapped[int] = mapped_column(Integer)
    admin_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    is_new: Mapped[bool] = mapped_column(Boolean, default=True)
    previously_recommended_in: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("shortlist_requests.id"), nullable=True
    )
    re_inclusion_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    shortlist_request = relationship(
        "ShortlistRequest", back_populates="candidates", foreign_keys=[shortlist_request_id]
    )
