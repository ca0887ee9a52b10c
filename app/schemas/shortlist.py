from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.enums import PricingCategory, ShortlistOutcome, ShortlistStatus


class CreateShortlistRequest(BaseModel):
    role_title: str = Field(..., max_length=255)
    tech_stack_required: list[str] = []
    seniority_required: int | None = Field(None, ge=0, le=4, description="0=junior ... 4=principal")
    is_remote: bool = True
    location_country: str | None = Field(None, max_length=100)
    location_city: str | None = Field(None, max_length=100)
    location_timezone: str | None = Field(None, max_length=64)
    additional_notes: str | None = None
    previous_request_id: UUID | None = None

    @field_validator("tech_stack_required", mode="before")
    @classmethod
    def split_comma_list(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v or []


class ShortlistCandidateResponse(BaseModel):
    id: UUID
    candidate_id: UUID
    match_score: float
    match_reason: str | None
    rank: int
    admin_approved: bool
    is_new: bool
    previously_recommended_in: UUID | None = None
    re_inclusion_reason: str | None = None
    added_at: datetime

    model_config = {"from_attributes": True}


class ShortlistResponse(BaseModel):
    id: UUID
    role_title: str
    tech_stack_required: list[str]
    seniority_required: int | None
    is_remote: bool
    location_country: str | None
    location_city: str | None
    location_timezone: str | None
    additional_notes: str | None
    status: ShortlistStatus
    outcome: ShortlistOutcome
    pricing_category: PricingCategory
    follow_up_discount: Decimal
    previous_request_id: UUID | None
    proposed_price: Decimal | None
    proposed_candidates: int | None
    scope_notes: str | None
    approved_price: Decimal | None
    final_price: Decimal | None
    price_currency: str
    candidates_requested: int | None
    candidates_delivered: int | None
    delivered_at: datetime | None
    completed_at: datetime | None
    adjustment_suggestion: str | None
    search_deadline: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    allowed_transitions: list[str] = []
    new_candidates_count: int = 0
    repeated_candidates_count: int = 0
    candidates: list[ShortlistCandidateResponse] = []

    model_config = {"from_attributes": True}


class AdminShortlistResponse(ShortlistResponse):
    company_id: UUID
    suggested_price: Decimal | None
    pricing_factors: dict | None
    is_rare_role: bool
    price_overridden: bool
    pricing_approved_at: datetime | None
    declined_at: datetime | None
    decline_reason: str | None
    payment_id: UUID | None
    outcome_reason: str | None
    outcome_decided_at: datetime | None
    outcome_decided_by: UUID | None
    paid_confirmed_by: UUID | None
    paid_confirmed_at: datetime | None
    payment_note: str | None
    adjustment_suggested_at: datetime | None
    search_extended_at: datetime | None
    extension_notes: str | None
    cancellation_reason: str | None


class ShortlistSummary(BaseModel):
    id: UUID
    role_title: str
    status: ShortlistStatus
    outcome: ShortlistOutcome
    pricing_category: PricingCategory
    proposed_price: Decimal | None
    approved_price: Decimal | None
    price_currency: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ApprovePricingRequest(BaseModel):
    confirm_approval: bool = False
    provider: str = "stripe"


class DeclinePricingRequest(BaseModel):
    reason: str | None = None


class AuthorizeRequest(BaseModel):
    provider: str = "stripe"


class CancelRequest(BaseModel):
    reason: str = ""


class ProcessRequest(BaseModel):
    max_results: int | None = Field(None, ge=1, le=100)


class ReincludeRequest(BaseModel):
    candidate_id: UUID
    reason: str = ""


class RankingItem(BaseModel):
    candidate_id: UUID
    rank: int | None = None
    admin_approved: bool | None = None


class RankingsUpdate(BaseModel):
    rankings: list[RankingItem]


class PriceSuggestionResponse(BaseModel):
    seniority: str
    base_price: Decimal
    candidate_count: int
    size_adjustment: Decimal
    is_rare: bool
    rare_premium: Decimal
    suggested_price: Decimal
    pricing_category: PricingCategory
    follow_up_discount: Decimal
    discounted_price: Decimal


class ProposeScopeRequest(BaseModel):
    proposed_price: Decimal
    proposed_candidates: int
    notes: str | None = None


class DeliverRequest(BaseModel):
    candidates_requested: int | None = None
    candidates_delivered: int | None = None
    override_price: Decimal | None = None
    notes: str | None = None


class OutcomeRequest(BaseModel):
    outcome: ShortlistOutcome
    reason: str = ""
    override_amount: Decimal | None = None
    discount_percent: Decimal | None = Field(None, ge=0, le=100)


class MarkPaidRequest(BaseModel):
    payment_note: str | None = None


class NoMatchRequest(BaseModel):
    reason: str = ""


class SuggestAdjustmentRequest(BaseModel):
    message: str = ""


class ExtendSearchRequest(BaseModel):
    message: str = ""
    extend_days: int | None = None


class PriceEstimateResponse(BaseModel):
    shortlist_id: UUID
    pricing_category: PricingCategory
    candidates_requested: int
    base_price: Decimal
    follow_up_discount: Decimal
    discount_amount: Decimal
    final_price: Decimal
    currency: str
    is_proposed: bool


class ScopeProposalResponse(BaseModel):
    id: UUID
    role_title: str
    pricing_category: PricingCategory
    follow_up_discount: Decimal
    proposed_price: Decimal
    proposed_candidates: int | None
    scope_notes: str | None
    price_currency: str
    created_at: datetime

    model_config = {"from_attributes": True}
