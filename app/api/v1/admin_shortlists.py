"""Operator console: curation, pricing, delivery and outcome of shortlists."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.results import actor_for, unwrap
from app.core.database import get_db
from app.core.dependencies import CurrentUser, require_role
from app.models.enums import ShortlistStatus
from app.schemas.events import ResendEmailResponse, ShortlistEmailResponse, ShortlistEventResponse
from app.schemas.payment import PaymentAuditResponse, PaymentResponse
from app.schemas.shortlist import (
    AdminShortlistResponse,
    CancelRequest,
    DeliverRequest,
    ExtendSearchRequest,
    MarkPaidRequest,
    NoMatchRequest,
    OutcomeRequest,
    PriceSuggestionResponse,
    ProcessRequest,
    ProposeScopeRequest,
    RankingsUpdate,
    ReincludeRequest,
    ShortlistCandidateResponse,
    ShortlistSummary,
    SuggestAdjustmentRequest,
)
from app.services import audit, payments, shortlists
from app.services.notification_service import NotificationGateway, get_notifier

router = APIRouter(prefix="/admin/shortlists", tags=["admin-shortlists"])

require_admin = require_role("admin")


async def _admin_view(db: AsyncSession, shortlist_id: UUID) -> AdminShortlistResponse:
    shortlist = unwrap(await shortlists.get_request(db, shortlist_id))
    response = AdminShortlistResponse.model_validate(shortlist)
    response.new_candidates_count, response.repeated_candidates_count = shortlists.candidate_counts(
        shortlist.candidates
    )
    response.allowed_transitions = shortlists.allowed_next(shortlist)
    return response


@router.get("", response_model=list[ShortlistSummary])
async def list_shortlists(
    status_filter: ShortlistStatus | None = Query(None, alias="status"),
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await shortlists.list_requests(db, status=status_filter)


@router.get("/{shortlist_id}", response_model=AdminShortlistResponse)
async def get_shortlist(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/process", response_model=AdminShortlistResponse)
async def process_shortlist(
    shortlist_id: UUID,
    data: ProcessRequest | None = None,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run the matching engine and attach ranked candidates."""
    max_results = data.max_results if data else None
    unwrap(await shortlists.process(db, shortlist_id, actor_for(current_user), max_results=max_results))
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/candidates/reinclude", response_model=ShortlistCandidateResponse)
async def reinclude_candidate(
    shortlist_id: UUID,
    data: ReincludeRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(
        await shortlists.reinclude_candidate(
            db, shortlist_id, data.candidate_id, data.reason, actor_for(current_user)
        )
    )


@router.put("/{shortlist_id}/rankings", response_model=list[ShortlistCandidateResponse])
async def update_rankings(
    shortlist_id: UUID,
    data: RankingsUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await shortlists.update_rankings(db, shortlist_id, data.rankings, actor_for(current_user)))


@router.get("/{shortlist_id}/pricing/suggest", response_model=PriceSuggestionResponse)
async def suggest_price(
    shortlist_id: UUID,
    is_rare: bool = False,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    suggestion = unwrap(await shortlists.suggest_price(db, shortlist_id, is_rare))
    breakdown = suggestion["breakdown"]
    return PriceSuggestionResponse(
        seniority=breakdown.seniority,
        base_price=breakdown.base_price,
        candidate_count=breakdown.candidate_count,
        size_adjustment=breakdown.size_adjustment,
        is_rare=breakdown.is_rare,
        rare_premium=breakdown.rare_premium,
        suggested_price=breakdown.suggested_price,
        pricing_category=suggestion["pricing_category"],
        follow_up_discount=suggestion["follow_up_discount"],
        discounted_price=suggestion["discounted_price"],
    )


@router.post("/{shortlist_id}/scope/propose", response_model=AdminShortlistResponse)
async def propose_scope(
    shortlist_id: UUID,
    data: ProposeScopeRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.propose_scope(
            db,
            shortlist_id,
            data.proposed_price,
            data.proposed_candidates,
            notes=data.notes,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/deliver", response_model=AdminShortlistResponse)
async def deliver(
    shortlist_id: UUID,
    data: DeliverRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.deliver(
            db,
            shortlist_id,
            candidates_requested=data.candidates_requested,
            candidates_delivered=data.candidates_delivered,
            override_price=data.override_price,
            notes=data.notes,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/outcome", response_model=AdminShortlistResponse)
async def decide_outcome(
    shortlist_id: UUID,
    data: OutcomeRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.decide_outcome(
            db,
            shortlist_id,
            data.outcome,
            data.reason,
            override_amount=data.override_amount,
            discount_percent=data.discount_percent,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/mark-paid", response_model=AdminShortlistResponse)
async def mark_paid(
    shortlist_id: UUID,
    data: MarkPaidRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.mark_paid(
            db, shortlist_id, note=data.payment_note, actor=actor_for(current_user), notifier=notifier
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/no-match", response_model=AdminShortlistResponse)
async def mark_no_match(
    shortlist_id: UUID,
    data: NoMatchRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.mark_no_match(db, shortlist_id, data.reason, actor=actor_for(current_user), notifier=notifier)
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/suggest-adjustment", response_model=AdminShortlistResponse)
async def suggest_adjustment(
    shortlist_id: UUID,
    data: SuggestAdjustmentRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.suggest_adjustment(
            db, shortlist_id, data.message, actor=actor_for(current_user), notifier=notifier
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/extend-search", response_model=AdminShortlistResponse)
async def extend_search(
    shortlist_id: UUID,
    data: ExtendSearchRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.extend_search(
            db,
            shortlist_id,
            data.message,
            extend_days=data.extend_days,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )
    return await _admin_view(db, shortlist_id)


@router.post("/{shortlist_id}/cancel", response_model=AdminShortlistResponse)
async def cancel_shortlist(
    shortlist_id: UUID,
    data: CancelRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    unwrap(await shortlists.cancel(db, shortlist_id, data.reason, actor=actor_for(current_user)))
    return await _admin_view(db, shortlist_id)


@router.get("/{shortlist_id}/events", response_model=list[ShortlistEventResponse])
async def list_events(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    unwrap(await shortlists.get_request(db, shortlist_id))
    return await audit.list_events(db, shortlist_id)


@router.get("/{shortlist_id}/payment", response_model=list[PaymentResponse])
async def list_payments(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    unwrap(await shortlists.get_request(db, shortlist_id))
    return await payments.list_payments(db, shortlist_id)


@router.get("/{shortlist_id}/payment/audit", response_model=list[PaymentAuditResponse])
async def payment_audit(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    unwrap(await shortlists.get_request(db, shortlist_id))
    history = await payments.list_payments(db, shortlist_id)
    return await audit.list_payment_audit(db, [p.id for p in history])


@router.get("/{shortlist_id}/emails", response_model=list[ShortlistEmailResponse])
async def email_history(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await shortlists.email_history(db, shortlist_id))


@router.post("/{shortlist_id}/emails/resend", response_model=ResendEmailResponse)
async def resend_email(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    return unwrap(
        await shortlists.resend_last_email(db, shortlist_id, actor=actor_for(current_user), notifier=notifier)
    )
