from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.results import actor_for, unwrap
from app.core.database import get_db
from app.core.dependencies import CurrentUser, require_role
from app.core.rate_limit import limiter
from app.models.enums import ShortlistStatus
from app.models.shortlist import ShortlistRequest
from app.schemas.payment import PaymentResponse
from app.schemas.shortlist import (
    ApprovePricingRequest,
    AuthorizeRequest,
    CancelRequest,
    CreateShortlistRequest,
    DeclinePricingRequest,
    PriceEstimateResponse,
    ScopeProposalResponse,
    ShortlistCandidateResponse,
    ShortlistResponse,
    ShortlistSummary,
)
from app.services import shortlists
from app.services.notification_service import NotificationGateway, get_notifier

router = APIRouter(prefix="/shortlists", tags=["shortlists"])

VISIBLE_STATUSES = (ShortlistStatus.DELIVERED, ShortlistStatus.COMPLETED)


def _build_company_response(shortlist: ShortlistRequest) -> ShortlistResponse:
    """Company view: approved candidates only, and only after delivery."""
    response = ShortlistResponse.model_validate(shortlist)
    if ShortlistStatus(shortlist.status) in VISIBLE_STATUSES:
        response.candidates = [
            ShortlistCandidateResponse.model_validate(c) for c in shortlist.candidates if c.admin_approved
        ]
    else:
        response.candidates = []
    response.new_candidates_count, response.repeated_candidates_count = shortlists.candidate_counts(
        response.candidates
    )
    response.allowed_transitions = shortlists.allowed_next(shortlist)
    return response


async def _company_view(db: AsyncSession, shortlist_id: UUID, company_id: UUID) -> ShortlistResponse:
    shortlist = unwrap(await shortlists.get_request(db, shortlist_id, company_id))
    return _build_company_response(shortlist)


@router.post("", response_model=ShortlistResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_shortlist(
    request: Request,
    data: CreateShortlistRequest,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    shortlist = unwrap(
        await shortlists.create_request(db, current_user.company_id, data, actor_for(current_user))
    )
    return await _company_view(db, shortlist.id, current_user.company_id)


@router.get("", response_model=list[ShortlistSummary])
async def list_shortlists(
    status_filter: ShortlistStatus | None = None,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    return await shortlists.list_requests(db, company_id=current_user.company_id, status=status_filter)


@router.get("/scope/pending", response_model=list[ScopeProposalResponse])
async def pending_scope_proposals(
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    """Scope proposals waiting on the company's decision."""
    return await shortlists.pending_scope_proposals(db, current_user.company_id)


@router.get("/{shortlist_id}", response_model=ShortlistResponse)
async def get_shortlist(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    return await _company_view(db, shortlist_id, current_user.company_id)


@router.post("/{shortlist_id}/pricing/approve", response_model=PaymentResponse)
async def approve_pricing(
    shortlist_id: UUID,
    data: ApprovePricingRequest,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    """Approve the proposed price and start the payment authorization."""
    return unwrap(
        await shortlists.approve_pricing(
            db,
            shortlist_id,
            current_user.company_id,
            data.confirm_approval,
            provider=data.provider,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )


@router.post("/{shortlist_id}/pricing/decline", response_model=ShortlistResponse)
async def decline_pricing(
    shortlist_id: UUID,
    data: DeclinePricingRequest,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    unwrap(
        await shortlists.decline_pricing(
            db,
            shortlist_id,
            current_user.company_id,
            reason=data.reason,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )
    return await _company_view(db, shortlist_id, current_user.company_id)


@router.post("/{shortlist_id}/payment/authorize", response_model=PaymentResponse)
async def authorize_payment(
    shortlist_id: UUID,
    data: AuthorizeRequest,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    return unwrap(
        await shortlists.start_authorization(
            db,
            shortlist_id,
            current_user.company_id,
            provider=data.provider,
            actor=actor_for(current_user),
            notifier=notifier,
        )
    )


@router.post("/{shortlist_id}/payment/confirm", response_model=PaymentResponse)
async def confirm_payment(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(
        await shortlists.confirm_payment(db, shortlist_id, current_user.company_id, actor_for(current_user))
    )


@router.get("/{shortlist_id}/payment/estimate", response_model=PriceEstimateResponse)
async def estimate_price(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await shortlists.price_estimate(db, shortlist_id, current_user.company_id))


@router.get("/{shortlist_id}/payment", response_model=PaymentResponse)
async def get_payment_status(
    shortlist_id: UUID,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await shortlists.payment_status(db, shortlist_id, current_user.company_id))


@router.post("/{shortlist_id}/cancel", response_model=ShortlistResponse)
async def cancel_shortlist(
    shortlist_id: UUID,
    data: CancelRequest,
    current_user: CurrentUser = Depends(require_role("company")),
    db: AsyncSession = Depends(get_db),
):
    unwrap(
        await shortlists.cancel(
            db, shortlist_id, data.reason, company_id=current_user.company_id, actor=actor_for(current_user)
        )
    )
    return await _company_view(db, shortlist_id, current_user.company_id)
