"""Shortlist lifecycle: status and outcome state machines plus the operations that drive them.

Every mutating operation locks the shortlist, re-reads it, validates the
transition against the static tables and then applies it with a guarded
UPDATE. Business-rule failures come back as ServiceResult values.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.models.candidate import Candidate
from app.models.enums import (
    EmailEvent,
    PaymentStatus,
    PricingCategory,
    SeniorityLevel,
    ShortlistEventType,
    ShortlistOutcome,
    ShortlistStatus,
)
from app.models.shortlist import ShortlistCandidate, ShortlistRequest
from app.models.shortlist_email import ShortlistEmail
from app.services import follow_up, matching, payments
from app.services.audit import SYSTEM_ACTOR, Actor, record_event
from app.services.locking import guarded_status_update, load_for_update
from app.services.notification_service import NotificationGateway, get_notifier, notify_on_commit
from app.services.pricing import apply_discount, calculate_price
from app.services.providers.registry import available_providers, get_provider
from app.services.results import ErrorKind, ServiceResult
from app.services.transitions import (
    allowed_status_transitions,
    validate_outcome_transition,
    validate_status_transition,
)

logger = structlog.get_logger()

S = ShortlistStatus

CURATION_STATUSES = frozenset({S.PROCESSING, S.PRICING_PENDING, S.PRICING_APPROVED, S.AUTHORIZED})
SEARCH_STATUSES = frozenset({S.SUBMITTED, S.PROCESSING, S.PRICING_PENDING})
TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})
MAX_EXTENSION_DAYS = 30


def _status(shortlist: ShortlistRequest) -> ShortlistStatus:
    return ShortlistStatus(shortlist.status)


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _status_not_in(shortlist: ShortlistRequest, allowed: frozenset, action: str) -> ServiceResult:
    return ServiceResult.fail(
        ErrorKind.ILLEGAL_TRANSITION,
        f"Cannot {action} while shortlist is {_status(shortlist).value}",
        current=_status(shortlist).value,
        allowed=sorted(s.value for s in allowed),
    )


async def _load(db: AsyncSession, shortlist_id: UUID, company_id: UUID | None = None):
    shortlist = await load_for_update(db, shortlist_id)
    if shortlist is None or (company_id is not None and shortlist.company_id != company_id):
        return None
    return shortlist


async def _move(
    db: AsyncSession,
    shortlist: ShortlistRequest,
    target: ShortlistStatus,
    event_type: ShortlistEventType,
    actor: Actor,
    metadata: dict | None = None,
    **values,
) -> ServiceResult:
    """Validate and apply a status transition, then record it."""
    current = _status(shortlist)
    check = validate_status_transition(current, target)
    if not check.success:
        logger.info(
            "shortlist_transition_rejected",
            shortlist_id=str(shortlist.id),
            current=current.value,
            target=target.value,
        )
        return check
    moved = await guarded_status_update(db, ShortlistRequest, shortlist.id, current, target, **values)
    if not moved:
        return ServiceResult.conflict("Shortlist was modified concurrently, reload and retry")
    logger.info(
        "shortlist_transition",
        shortlist_id=str(shortlist.id),
        previous_status=current.value,
        new_status=target.value,
    )
    await record_event(
        db,
        shortlist_id=shortlist.id,
        event_type=event_type,
        previous_status=current,
        new_status=target,
        actor=actor,
        metadata=metadata,
    )
    return ServiceResult.ok(shortlist)


async def _record_activity(
    db: AsyncSession,
    shortlist: ShortlistRequest,
    event_type: ShortlistEventType,
    actor: Actor,
    metadata: dict | None = None,
) -> None:
    await record_event(
        db,
        shortlist_id=shortlist.id,
        event_type=event_type,
        previous_status=_status(shortlist),
        new_status=_status(shortlist),
        actor=actor,
        metadata=metadata,
    )


def _notify(
    db: AsyncSession,
    notifier: NotificationGateway | None,
    shortlist: ShortlistRequest,
    event: EmailEvent,
    **context,
):
    notify_on_commit(db, notifier or get_notifier(), shortlist.id, event, context=context)


# -- submission -------------------------------------------------------------


async def create_request(
    db: AsyncSession,
    company_id: UUID,
    brief,
    actor: Actor = SYSTEM_ACTOR,
) -> ServiceResult:
    """Submit a hiring brief. Runs follow-up detection before the row is created."""
    if _blank(brief.role_title):
        return ServiceResult.validation("Role title is required")
    if brief.seniority_required is not None and brief.seniority_required not in SeniorityLevel._value2member_map_:
        return ServiceResult.validation("Unknown seniority level")
    tech_stack = []
    for skill in brief.tech_stack_required or []:
        if not isinstance(skill, str):
            return ServiceResult.validation("Tech stack entries must be strings")
        if skill.strip() and skill.strip() not in tech_stack:
            tech_stack.append(skill.strip())

    decision = await follow_up.detect_follow_up(
        db, company_id, brief, previous_request_id=brief.previous_request_id
    )
    settings = get_settings()
    shortlist = ShortlistRequest(
        company_id=company_id,
        role_title=brief.role_title.strip(),
        tech_stack_required=tech_stack,
        seniority_required=brief.seniority_required,
        is_remote=brief.is_remote,
        location_country=brief.location_country,
        location_city=brief.location_city,
        location_timezone=brief.location_timezone,
        additional_notes=brief.additional_notes,
        status=ShortlistStatus.SUBMITTED,
        outcome=ShortlistOutcome.PENDING,
        pricing_category=decision.pricing_category,
        previous_request_id=decision.previous_request_id,
        follow_up_discount=decision.discount_percent,
        price_currency=settings.DEFAULT_CURRENCY,
    )
    db.add(shortlist)
    await db.flush()

    await record_event(
        db,
        shortlist_id=shortlist.id,
        event_type=ShortlistEventType.CREATED,
        new_status=ShortlistStatus.SUBMITTED,
        actor=actor,
        metadata={
            "pricing_category": decision.pricing_category.value,
            "previous_request_id": str(decision.previous_request_id) if decision.previous_request_id else None,
            "follow_up_discount": str(decision.discount_percent),
            "similarity": decision.similarity,
        },
    )
    logger.info(
        "shortlist_created",
        shortlist_id=str(shortlist.id),
        company_id=str(company_id),
        pricing_category=decision.pricing_category.value,
    )
    return ServiceResult.ok(shortlist)


async def get_request(db: AsyncSession, shortlist_id: UUID, company_id: UUID | None = None) -> ServiceResult:
    result = await db.execute(
        select(ShortlistRequest)
        .where(ShortlistRequest.id == shortlist_id)
        .options(selectinload(ShortlistRequest.candidates))
        .execution_options(populate_existing=True)
    )
    shortlist = result.scalar_one_or_none()
    if shortlist is None or (company_id is not None and shortlist.company_id != company_id):
        return ServiceResult.not_found("Shortlist not found")
    return ServiceResult.ok(shortlist)


async def list_requests(
    db: AsyncSession, company_id: UUID | None = None, status: ShortlistStatus | None = None
) -> list[ShortlistRequest]:
    query = select(ShortlistRequest).order_by(ShortlistRequest.created_at.desc())
    if company_id is not None:
        query = query.where(ShortlistRequest.company_id == company_id)
    if status is not None:
        query = query.where(ShortlistRequest.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


# -- matching and curation --------------------------------------------------


async def _attached_candidates(db: AsyncSession, shortlist_id: UUID) -> list[ShortlistCandidate]:
    result = await db.execute(
        select(ShortlistCandidate)
        .where(ShortlistCandidate.shortlist_request_id == shortlist_id)
        .order_by(ShortlistCandidate.rank)
    )
    return list(result.scalars().all())


async def process(
    db: AsyncSession, shortlist_id: UUID, actor: Actor = SYSTEM_ACTOR, max_results: int | None = None
) -> ServiceResult:
    """Run the matching engine and attach the ranked candidates.

    Running it again on a request that is already processing only adds
    candidates that are not attached yet.
    """
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")

    if _status(shortlist) != S.PROCESSING:
        moved = await _move(db, shortlist, S.PROCESSING, ShortlistEventType.MATCHING_STARTED, actor)
        if not moved.success:
            return moved

    is_follow_up = shortlist.previous_request_id is not None
    excluded = {}
    previous_created_at = None
    if is_follow_up:
        excluded = await follow_up.chain_candidate_ids(db, shortlist.previous_request_id)
        previous = await db.get(ShortlistRequest, shortlist.previous_request_id)
        previous_created_at = previous.created_at if previous else None

    attached = await _attached_candidates(db, shortlist.id)
    skip = set(excluded) | {row.candidate_id for row in attached}
    next_rank = max((row.rank for row in attached), default=0) + 1

    matches = await matching.find_matches(
        db,
        shortlist,
        max_results=max_results,
        exclude_candidate_ids=skip,
        is_follow_up=is_follow_up,
        previous_created_at=previous_created_at,
    )
    rows = []
    for offset, match in enumerate(matches):
        row = ShortlistCandidate(
            shortlist_request_id=shortlist.id,
            candidate_id=match.candidate_id,
            match_score=match.score,
            match_reason=match.reason,
            rank=next_rank + offset,
            is_new=match.is_new,
            admin_approved=False,
        )
        db.add(row)
        rows.append(row)
    await db.flush()

    await _record_activity(
        db,
        shortlist,
        ShortlistEventType.MATCHING_COMPLETED,
        actor,
        {"matched": len(rows), "excluded": len(excluded), "follow_up": is_follow_up},
    )
    logger.info("shortlist_processed", shortlist_id=str(shortlist.id), matched=len(rows))
    return ServiceResult.ok(rows)


async def reinclude_candidate(
    db: AsyncSession,
    shortlist_id: UUID,
    candidate_id: UUID,
    reason: str,
    actor: Actor = SYSTEM_ACTOR,
) -> ServiceResult:
    """Manually bring back a candidate surfaced earlier in the follow-up chain."""
    if _blank(reason):
        return ServiceResult.validation("A re-inclusion reason is required")
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if shortlist.previous_request_id is None:
        return ServiceResult.validation("Only follow-up shortlists can re-include candidates")
    if _status(shortlist) not in CURATION_STATUSES:
        return _status_not_in(shortlist, CURATION_STATUSES, "re-include candidates")

    chain = await follow_up.chain_candidate_ids(db, shortlist.previous_request_id)
    if candidate_id not in chain:
        return ServiceResult.not_found("Candidate was not recommended earlier in this chain")
    attached = await _attached_candidates(db, shortlist.id)
    if any(row.candidate_id == candidate_id for row in attached):
        return ServiceResult.validation("Candidate is already part of this shortlist")

    result = await db.execute(
        select(Candidate)
        .where(Candidate.id == candidate_id)
        .options(selectinload(Candidate.skills), selectinload(Candidate.recommendations))
    )
    candidate = result.scalar_one_or_none()
    if candidate is None:
        return ServiceResult.not_found("Candidate not found")

    profile = matching.to_profile(candidate)
    row = ShortlistCandidate(
        shortlist_request_id=shortlist.id,
        candidate_id=candidate_id,
        match_score=matching.score_candidate(profile, shortlist),
        match_reason=matching.generate_reason(profile, shortlist),
        rank=max((r.rank for r in attached), default=0) + 1,
        is_new=False,
        previously_recommended_in=chain[candidate_id],
        re_inclusion_reason=reason.strip()[:255],
        admin_approved=False,
    )
    db.add(row)
    await db.flush()
    await _record_activity(
        db,
        shortlist,
        ShortlistEventType.CANDIDATE_REINCLUDED,
        actor,
        {"candidate_id": str(candidate_id), "reason": reason.strip()},
    )
    return ServiceResult.ok(row)


async def update_rankings(
    db: AsyncSession, shortlist_id: UUID, rankings: list, actor: Actor = SYSTEM_ACTOR
) -> ServiceResult:
    """Apply operator approval flags and ranks. ``rankings`` items carry candidate_id, rank, admin_approved."""
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if _status(shortlist) not in CURATION_STATUSES:
        return _status_not_in(shortlist, CURATION_STATUSES, "update rankings")

    rows = {row.candidate_id: row for row in await _attached_candidates(db, shortlist.id)}
    for item in rankings:
        if item.rank is not None and item.rank < 1:
            return ServiceResult.validation("Rank must be a positive integer")
        if item.candidate_id not in rows:
            return ServiceResult.not_found(f"Candidate {item.candidate_id} is not on this shortlist")

    for item in rankings:
        row = rows[item.candidate_id]
        if item.rank is not None:
            row.rank = item.rank
        if item.admin_approved is not None:
            row.admin_approved = item.admin_approved
    await db.flush()

    approved = sum(1 for row in rows.values() if row.admin_approved)
    await _record_activity(
        db, shortlist, ShortlistEventType.RANKINGS_UPDATED, actor, {"updated": len(rankings), "approved": approved}
    )
    return ServiceResult.ok(sorted(rows.values(), key=lambda r: r.rank))


# -- pricing ----------------------------------------------------------------


async def _approved_count(db: AsyncSession, shortlist_id: UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(ShortlistCandidate)
        .where(
            ShortlistCandidate.shortlist_request_id == shortlist_id,
            ShortlistCandidate.admin_approved.is_(True),
        )
    )
    return result.scalar() or 0


async def _total_count(db: AsyncSession, shortlist_id: UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(ShortlistCandidate)
        .where(ShortlistCandidate.shortlist_request_id == shortlist_id)
    )
    return result.scalar() or 0


async def suggest_price(db: AsyncSession, shortlist_id: UUID, is_rare: bool = False) -> ServiceResult:
    """Pricing calculator output for the approved candidates, plus the follow-up discount preview."""
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")

    count = await _approved_count(db, shortlist.id)
    breakdown = calculate_price(shortlist.seniority_required, count, is_rare)
    discount = Decimal(shortlist.follow_up_discount or 0)
    discounted = apply_discount(breakdown.suggested_price, discount) if discount else breakdown.suggested_price

    factors = breakdown.as_dict()
    factors["follow_up_discount"] = str(discount)
    factors["discounted_price"] = str(discounted)
    shortlist.suggested_price = breakdown.suggested_price
    shortlist.pricing_factors = factors
    shortlist.is_rare_role = is_rare
    await db.flush()
    return ServiceResult.ok(
        {
            "breakdown": breakdown,
            "pricing_category": PricingCategory(shortlist.pricing_category),
            "follow_up_discount": discount,
            "discounted_price": discounted,
        }
    )


async def price_estimate(db: AsyncSession, shortlist_id: UUID, company_id: UUID) -> ServiceResult:
    """What the company would pay: calculator price, follow-up discount and the amount to hold.

    Once a scope is proposed the final amount is the proposed price, since that
    is what the authorization will hold.
    """
    found = await get_request(db, shortlist_id, company_id)
    if not found.success:
        return found
    shortlist = found.data

    count = shortlist.proposed_candidates or await _approved_count(db, shortlist.id)
    breakdown = calculate_price(shortlist.seniority_required, count, shortlist.is_rare_role)
    discount = Decimal(shortlist.follow_up_discount or 0)
    discounted = apply_discount(breakdown.suggested_price, discount)
    is_proposed = shortlist.proposed_price is not None
    return ServiceResult.ok(
        {
            "shortlist_id": shortlist.id,
            "pricing_category": PricingCategory(shortlist.pricing_category),
            "candidates_requested": count,
            "base_price": breakdown.suggested_price,
            "follow_up_discount": discount,
            "discount_amount": breakdown.suggested_price - discounted,
            "final_price": shortlist.proposed_price if is_proposed else discounted,
            "currency": shortlist.price_currency,
            "is_proposed": is_proposed,
        }
    )


async def pending_scope_proposals(db: AsyncSession, company_id: UUID) -> list[ShortlistRequest]:
    """The company's shortlists waiting on a decision about the proposed scope and price."""
    result = await db.execute(
        select(ShortlistRequest)
        .where(
            ShortlistRequest.company_id == company_id,
            ShortlistRequest.status == S.PRICING_PENDING,
            ShortlistRequest.proposed_price.is_not(None),
        )
        .order_by(ShortlistRequest.created_at)
    )
    return list(result.scalars().all())


async def propose_scope(
    db: AsyncSession,
    shortlist_id: UUID,
    proposed_price: Decimal,
    proposed_candidates: int,
    notes: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    if proposed_candidates is None or proposed_candidates <= 0:
        return ServiceResult.validation("Proposed candidates must be greater than 0")
    if proposed_price is None or Decimal(proposed_price) <= 0:
        return ServiceResult.validation("Proposed price must be greater than 0")

    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")

    price = Decimal(proposed_price).quantize(Decimal("0.01"))
    result = await _move(
        db,
        shortlist,
        S.PRICING_PENDING,
        ShortlistEventType.PRICING_SET,
        actor,
        {"proposed_price": str(price), "proposed_candidates": proposed_candidates},
        proposed_price=price,
        proposed_candidates=proposed_candidates,
        scope_notes=notes,
    )
    if result.success:
        _notify(
            db,
            notifier,
            shortlist,
            EmailEvent.PRICING_READY,
            proposed_price=str(price),
            proposed_candidates=proposed_candidates,
            notes=notes,
        )
    return result


async def approve_pricing(
    db: AsyncSession,
    shortlist_id: UUID,
    company_id: UUID,
    confirm_approval: bool,
    provider: str = "stripe",
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Company accepts the proposal; the authorization hold is requested right away."""
    if not confirm_approval:
        return ServiceResult.validation("Pricing approval must be explicitly confirmed")
    if get_provider(provider) is None:
        return ServiceResult.validation(
            f"Unknown payment provider '{provider}'. Available: {', '.join(available_providers())}"
        )
    shortlist = await _load(db, shortlist_id, company_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if shortlist.proposed_price is None:
        check = validate_status_transition(_status(shortlist), S.PRICING_APPROVED)
        return check if not check.success else ServiceResult.validation("No price has been proposed yet")

    moved = await _move(
        db,
        shortlist,
        S.PRICING_APPROVED,
        ShortlistEventType.PRICING_APPROVED,
        actor,
        {"approved_price": str(shortlist.proposed_price), "provider": provider},
        approved_price=shortlist.proposed_price,
        pricing_approved_at=utcnow(),
    )
    if not moved.success:
        return moved

    authorization = await payments.initiate_authorization(db, shortlist, provider, actor)
    if not authorization.success:
        return authorization
    payment = authorization.data
    _notify(
        db,
        notifier,
        shortlist,
        EmailEvent.AUTHORIZATION_REQUIRED,
        amount=str(payment.amount_authorized),
        currency=payment.currency,
        provider=payment.provider,
        client_handle=payment.client_handle,
    )
    return ServiceResult.ok(payment)


async def decline_pricing(
    db: AsyncSession,
    shortlist_id: UUID,
    company_id: UUID,
    reason: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    shortlist = await _load(db, shortlist_id, company_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if _status(shortlist) != S.PRICING_PENDING:
        return _status_not_in(shortlist, frozenset({S.PRICING_PENDING}), "decline pricing")
    result = await _move(
        db,
        shortlist,
        S.PROCESSING,
        ShortlistEventType.PRICING_DECLINED,
        actor,
        {"reason": reason},
        declined_at=utcnow(),
        decline_reason=reason,
    )
    if result.success:
        _notify(db, notifier, shortlist, EmailEvent.PRICING_DECLINED, reason=reason)
    return result


# -- payment ----------------------------------------------------------------


async def start_authorization(
    db: AsyncSession,
    shortlist_id: UUID,
    company_id: UUID,
    provider: str = "stripe",
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Retry authorization after a failed or expired hold."""
    shortlist = await _load(db, shortlist_id, company_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if _status(shortlist) != S.PRICING_APPROVED:
        return _status_not_in(shortlist, frozenset({S.PRICING_APPROVED}), "authorize payment")
    if await payments.get_active_payment(db, shortlist) is not None:
        return ServiceResult.conflict("An authorization is already in progress for this shortlist")

    result = await payments.initiate_authorization(db, shortlist, provider, actor)
    if result.success:
        payment = result.data
        _notify(
            db,
            notifier,
            shortlist,
            EmailEvent.AUTHORIZATION_REQUIRED,
            amount=str(payment.amount_authorized),
            currency=payment.currency,
            provider=payment.provider,
            client_handle=payment.client_handle,
        )
    return result


async def confirm_payment(
    db: AsyncSession, shortlist_id: UUID, company_id: UUID, actor: Actor = SYSTEM_ACTOR
) -> ServiceResult:
    """Synchronous confirmation path; idempotent like the webhook path."""
    result = await get_request(db, shortlist_id, company_id)
    if not result.success:
        return result
    shortlist = result.data
    payment = None
    if shortlist.payment_id is not None:
        payment = await payments.get_payment(db, shortlist.payment_id)
    if payment is None:
        payment = await payments.latest_payment(db, shortlist.id)
    if payment is None:
        return ServiceResult.not_found("No payment has been started for this shortlist")
    return await payments.confirm_authorization(db, payment.id, actor=actor, source="api")


async def payment_status(db: AsyncSession, shortlist_id: UUID, company_id: UUID | None = None) -> ServiceResult:
    result = await get_request(db, shortlist_id, company_id)
    if not result.success:
        return result
    payment = await payments.latest_payment(db, shortlist_id)
    if payment is None:
        return ServiceResult.not_found("No payment has been started for this shortlist")
    return ServiceResult.ok(payment)


async def _settle_active_payment(
    db: AsyncSession, shortlist: ShortlistRequest, reason: str, actor: Actor
) -> ServiceResult:
    """Release an authorized hold or abandon a pending one before closing a shortlist."""
    payment = await payments.get_active_payment(db, shortlist)
    if payment is None:
        return ServiceResult.ok()
    if PaymentStatus(payment.status) == PaymentStatus.AUTHORIZED:
        return await payments.release_payment(db, payment, actor)
    return await payments.abandon_pending_authorization(db, payment, reason, actor)


# -- delivery and outcome ---------------------------------------------------


async def deliver(
    db: AsyncSession,
    shortlist_id: UUID,
    candidates_requested: int | None = None,
    candidates_delivered: int | None = None,
    override_price: Decimal | None = None,
    notes: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    check = validate_status_transition(_status(shortlist), S.DELIVERED)
    if not check.success:
        return check

    requested = candidates_requested
    if requested is None:
        requested = shortlist.proposed_candidates or await _total_count(db, shortlist.id)
    delivered = candidates_delivered
    if delivered is None:
        delivered = await _approved_count(db, shortlist.id)
    if requested < 0 or delivered < 0:
        return ServiceResult.validation("Candidate counts cannot be negative")

    values = {
        "delivered_at": utcnow(),
        "candidates_requested": requested,
        "candidates_delivered": delivered,
        "final_price": shortlist.approved_price,
    }
    if override_price is not None:
        override = Decimal(override_price).quantize(Decimal("0.01"))
        ceiling = Decimal(shortlist.approved_price or 0)
        if override <= 0 or override > ceiling:
            return ServiceResult.validation(f"Override price must be between 0 and {ceiling}")
        values["final_price"] = override
        values["price_overridden"] = True

    result = await _move(
        db,
        shortlist,
        S.DELIVERED,
        ShortlistEventType.DELIVERED,
        actor,
        {
            "candidates_requested": requested,
            "candidates_delivered": delivered,
            "override_price": str(override_price) if override_price is not None else None,
            "notes": notes,
        },
        **values,
    )
    if result.success:
        _notify(
            db,
            notifier,
            shortlist,
            EmailEvent.DELIVERED,
            candidates_delivered=delivered,
            candidates_requested=requested,
        )
    return result


def _shortfall_discount(shortlist: ShortlistRequest) -> Decimal | None:
    requested = shortlist.candidates_requested or 0
    delivered = shortlist.candidates_delivered or 0
    if requested <= 0 or delivered >= requested:
        return None
    return (Decimal(requested - delivered) / Decimal(requested) * 100).quantize(Decimal("0.01"))


async def decide_outcome(
    db: AsyncSession,
    shortlist_id: UUID,
    outcome: ShortlistOutcome,
    reason: str,
    override_amount: Decimal | None = None,
    discount_percent: Decimal | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Record the final outcome of a delivered shortlist and settle its payment.

    delivered captures the full hold, partial captures a reduced amount and
    no_match releases it. If the provider call fails nothing on the shortlist
    changes and the payment is left ``failed`` for manual follow-up.
    """
    outcome = ShortlistOutcome(outcome)
    if _blank(reason):
        return ServiceResult.validation("A reason is required to decide an outcome")
    if outcome == ShortlistOutcome.CANCELLED:
        return ServiceResult.validation("Use cancel to cancel a shortlist")

    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    check = validate_outcome_transition(shortlist.outcome, outcome)
    if not check.success:
        return check
    check = validate_status_transition(_status(shortlist), S.COMPLETED)
    if not check.success:
        return check

    if outcome == ShortlistOutcome.PARTIAL and override_amount is None and discount_percent is None:
        if shortlist.price_overridden and shortlist.final_price is not None:
            override_amount = Decimal(shortlist.final_price)
        else:
            discount_percent = _shortfall_discount(shortlist)

    payment = await payments.get_active_payment(db, shortlist)
    if payment is None:
        latest = await payments.latest_payment(db, shortlist.id)
        status = PaymentStatus(latest.status).value if latest else "missing"
        return ServiceResult.validation(f"No authorized payment to finalize (payment is {status})")

    settled = await payments.finalize_payment(
        db, payment, outcome, override_amount=override_amount, discount_percent=discount_percent, actor=actor
    )
    if not settled.success:
        return settled

    now = utcnow()
    shortlist.outcome = outcome
    shortlist.outcome_reason = reason.strip()
    shortlist.outcome_decided_at = now
    shortlist.outcome_decided_by = actor.id
    await db.flush()

    result = await _move(
        db,
        shortlist,
        S.COMPLETED,
        ShortlistEventType.OUTCOME_DECIDED,
        actor,
        {
            "outcome": outcome.value,
            "reason": reason.strip(),
            "amount_captured": str(payment.amount_captured),
            "payment_status": PaymentStatus(payment.status).value,
        },
        completed_at=now,
        final_price=payment.amount_captured,
    )
    if result.success:
        event = EmailEvent.NO_MATCH if outcome == ShortlistOutcome.NO_MATCH else EmailEvent.COMPLETED
        _notify(
            db,
            notifier,
            shortlist,
            event,
            outcome=outcome.value,
            reason=reason.strip(),
            amount_captured=str(payment.amount_captured),
        )
    return result


async def mark_no_match(
    db: AsyncSession,
    shortlist_id: UUID,
    reason: str,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Close the shortlist as no-match. Any hold is released, never captured."""
    if _blank(reason):
        return ServiceResult.validation("A reason is required to mark no match")
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")

    check = validate_outcome_transition(shortlist.outcome, ShortlistOutcome.NO_MATCH)
    if not check.success:
        return check
    target = S.COMPLETED if _status(shortlist) == S.DELIVERED else S.CANCELLED
    check = validate_status_transition(_status(shortlist), target)
    if not check.success:
        return check

    settled = await _settle_active_payment(db, shortlist, reason.strip(), actor)
    if not settled.success:
        return settled

    now = utcnow()
    shortlist.outcome = ShortlistOutcome.NO_MATCH
    shortlist.outcome_reason = reason.strip()
    shortlist.outcome_decided_at = now
    shortlist.outcome_decided_by = actor.id
    await db.flush()

    values = {"completed_at": now} if target == S.COMPLETED else {
        "cancelled_at": now,
        "cancellation_reason": reason.strip(),
    }
    result = await _move(
        db,
        shortlist,
        target,
        ShortlistEventType.OUTCOME_DECIDED,
        actor,
        {"outcome": ShortlistOutcome.NO_MATCH.value, "reason": reason.strip()},
        **values,
    )
    if result.success:
        _notify(db, notifier, shortlist, EmailEvent.NO_MATCH, reason=reason.strip())
    return result


async def cancel(
    db: AsyncSession,
    shortlist_id: UUID,
    reason: str,
    company_id: UUID | None = None,
    actor: Actor = SYSTEM_ACTOR,
) -> ServiceResult:
    if _blank(reason):
        return ServiceResult.validation("A cancellation reason is required")
    shortlist = await _load(db, shortlist_id, company_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    check = validate_status_transition(_status(shortlist), S.CANCELLED)
    if not check.success:
        return check

    settled = await _settle_active_payment(db, shortlist, reason.strip(), actor)
    if not settled.success:
        return settled

    now = utcnow()
    if ShortlistOutcome(shortlist.outcome) == ShortlistOutcome.PENDING:
        shortlist.outcome = ShortlistOutcome.CANCELLED
        shortlist.outcome_reason = reason.strip()
        shortlist.outcome_decided_at = now
        shortlist.outcome_decided_by = actor.id
        await db.flush()

    return await _move(
        db,
        shortlist,
        S.CANCELLED,
        ShortlistEventType.CANCELLED,
        actor,
        {"reason": reason.strip()},
        cancelled_at=now,
        cancellation_reason=reason.strip(),
    )


async def mark_paid(
    db: AsyncSession,
    shortlist_id: UUID,
    note: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Out-of-band settlement: payment received outside the provider flow."""
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    check = validate_status_transition(_status(shortlist), S.COMPLETED)
    if not check.success:
        return check
    payment = await payments.get_active_payment(db, shortlist)
    if payment is not None and PaymentStatus(payment.status) == PaymentStatus.AUTHORIZED:
        return ServiceResult.validation(
            "Shortlist has an authorized payment; decide the outcome to capture it instead"
        )

    now = utcnow()
    if ShortlistOutcome(shortlist.outcome) == ShortlistOutcome.PENDING:
        shortlist.outcome = ShortlistOutcome.DELIVERED
        shortlist.outcome_reason = note.strip() if not _blank(note) else "Payment confirmed manually"
        shortlist.outcome_decided_at = now
        shortlist.outcome_decided_by = actor.id
        await db.flush()

    result = await _move(
        db,
        shortlist,
        S.COMPLETED,
        ShortlistEventType.MARKED_PAID,
        actor,
        {"note": note},
        completed_at=now,
        paid_confirmed_by=actor.id,
        paid_confirmed_at=now,
        payment_note=note,
        final_price=shortlist.final_price or shortlist.approved_price,
    )
    if result.success:
        _notify(db, notifier, shortlist, EmailEvent.COMPLETED, outcome=ShortlistOutcome(shortlist.outcome).value)
    return result


# -- side paths -------------------------------------------------------------


async def suggest_adjustment(
    db: AsyncSession,
    shortlist_id: UUID,
    message: str,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Ask the company to adjust the brief. Status is unchanged."""
    if _blank(message):
        return ServiceResult.validation("Message is required")
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if _status(shortlist) not in SEARCH_STATUSES:
        return _status_not_in(shortlist, SEARCH_STATUSES, "suggest an adjustment")

    shortlist.adjustment_suggestion = message.strip()
    shortlist.adjustment_suggested_at = utcnow()
    await db.flush()
    await _record_activity(db, shortlist, ShortlistEventType.ADJUSTMENT_SUGGESTED, actor, {"message": message.strip()})
    _notify(db, notifier, shortlist, EmailEvent.ADJUSTMENT_SUGGESTED, message=message.strip())
    return ServiceResult.ok(shortlist)


async def extend_search(
    db: AsyncSession,
    shortlist_id: UUID,
    message: str,
    extend_days: int | None = None,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    """Push the search deadline out and tell the company. Status is unchanged."""
    if _blank(message):
        return ServiceResult.validation("Message is required")
    days = get_settings().SEARCH_EXTENSION_DEFAULT_DAYS if extend_days is None else extend_days
    if days < 1 or days > MAX_EXTENSION_DAYS:
        return ServiceResult.validation(f"Extension must be between 1 and {MAX_EXTENSION_DAYS} days")
    shortlist = await _load(db, shortlist_id)
    if shortlist is None:
        return ServiceResult.not_found("Shortlist not found")
    if _status(shortlist) not in SEARCH_STATUSES:
        return _status_not_in(shortlist, SEARCH_STATUSES, "extend the search")

    now = utcnow()
    current_deadline = as_utc(shortlist.search_deadline)
    start = current_deadline if current_deadline and current_deadline > now else now
    deadline: datetime = start + timedelta(days=days)
    shortlist.search_extended_at = now
    shortlist.search_deadline = deadline
    shortlist.extension_notes = message.strip()
    await db.flush()
    await _record_activity(
        db,
        shortlist,
        ShortlistEventType.SEARCH_EXTENDED,
        actor,
        {"message": message.strip(), "extend_days": days, "new_deadline": deadline.isoformat()},
    )
    _notify(
        db,
        notifier,
        shortlist,
        EmailEvent.SEARCH_EXTENDED,
        message=message.strip(),
        new_deadline=deadline.isoformat(),
    )
    return ServiceResult.ok(shortlist)


# -- email history ----------------------------------------------------------


async def email_history(db: AsyncSession, shortlist_id: UUID) -> ServiceResult:
    if await db.get(ShortlistRequest, shortlist_id) is None:
        return ServiceResult.not_found("Shortlist not found")
    result = await db.execute(
        select(ShortlistEmail)
        .where(ShortlistEmail.shortlist_request_id == shortlist_id)
        .order_by(ShortlistEmail.sent_at.desc())
    )
    return ServiceResult.ok(list(result.scalars().all()))


async def resend_last_email(
    db: AsyncSession,
    shortlist_id: UUID,
    actor: Actor = SYSTEM_ACTOR,
    notifier: NotificationGateway | None = None,
) -> ServiceResult:
    history = await email_history(db, shortlist_id)
    if not history.success:
        return history
    if not history.data:
        return ServiceResult.validation("No email has been sent for this shortlist yet")
    last = history.data[0]
    queued = (notifier or get_notifier()).notify(
        shortlist_id, EmailEvent(last.event), sent_by=actor.id, is_resend=True
    )
    if not queued:
        return ServiceResult.fail(ErrorKind.PROVIDER, "Email could not be queued, try again later")
    return ServiceResult.ok({"event": EmailEvent(last.event).value, "recipient": last.recipient})


def allowed_next(shortlist: ShortlistRequest) -> list[str]:
    return sorted(s.value for s in allowed_status_transitions(_status(shortlist)))


def candidate_counts(candidates) -> tuple[int, int]:
    """(new, repeated) among the given shortlist candidates."""
    new = sum(1 for c in candidates if c.is_new)
    return new, len(candidates) - new
