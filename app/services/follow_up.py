"""Follow-up detection: links a new request to a similar completed one."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.models.enums import PricingCategory, ShortlistStatus
from app.models.pricing_rule import FollowUpPricingRule
from app.models.shortlist import ShortlistCandidate, ShortlistRequest

logger = structlog.get_logger()

ROLE_EXACT_POINTS = 30
ROLE_PARTIAL_POINTS = 20
SENIORITY_EXACT_POINTS = 20
SENIORITY_UNSPECIFIED_POINTS = 10
REMOTE_POINTS = 10
COUNTRY_POINTS = 5
TECH_STACK_POINTS = 35
TECH_STACK_UNSPECIFIED_POINTS = 15


@dataclass(frozen=True)
class FollowUpDecision:
    pricing_category: PricingCategory
    previous_request_id: UUID | None = None
    previous_created_at: datetime | None = None
    discount_percent: Decimal = Decimal("0")
    similarity: int | None = None


NEW_REQUEST = FollowUpDecision(pricing_category=PricingCategory.NEW)


def calculate_similarity(brief, prior) -> int:
    """Score 0-100 between a new brief and a prior request.

    Both arguments only need role_title, seniority_required, is_remote,
    location_country and tech_stack_required attributes.
    """
    score = 0

    new_role = (brief.role_title or "").strip().lower()
    old_role = (prior.role_title or "").strip().lower()
    if new_role == old_role:
        score += ROLE_EXACT_POINTS
    elif new_role and old_role and (old_role in new_role or new_role in old_role):
        score += ROLE_PARTIAL_POINTS

    if brief.seniority_required is not None and prior.seniority_required is not None:
        if int(brief.seniority_required) == int(prior.seniority_required):
            score += SENIORITY_EXACT_POINTS
    elif brief.seniority_required is None and prior.seniority_required is None:
        score += SENIORITY_UNSPECIFIED_POINTS

    prior_remote = True if prior.is_remote is None else prior.is_remote
    if bool(brief.is_remote) == prior_remote:
        score += REMOTE_POINTS

    if brief.location_country and prior.location_country:
        if brief.location_country.strip().lower() == prior.location_country.strip().lower():
            score += COUNTRY_POINTS

    new_stack = {s.strip().lower() for s in (brief.tech_stack_required or []) if s.strip()}
    old_stack = {s.strip().lower() for s in (prior.tech_stack_required or []) if s.strip()}
    if new_stack and old_stack:
        jaccard = len(new_stack & old_stack) / len(new_stack | old_stack)
        score += int(jaccard * TECH_STACK_POINTS)
    elif not new_stack and not old_stack:
        score += TECH_STACK_UNSPECIFIED_POINTS

    return score


def discount_for_days(rules: list[tuple[int, Decimal]], days_since: int) -> Decimal:
    """Smallest threshold >= days_since wins; no match means no discount."""
    eligible = sorted((t, d) for t, d in rules if t >= days_since)
    if not eligible:
        return Decimal("0")
    return Decimal(eligible[0][1])


async def lookup_discount(db: AsyncSession, previous_created_at: datetime, now: datetime | None = None) -> Decimal:
    now = now or utcnow()
    days_since = int((now - as_utc(previous_created_at)).total_seconds() // 86400)
    result = await db.execute(
        select(FollowUpPricingRule.days_threshold, FollowUpPricingRule.discount_percent).where(
            FollowUpPricingRule.is_active.is_(True)
        )
    )
    return discount_for_days([(row[0], row[1]) for row in result.all()], days_since)


async def detect_follow_up(
    db: AsyncSession,
    company_id: UUID,
    brief,
    previous_request_id: UUID | None = None,
    now: datetime | None = None,
) -> FollowUpDecision:
    """Decide the pricing category and discount for a new brief."""
    settings = get_settings()
    now = now or utcnow()
    similarity = None
    previous = None

    if previous_request_id is None:
        cutoff = now - timedelta(days=settings.FOLLOW_UP_LOOKBACK_DAYS)
        result = await db.execute(
            select(ShortlistRequest)
            .where(
                ShortlistRequest.company_id == company_id,
                ShortlistRequest.status == ShortlistStatus.COMPLETED,
                ShortlistRequest.created_at > cutoff,
            )
            .order_by(ShortlistRequest.created_at.desc())
        )
        for candidate in result.scalars().all():
            score = calculate_similarity(brief, candidate)
            if score >= settings.FOLLOW_UP_SIMILARITY_THRESHOLD:
                previous, similarity = candidate, score
                break
    else:
        result = await db.execute(
            select(ShortlistRequest).where(
                ShortlistRequest.id == previous_request_id,
                ShortlistRequest.company_id == company_id,
                ShortlistRequest.status == ShortlistStatus.COMPLETED,
            )
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            logger.info(
                "follow_up_link_ignored",
                company_id=str(company_id),
                previous_request_id=str(previous_request_id),
            )

    if previous is None:
        return NEW_REQUEST

    discount = await lookup_discount(db, previous.created_at, now)
    logger.info(
        "follow_up_detected",
        company_id=str(company_id),
        previous_request_id=str(previous.id),
        similarity=similarity,
        discount=str(discount),
    )
    return FollowUpDecision(
        pricing_category=PricingCategory.FOLLOW_UP,
        previous_request_id=previous.id,
        previous_created_at=as_utc(previous.created_at),
        discount_percent=discount,
        similarity=similarity,
    )


async def chain_request_ids(db: AsyncSession, previous_request_id: UUID | None) -> list[UUID]:
    """Walk previous_request_id links back to the first request of the chain."""
    chain: list[UUID] = []
    current = previous_request_id
    while current is not None and current not in chain:
        chain.append(current)
        result = await db.execute(
            select(ShortlistRequest.previous_request_id).where(ShortlistRequest.id == current)
        )
        current = result.scalar_one_or_none()
    return chain


async def chain_candidate_ids(db: AsyncSession, previous_request_id: UUID | None) -> dict[UUID, UUID]:
    """Every candidate surfaced anywhere in the chain, mapped to the most recent request that had them."""
    chain = await chain_request_ids(db, previous_request_id)
    if not chain:
        return {}
    result = await db.execute(
        select(ShortlistCandidate.candidate_id, ShortlistCandidate.shortlist_request_id).where(
            ShortlistCandidate.shortlist_request_id.in_(chain)
        )
    )
    order = {request_id: i for i, request_id in enumerate(chain)}
    seen: dict[UUID, UUID] = {}
    for candidate_id, request_id in result.all():
        known = seen.get(candidate_id)
        if known is None or order[request_id] < order[known]:
            seen[candidate_id] = request_id
    return seen
