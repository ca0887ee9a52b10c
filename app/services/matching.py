"""Candidate matching and ranking against a shortlist request."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.models.candidate import Candidate
from app.models.enums import Availability, RemotePreference, SeniorityLevel

logger = structlog.get_logger()

SKILL_WEIGHT = 45.0
SENIORITY_WEIGHT = 15.0
ROLE_WEIGHT = 10.0
ACTIVITY_WEIGHT = 10.0
AVAILABILITY_WEIGHT = 5.0
RECOMMENDATION_WEIGHT = 5.0
LOCATION_WEIGHT = 5.0

LOCATION_MAX_POINTS = 85.0
REMOTE_POINTS = 25.0
SAME_COUNTRY_POINTS = 15.0
SAME_CITY_POINTS = 25.0
TIMEZONE_POINTS = 10.0
RELOCATION_POINTS = 10.0
TIMEZONE_TOLERANCE_HOURS = 2.0

_SENIORITY_DIFF_CREDIT = {0: 1.0, 1: 0.7, 2: 0.4}
_AVAILABILITY_CREDIT = {
    Availability.OPEN: 1.0,
    Availability.PASSIVE: 0.5,
    Availability.NOT_NOW: 0.2,
}
_TOKEN_SPLIT = re.compile(r"[\s\-_/.,;:()&+|]+")
_UTC_OFFSET = re.compile(r"^(?:utc|gmt)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


@dataclass
class CandidateProfile:
    """Read-only view of a pool candidate, detached from the session."""

    id: UUID
    desired_role: str | None = None
    seniority: int | None = None
    availability: Availability = Availability.OPEN
    remote_preference: RemotePreference | None = None
    skills: list[tuple[str, float]] = field(default_factory=list)
    recommendation_count: int = 0
    last_active_at: datetime | None = None
    location_country: str | None = None
    location_city: str | None = None
    location_timezone: str | None = None
    willing_to_relocate: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class MatchResult:
    candidate_id: UUID
    score: float
    reason: str
    is_new: bool = True


def _skill_overlaps(required: str, skill: str) -> bool:
    return required in skill or skill in required


def matched_skills(profile: CandidateProfile, required: list[str]) -> list[str]:
    names = [name.lower() for name, _ in profile.skills]
    return [rs for rs in required if any(_skill_overlaps(rs.lower(), cs) for cs in names)]


def skill_score(profile: CandidateProfile, required: list[str]) -> float:
    if not required:
        return SKILL_WEIGHT / 2
    lowered = [rs.lower() for rs in required]
    matched = matched_skills(profile, required)
    fraction = len(matched) / len(required)
    confidences = [
        confidence
        for name, confidence in profile.skills
        if any(_skill_overlaps(rs, name.lower()) for rs in lowered)
    ]
    avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return (fraction * 0.7 + avg_confidence * 0.3) * SKILL_WEIGHT


def seniority_score(candidate_level: int | None, required_level: int | None) -> float:
    if candidate_level is None or required_level is None:
        return SENIORITY_WEIGHT / 2
    diff = abs(int(candidate_level) - int(required_level))
    return _SENIORITY_DIFF_CREDIT.get(diff, 0.2) * SENIORITY_WEIGHT


def tokenize(text: str) -> set[str]:
    return {token for token in _TOKEN_SPLIT.split(text.lower()) if token}


def role_similarity(role_title: str | None, desired_role: str | None) -> float:
    """Jaccard overlap of title tokens, 0-1."""
    left, right = tokenize(role_title or ""), tokenize(desired_role or "")
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def role_score(role_title: str | None, desired_role: str | None) -> float:
    if not (role_title or "").strip() or not (desired_role or "").strip():
        return ROLE_WEIGHT / 2
    return role_similarity(role_title, desired_role) * ROLE_WEIGHT


def activity_score(last_active_at: datetime | None, now: datetime) -> float:
    if last_active_at is None:
        return 0.1 * ACTIVITY_WEIGHT
    days = (now - as_utc(last_active_at)).total_seconds() / 86400
    if days < 1:
        credit = 1.0
    elif days < 7:
        credit = 0.9
    elif days < 14:
        credit = 0.7
    elif days < 30:
        credit = 0.5
    elif days < 60:
        credit = 0.3
    else:
        credit = 0.1
    return credit * ACTIVITY_WEIGHT


def availability_score(availability: Availability | None) -> float:
    if availability is None:
        return 0.5 * AVAILABILITY_WEIGHT
    return _AVAILABILITY_CREDIT.get(Availability(availability), 0.5) * AVAILABILITY_WEIGHT


def recommendation_score(count: int) -> float:
    if count >= 5:
        credit = 1.0
    elif count >= 3:
        credit = 0.8
    elif count >= 1:
        credit = 0.5
    else:
        credit = 0.0
    return credit * RECOMMENDATION_WEIGHT


def utc_offset_hours(tz: str | None, at: datetime | None = None) -> float | None:
    """Offset in hours for an IANA name or a "UTC+2" style string."""
    if not tz:
        return None
    value = tz.strip()
    match = _UTC_OFFSET.match(value)
    if match:
        sign = -1 if match.group(1) == "-" else 1
        return sign * (int(match.group(2)) + int(match.group(3) or 0) / 60)
    if value.upper() in ("UTC", "GMT", "Z"):
        return 0.0
    try:
        offset = (at or utcnow()).astimezone(ZoneInfo(value)).utcoffset()
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return offset.total_seconds() / 3600 if offset is not None else None


def _same(a: str | None, b: str | None) -> bool:
    return bool(a and b and a.strip().lower() == b.strip().lower())


def location_points(profile: CandidateProfile, request, now: datetime | None = None) -> float:
    """Raw location points, 0 to LOCATION_MAX_POINTS."""
    points = 0.0
    if request.is_remote and profile.remote_preference in (
        RemotePreference.REMOTE,
        RemotePreference.FLEXIBLE,
    ):
        points += REMOTE_POINTS
    if _same(profile.location_country, request.location_country):
        points += SAME_COUNTRY_POINTS
    if _same(profile.location_city, request.location_city):
        points += SAME_CITY_POINTS
    candidate_offset = utc_offset_hours(profile.location_timezone, now)
    request_offset = utc_offset_hours(request.location_timezone, now)
    if candidate_offset is not None and request_offset is not None:
        if abs(candidate_offset - request_offset) <= TIMEZONE_TOLERANCE_HOURS:
            points += TIMEZONE_POINTS
    if profile.willing_to_relocate:
        points += RELOCATION_POINTS
    return min(points, LOCATION_MAX_POINTS)


def location_score(profile: CandidateProfile, request, now: datetime | None = None) -> float:
    return location_points(profile, request, now) / LOCATION_MAX_POINTS * LOCATION_WEIGHT


def score_candidate(profile: CandidateProfile, request, now: datetime | None = None) -> float:
    now = now or utcnow()
    required = list(request.tech_stack_required or [])
    score = (
        skill_score(profile, required)
        + seniority_score(profile.seniority, request.seniority_required)
        + role_score(request.role_title, profile.desired_role)
        + activity_score(profile.last_active_at, now)
        + availability_score(profile.availability)
        + recommendation_score(profile.recommendation_count)
        + location_score(profile, request, now)
    )
    return clamp_score(score)


def clamp_score(score: float) -> float:
    return round(min(100.0, max(0.0, score)), 2)


def _location_phrase(profile: CandidateProfile, request) -> str | None:
    if request.is_remote and profile.remote_preference in (
        RemotePreference.REMOTE,
        RemotePreference.FLEXIBLE,
    ):
        return "Open to remote work"
    if _same(profile.location_city, request.location_city):
        return f"Based in {profile.location_city}"
    if _same(profile.location_country, request.location_country):
        return f"Based in {profile.location_country}"
    if profile.willing_to_relocate:
        return "Willing to relocate"
    return None


def generate_reason(profile: CandidateProfile, request) -> str:
    reasons = []
    required = list(request.tech_stack_required or [])
    if required:
        matched = matched_skills(profile, required)
        if matched:
            reasons.append(
                f"Matches {len(matched)}/{len(required)} required skills: {', '.join(matched[:3])}"
            )
    if profile.seniority is not None:
        try:
            reasons.append(f"{SeniorityLevel(profile.seniority).name.capitalize()} level")
        except ValueError:
            pass
    if profile.availability == Availability.OPEN:
        reasons.append("Actively looking")
    if profile.recommendation_count > 0:
        reasons.append(f"{profile.recommendation_count} recommendation(s)")
    phrase = _location_phrase(profile, request)
    if phrase:
        reasons.append(phrase)
    return ". ".join(reasons) + "." if reasons else ""


def rank_candidates(
    pool: list[CandidateProfile],
    request,
    max_results: int | None = None,
    exclude_candidate_ids=None,
    is_follow_up: bool = False,
    previous_created_at: datetime | None = None,
    now: datetime | None = None,
) -> list[MatchResult]:
    """Score, filter, sort and truncate the pool.

    Ties are broken by candidate id so the order is stable across runs.
    """
    settings = get_settings()
    now = now or utcnow()
    max_results = settings.MATCH_MAX_RESULTS if max_results is None else max_results
    excluded = set(exclude_candidate_ids or ())
    previous_created_at = as_utc(previous_created_at)

    results = []
    for profile in pool:
        if profile.id in excluded:
            continue
        score = score_candidate(profile, request, now)
        if (
            is_follow_up
            and previous_created_at is not None
            and profile.created_at is not None
            and as_utc(profile.created_at) > previous_created_at
        ):
            score = clamp_score(score + settings.FOLLOW_UP_FRESHNESS_BOOST)
        if score <= settings.MATCH_MIN_SCORE:
            continue
        results.append(
            MatchResult(
                candidate_id=profile.id,
                score=score,
                reason=generate_reason(profile, request),
                is_new=True,
            )
        )

    results.sort(key=lambda r: (-r.score, str(r.candidate_id)))
    return results[:max(0, max_results)]


def to_profile(candidate: Candidate) -> CandidateProfile:
    return CandidateProfile(
        id=candidate.id,
        desired_role=candidate.desired_role,
        seniority=candidate.seniority_estimate,
        availability=candidate.availability,
        remote_preference=candidate.remote_preference,
        skills=[(s.skill_name, float(s.confidence_score or 0)) for s in candidate.skills],
        recommendation_count=len(candidate.recommendations),
        last_active_at=candidate.last_active_at,
        location_country=candidate.location_country,
        location_city=candidate.location_city,
        location_timezone=candidate.location_timezone,
        willing_to_relocate=bool(candidate.willing_to_relocate),
        created_at=candidate.created_at,
    )


async def load_candidate_pool(db: AsyncSession) -> list[CandidateProfile]:
    """Visible, opted-in candidates with skills and recommendation counts."""
    result = await db.execute(
        select(Candidate)
        .where(
            Candidate.profile_visible.is_(True),
            Candidate.open_to_opportunities.is_(True),
        )
        .options(selectinload(Candidate.skills), selectinload(Candidate.recommendations))
    )
    return [to_profile(c) for c in result.scalars().all()]


async def find_matches(
    db: AsyncSession,
    request,
    max_results: int | None = None,
    exclude_candidate_ids=None,
    is_follow_up: bool = False,
    previous_created_at: datetime | None = None,
) -> list[MatchResult]:
    pool = await load_candidate_pool(db)
    matches = rank_candidates(
        pool,
        request,
        max_results=max_results,
        exclude_candidate_ids=exclude_candidate_ids,
        is_follow_up=is_follow_up,
        previous_created_at=previous_created_at,
    )
    logger.info(
        "find_matches",
        shortlist_id=str(getattr(request, "id", "")),
        pool_size=len(pool),
        excluded=len(exclude_candidate_ids or ()),
        matches_count=len(matches),
    )
    return matches
