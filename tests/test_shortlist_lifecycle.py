import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.core.clock import as_utc
from app.models.enums import (
    EmailEvent,
    PaymentStatus,
    PricingCategory,
    ShortlistEventType,
    ShortlistOutcome,
    ShortlistStatus,
)
from app.models.shortlist import OutcomeLockedError, ShortlistCandidate, ShortlistRequest
from app.models.shortlist_email import ShortlistEmail
from app.schemas.shortlist import RankingItem
from app.services import payments, shortlists
from app.services.audit import list_events
from app.services.results import ErrorKind
from tests.conftest import (
    ADMIN,
    add_candidate,
    authorized,
    brief,
    delivered,
    priced,
    reload,
    reload_payment,
    submitted,
)


# -- submission and matching ------------------------------------------------


@pytest.mark.asyncio
async def test_new_request_is_submitted_with_no_discount(db_session, company_data, pricing_rules):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    assert shortlist.status == ShortlistStatus.SUBMITTED
    assert shortlist.outcome == ShortlistOutcome.PENDING
    assert shortlist.pricing_category == PricingCategory.NEW
    assert shortlist.follow_up_discount == Decimal("0")
    events = await list_events(db_session, shortlist.id)
    assert [e.event_type for e in events] == [ShortlistEventType.CREATED]


@pytest.mark.asyncio
async def test_blank_role_title_is_rejected(db_session, company_data):
    company, _ = company_data
    result = await shortlists.create_request(db_session, company.id, brief(role_title="   "))

    assert not result.success
    assert result.error_kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_process_attaches_ranked_matches(db_session, company_data, candidate_pool):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    result = await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()

    assert result.success
    rows = result.data
    assert {row.candidate_id for row in rows} == {c.id for c in candidate_pool}
    assert [row.rank for row in rows] == [1, 2, 3]
    scores = [row.match_score for row in rows]
    assert scores == sorted(scores, reverse=True)
    assert all(20 < s <= 100 for s in scores)
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.PROCESSING


@pytest.mark.asyncio
async def test_processing_again_only_adds_new_candidates(db_session, company_data, candidate_pool):
    company, _ = company_data
    shortlist = await submitted(db_session, company)
    await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()
    late = await add_candidate(db_session, first_name="Late")

    rerun = await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()

    assert [row.candidate_id for row in rerun.data] == [late.id]
    assert rerun.data[0].rank == 4
    assert len((await reload(db_session, shortlist.id)).candidates) == 4


@pytest.mark.asyncio
async def test_follow_up_request_gets_discount_and_excludes_prior_candidates(
    db_session, company_data, pricing_rules
):
    company, _ = company_data
    go_skills = (("Go", 0.9), ("Kubernetes", 0.8))
    seen = await add_candidate(db_session, first_name="Seen", desired_role="Go Engineer", skills=go_skills)
    fresh = await add_candidate(db_session, first_name="Fresh", desired_role="Go Engineer", skills=go_skills)
    previous = ShortlistRequest(
        company_id=company.id,
        role_title="Go Engineer",
        tech_stack_required=["Go", "Kubernetes"],
        seniority_required=2,
        is_remote=True,
        status=ShortlistStatus.COMPLETED,
        created_at=datetime.now(timezone.utc) - timedelta(days=5),
    )
    db_session.add(previous)
    await db_session.flush()
    db_session.add(
        ShortlistCandidate(shortlist_request_id=previous.id, candidate_id=seen.id, match_score=90.0, rank=1)
    )
    await db_session.commit()

    shortlist = await submitted(
        db_session, company, role_title="Senior Go Engineer", tech_stack_required=["Go", "Kubernetes"]
    )
    assert shortlist.pricing_category == PricingCategory.FOLLOW_UP
    assert shortlist.previous_request_id == previous.id
    assert shortlist.follow_up_discount == Decimal("30")

    processed = await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()
    matched = {row.candidate_id for row in processed.data}
    assert seen.id not in matched
    assert fresh.id in matched


@pytest.mark.asyncio
async def test_reinclude_requires_reason_and_prior_recommendation(db_session, company_data, candidate_pool):
    company, _ = company_data
    first, second, third = candidate_pool
    previous = ShortlistRequest(
        company_id=company.id,
        role_title="Backend Engineer",
        tech_stack_required=["Python", "PostgreSQL"],
        seniority_required=2,
        status=ShortlistStatus.COMPLETED,
    )
    db_session.add(previous)
    await db_session.flush()
    db_session.add(
        ShortlistCandidate(shortlist_request_id=previous.id, candidate_id=first.id, match_score=90.0, rank=1)
    )
    await db_session.commit()
    shortlist = await submitted(db_session, company, previous_request_id=previous.id)
    await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()

    missing_reason = await shortlists.reinclude_candidate(db_session, shortlist.id, first.id, " ", ADMIN)
    assert missing_reason.error_kind == ErrorKind.VALIDATION

    never_seen = await shortlists.reinclude_candidate(db_session, shortlist.id, second.id, "Strong fit", ADMIN)
    assert never_seen.error_kind == ErrorKind.NOT_FOUND

    result = await shortlists.reinclude_candidate(db_session, shortlist.id, first.id, "Client asked for them", ADMIN)
    await db_session.commit()
    assert result.success
    assert result.data.is_new is False
    assert result.data.previously_recommended_in == previous.id
    assert result.data.re_inclusion_reason == "Client asked for them"
    assert shortlists.candidate_counts((await reload(db_session, shortlist.id)).candidates) == (2, 1)


@pytest.mark.asyncio
async def test_reinclude_only_for_follow_ups(db_session, company_data, candidate_pool):
    company, _ = company_data
    shortlist = await submitted(db_session, company)
    await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()

    result = await shortlists.reinclude_candidate(db_session, shortlist.id, candidate_pool[0].id, "reason", ADMIN)

    assert result.error_kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_update_rankings_rejects_unknown_candidate(db_session, company_data, candidate_pool):
    company, _ = company_data
    shortlist = await submitted(db_session, company)
    await shortlists.process(db_session, shortlist.id, ADMIN)
    await db_session.commit()

    result = await shortlists.update_rankings(
        db_session, shortlist.id, [RankingItem(candidate_id=uuid.uuid4(), admin_approved=True)], ADMIN
    )

    assert result.error_kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_suggest_price_uses_approved_count_and_discount(db_session, company_data, candidate_pool):
    company, _ = company_data
    shortlist = await submitted(db_session, company)
    processed = await shortlists.process(db_session, shortlist.id, ADMIN)
    await shortlists.update_rankings(
        db_session,
        shortlist.id,
        [RankingItem(candidate_id=row.candidate_id, admin_approved=True) for row in processed.data],
        ADMIN,
    )
    await db_session.commit()

    result = await shortlists.suggest_price(db_session, shortlist.id, is_rare=True)

    assert result.success
    breakdown = result.data["breakdown"]
    assert breakdown.candidate_count == 3
    assert breakdown.size_adjustment == Decimal("-50")
    assert breakdown.suggested_price >= Decimal("200")
    assert result.data["discounted_price"] == breakdown.suggested_price


# -- pricing negotiation ----------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("price,count", [("0", 6), ("-10", 6), ("500", 0)])
async def test_propose_scope_rejects_non_positive_values(db_session, company_data, notifier, price, count):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    result = await shortlists.propose_scope(db_session, shortlist.id, Decimal(price), count, notifier=notifier)

    assert result.error_kind == ErrorKind.VALIDATION
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.SUBMITTED
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_propose_then_decline_returns_to_processing(db_session, company_data, candidate_pool, notifier):
    company, _ = company_data
    shortlist = await priced(db_session, company, notifier)
    assert notifier.events() == [EmailEvent.PRICING_READY]

    result = await shortlists.decline_pricing(db_session, shortlist.id, company.id, "Too expensive", notifier=notifier)
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.PROCESSING
    assert current.decline_reason == "Too expensive"
    assert notifier.events()[-1] == EmailEvent.PRICING_DECLINED


@pytest.mark.asyncio
async def test_price_estimate_applies_follow_up_discount_until_proposed(
    db_session, company_data, other_company_data, pricing_rules, notifier
):
    company, _ = company_data
    other, _ = other_company_data
    previous = ShortlistRequest(
        company_id=company.id,
        role_title="Backend Engineer",
        tech_stack_required=["Python", "PostgreSQL"],
        seniority_required=2,
        status=ShortlistStatus.COMPLETED,
        created_at=datetime.now(timezone.utc) - timedelta(days=5),
    )
    db_session.add(previous)
    await db_session.commit()
    shortlist = await submitted(db_session, company, previous_request_id=previous.id)

    estimate = (await shortlists.price_estimate(db_session, shortlist.id, company.id)).data
    assert estimate["pricing_category"] == PricingCategory.FOLLOW_UP
    assert estimate["candidates_requested"] == 0
    assert estimate["base_price"] == Decimal("450")
    assert estimate["follow_up_discount"] == Decimal("30")
    assert estimate["discount_amount"] == Decimal("135.00")
    assert estimate["final_price"] == Decimal("315.00")
    assert estimate["is_proposed"] is False

    await shortlists.propose_scope(db_session, shortlist.id, Decimal("400"), 6, actor=ADMIN, notifier=notifier)
    await db_session.commit()
    proposed = (await shortlists.price_estimate(db_session, shortlist.id, company.id)).data
    assert proposed["candidates_requested"] == 6
    assert proposed["base_price"] == Decimal("500")
    assert proposed["final_price"] == Decimal("400")
    assert proposed["is_proposed"] is True

    foreign = await shortlists.price_estimate(db_session, shortlist.id, other.id)
    assert foreign.error_kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_pending_scope_proposals_lists_only_open_proposals(
    db_session, company_data, other_company_data, candidate_pool, notifier
):
    company, _ = company_data
    other, _ = other_company_data
    proposal = await priced(db_session, company, notifier)
    await submitted(db_session, company, role_title="Data Engineer")
    await submitted(db_session, other)

    pending = await shortlists.pending_scope_proposals(db_session, company.id)
    assert [s.id for s in pending] == [proposal.id]
    assert await shortlists.pending_scope_proposals(db_session, other.id) == []

    await shortlists.decline_pricing(db_session, proposal.id, company.id, "Too expensive", notifier=notifier)
    await db_session.commit()
    assert await shortlists.pending_scope_proposals(db_session, company.id) == []


@pytest.mark.asyncio
async def test_approve_requires_explicit_confirmation(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist = await priced(db_session, company, notifier)

    result = await shortlists.approve_pricing(db_session, shortlist.id, company.id, False)

    assert result.error_kind == ErrorKind.VALIDATION
    assert provider.called("authorize") == []


@pytest.mark.asyncio
async def test_approve_from_other_company_is_not_found(
    db_session, company_data, other_company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    other, _ = other_company_data
    shortlist = await priced(db_session, company, notifier)

    result = await shortlists.approve_pricing(db_session, shortlist.id, other.id, True)

    assert result.error_kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_failed_authorization_keeps_pricing_approved(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist = await priced(db_session, company, notifier)
    provider.fail_authorize = True

    result = await shortlists.approve_pricing(db_session, shortlist.id, company.id, True, notifier=notifier)
    await db_session.rollback()

    assert result.error_kind == ErrorKind.PROVIDER
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.PRICING_APPROVED
    assert current.payment_id is None
    payment = await payments.latest_payment(db_session, shortlist.id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.error_message == "Your card was declined."
    assert EmailEvent.AUTHORIZATION_REQUIRED not in notifier.events()

    provider.fail_authorize = False
    retry = await shortlists.start_authorization(db_session, shortlist.id, company.id, notifier=notifier)
    await db_session.commit()
    assert retry.success
    assert retry.data.status == PaymentStatus.PENDING_APPROVAL
    assert notifier.events()[-1] == EmailEvent.AUTHORIZATION_REQUIRED


# -- example flows ----------------------------------------------------------


@pytest.mark.asyncio
async def test_fulfilled_flow_captures_full_amount(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist = await priced(db_session, company, notifier, price="500", count=6)

    approved = await shortlists.approve_pricing(db_session, shortlist.id, company.id, True, notifier=notifier)
    await db_session.commit()
    assert approved.success
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.PRICING_APPROVED
    assert approved.data.amount_authorized == Decimal("500")

    confirmed = await shortlists.confirm_payment(db_session, shortlist.id, company.id)
    await db_session.commit()
    assert confirmed.data.status == PaymentStatus.AUTHORIZED
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.AUTHORIZED

    await shortlists.deliver(db_session, shortlist.id, actor=ADMIN, notifier=notifier)
    await db_session.commit()
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.DELIVERED

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.DELIVERED, "All candidates accepted", actor=ADMIN, notifier=notifier
    )
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.COMPLETED
    assert current.outcome == ShortlistOutcome.DELIVERED
    assert current.final_price == Decimal("500")
    payment = await reload_payment(db_session, approved.data.id)
    assert payment.status == PaymentStatus.CAPTURED
    assert payment.amount_captured == Decimal("500")
    assert provider.called("capture_full")[0][2] == Decimal("500")
    assert notifier.events() == [
        EmailEvent.PRICING_READY,
        EmailEvent.AUTHORIZATION_REQUIRED,
        EmailEvent.DELIVERED,
        EmailEvent.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_no_match_outcome_releases_and_locks(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, payment = await delivered(db_session, company, notifier, provider)

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.NO_MATCH, "Nobody passed screening", actor=ADMIN, notifier=notifier
    )
    await db_session.commit()

    assert result.success
    payment = await reload_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.RELEASED
    assert payment.amount_captured == Decimal("0")
    assert provider.called("capture_full") == []
    assert notifier.events()[-1] == EmailEvent.NO_MATCH

    again = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Changed my mind", actor=ADMIN
    )
    assert again.error_kind == ErrorKind.ILLEGAL_TRANSITION
    assert again.current == ShortlistOutcome.NO_MATCH.value
    assert again.allowed == []


@pytest.mark.asyncio
async def test_outcome_column_is_write_once(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, _ = await delivered(db_session, company, notifier, provider)
    await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Done", actor=ADMIN)
    await db_session.commit()

    current = await reload(db_session, shortlist.id)
    with pytest.raises(OutcomeLockedError):
        current.outcome = ShortlistOutcome.PARTIAL


@pytest.mark.asyncio
async def test_database_refuses_bulk_rewrite_of_final_outcome(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, _ = await delivered(db_session, company, notifier, provider)
    shortlist_id = shortlist.id
    await shortlists.decide_outcome(db_session, shortlist_id, ShortlistOutcome.NO_MATCH, "None fit", actor=ADMIN)
    await db_session.commit()

    with pytest.raises(IntegrityError):
        await db_session.execute(
            update(ShortlistRequest)
            .where(ShortlistRequest.id == shortlist_id)
            .values(outcome=ShortlistOutcome.DELIVERED, outcome_reason="Rewritten")
        )
    await db_session.rollback()

    current = await reload(db_session, shortlist_id)
    assert current.outcome == ShortlistOutcome.NO_MATCH
    assert current.outcome_reason == "None fit"


@pytest.mark.asyncio
async def test_database_requires_reason_for_final_outcome(db_session, company_data):
    company, _ = company_data
    shortlist_id = (await submitted(db_session, company)).id

    with pytest.raises(IntegrityError):
        await db_session.execute(
            update(ShortlistRequest)
            .where(ShortlistRequest.id == shortlist_id)
            .values(outcome=ShortlistOutcome.CANCELLED, outcome_reason=None)
        )
    await db_session.rollback()

    current = await reload(db_session, shortlist_id)
    assert current.outcome == ShortlistOutcome.PENDING


@pytest.mark.asyncio
async def test_completed_request_cannot_go_back_to_processing(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, _ = await delivered(db_session, company, notifier, provider)
    await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Done", actor=ADMIN)
    await db_session.commit()

    result = await shortlists.process(db_session, shortlist.id, ADMIN)

    assert result.error_kind == ErrorKind.ILLEGAL_TRANSITION
    assert result.current == ShortlistStatus.COMPLETED.value
    assert result.allowed == []


@pytest.mark.asyncio
async def test_partial_outcome_defaults_to_shortfall_discount(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    # six requested, three approved and delivered
    shortlist, payment = await delivered(db_session, company, notifier, provider, price="600", count=6)

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.PARTIAL, "Half the slate", actor=ADMIN
    )
    await db_session.commit()

    assert result.success
    payment = await reload_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.PARTIAL
    assert payment.amount_captured == Decimal("300")
    assert (await reload(db_session, shortlist.id)).final_price == Decimal("300")


@pytest.mark.asyncio
async def test_partial_outcome_with_explicit_discount(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, payment = await delivered(db_session, company, notifier, provider, price="500", count=3)

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.PARTIAL, "Two hires", discount_percent=Decimal("20"), actor=ADMIN
    )
    await db_session.commit()

    assert result.success
    assert (await reload_payment(db_session, payment.id)).amount_captured == Decimal("400")


@pytest.mark.asyncio
async def test_partial_override_above_authorized_is_rejected(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, payment = await delivered(db_session, company, notifier, provider)

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.PARTIAL, "Too much", override_amount=Decimal("900"), actor=ADMIN
    )

    assert result.error_kind == ErrorKind.VALIDATION
    assert provider.called("capture_partial") == []


@pytest.mark.asyncio
async def test_capture_failure_leaves_shortlist_delivered(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, payment = await delivered(db_session, company, notifier, provider)
    provider.fail_capture = True

    result = await shortlists.decide_outcome(
        db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Done", actor=ADMIN, notifier=notifier
    )
    await db_session.rollback()

    assert result.error_kind == ErrorKind.PROVIDER
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.DELIVERED
    assert current.outcome == ShortlistOutcome.PENDING
    payment = await reload_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.amount_captured == Decimal("0")
    assert notifier.events()[-1] == EmailEvent.DELIVERED

    # the hold is gone, so settlement falls to the manual path
    retry = await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Retry", actor=ADMIN)
    assert retry.error_kind == ErrorKind.VALIDATION
    paid = await shortlists.mark_paid(db_session, shortlist.id, "Wire transfer received", actor=ADMIN)
    await db_session.commit()
    assert paid.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.COMPLETED
    assert current.paid_confirmed_by == ADMIN.id


@pytest.mark.asyncio
async def test_outcome_requires_reason(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, _ = await delivered(db_session, company, notifier, provider)

    result = await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.NO_MATCH, "", actor=ADMIN)

    assert result.error_kind == ErrorKind.VALIDATION
    assert provider.called("release") == []


@pytest.mark.asyncio
async def test_outcome_before_delivery_is_illegal(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, _ = await authorized(db_session, company, notifier, provider)

    result = await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.DELIVERED, "Early", actor=ADMIN)

    assert result.error_kind == ErrorKind.ILLEGAL_TRANSITION
    assert result.allowed == sorted([ShortlistStatus.DELIVERED.value, ShortlistStatus.CANCELLED.value])


# -- delivery ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_deliver_records_counts_and_override(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, _ = await authorized(db_session, company, notifier, provider)

    too_high = await shortlists.deliver(db_session, shortlist.id, override_price=Decimal("750"), actor=ADMIN)
    assert too_high.error_kind == ErrorKind.VALIDATION

    result = await shortlists.deliver(
        db_session, shortlist.id, candidates_requested=5, candidates_delivered=4, override_price=Decimal("450"), actor=ADMIN
    )
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.DELIVERED
    assert (current.candidates_requested, current.candidates_delivered) == (5, 4)
    assert current.final_price == Decimal("450")
    assert current.price_overridden is True


@pytest.mark.asyncio
async def test_partial_outcome_uses_delivery_override(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, payment = await authorized(db_session, company, notifier, provider)
    await shortlists.deliver(db_session, shortlist.id, override_price=Decimal("420"), actor=ADMIN)
    await db_session.commit()

    await shortlists.decide_outcome(db_session, shortlist.id, ShortlistOutcome.PARTIAL, "Agreed", actor=ADMIN)
    await db_session.commit()

    assert (await reload_payment(db_session, payment.id)).amount_captured == Decimal("420")


# -- no-match, cancel and manual settlement ---------------------------------


@pytest.mark.asyncio
async def test_mark_no_match_before_delivery_releases_and_cancels(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, payment = await authorized(db_session, company, notifier, provider)

    missing = await shortlists.mark_no_match(db_session, shortlist.id, "  ", actor=ADMIN)
    assert missing.error_kind == ErrorKind.VALIDATION

    result = await shortlists.mark_no_match(db_session, shortlist.id, "Market too thin", actor=ADMIN, notifier=notifier)
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.CANCELLED
    assert current.outcome == ShortlistOutcome.NO_MATCH
    payment = await reload_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.RELEASED
    assert payment.amount_captured == Decimal("0")
    assert provider.called("release")
    assert notifier.events()[-1] == EmailEvent.NO_MATCH


@pytest.mark.asyncio
async def test_mark_no_match_after_delivery_completes(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, payment = await delivered(db_session, company, notifier, provider)

    result = await shortlists.mark_no_match(db_session, shortlist.id, "Nobody fit", actor=ADMIN)
    await db_session.commit()

    assert result.success
    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.COMPLETED
    assert (await reload_payment(db_session, payment.id)).status == PaymentStatus.RELEASED


@pytest.mark.asyncio
async def test_cancel_releases_authorized_hold(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, payment = await authorized(db_session, company, notifier, provider)

    result = await shortlists.cancel(db_session, shortlist.id, "Role filled internally", company_id=company.id)
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.CANCELLED
    assert current.outcome == ShortlistOutcome.CANCELLED
    assert (await reload_payment(db_session, payment.id)).status == PaymentStatus.RELEASED


@pytest.mark.asyncio
async def test_cancel_release_failure_changes_nothing_on_shortlist(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, payment = await authorized(db_session, company, notifier, provider)
    provider.fail_release = True

    result = await shortlists.cancel(db_session, shortlist.id, "Budget cut")
    await db_session.rollback()

    assert result.error_kind == ErrorKind.PROVIDER
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.AUTHORIZED
    assert current.outcome == ShortlistOutcome.PENDING
    assert (await reload_payment(db_session, payment.id)).status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_cancel_abandons_pending_authorization(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist = await priced(db_session, company, notifier)
    approved = await shortlists.approve_pricing(db_session, shortlist.id, company.id, True)
    await db_session.commit()

    result = await shortlists.cancel(db_session, shortlist.id, "Changed plans")
    await db_session.commit()

    assert result.success
    payment = await reload_payment(db_session, approved.data.id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.error_message == "Abandoned: Changed plans"


@pytest.mark.asyncio
async def test_cancel_requires_reason_and_rejects_completed(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist = await submitted(db_session, company)
    assert (await shortlists.cancel(db_session, shortlist.id, "")).error_kind == ErrorKind.VALIDATION

    done, _ = await delivered(db_session, company, notifier, provider)
    await shortlists.decide_outcome(db_session, done.id, ShortlistOutcome.DELIVERED, "Done", actor=ADMIN)
    await db_session.commit()

    result = await shortlists.cancel(db_session, done.id, "Too late")
    assert result.error_kind == ErrorKind.ILLEGAL_TRANSITION


@pytest.mark.asyncio
async def test_mark_paid_rejected_while_hold_is_authorized(
    db_session, company_data, candidate_pool, notifier, provider
):
    company, _ = company_data
    shortlist, _ = await delivered(db_session, company, notifier, provider)

    result = await shortlists.mark_paid(db_session, shortlist.id, "Paid by invoice", actor=ADMIN)

    assert result.error_kind == ErrorKind.VALIDATION


# -- side paths -------------------------------------------------------------


@pytest.mark.asyncio
async def test_suggest_adjustment_keeps_status(db_session, company_data, notifier):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    result = await shortlists.suggest_adjustment(
        db_session, shortlist.id, "Consider mid-level engineers", actor=ADMIN, notifier=notifier
    )
    await db_session.commit()

    assert result.success
    current = await reload(db_session, shortlist.id)
    assert current.status == ShortlistStatus.SUBMITTED
    assert current.adjustment_suggestion == "Consider mid-level engineers"
    assert notifier.events() == [EmailEvent.ADJUSTMENT_SUGGESTED]
    events = await list_events(db_session, shortlist.id)
    assert events[-1].event_type == ShortlistEventType.ADJUSTMENT_SUGGESTED
    assert events[-1].previous_status == events[-1].new_status == ShortlistStatus.SUBMITTED


@pytest.mark.asyncio
async def test_extend_search_stacks_deadlines(db_session, company_data, notifier):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    bad = await shortlists.extend_search(db_session, shortlist.id, "More time", extend_days=31)
    assert bad.error_kind == ErrorKind.VALIDATION

    await shortlists.extend_search(db_session, shortlist.id, "More time", extend_days=10, notifier=notifier)
    await db_session.commit()
    first = as_utc((await reload(db_session, shortlist.id)).search_deadline)
    await shortlists.extend_search(db_session, shortlist.id, "Even more", extend_days=5, notifier=notifier)
    await db_session.commit()
    second = as_utc((await reload(db_session, shortlist.id)).search_deadline)

    assert abs((second - first) - timedelta(days=5)) < timedelta(seconds=1)
    assert notifier.events() == [EmailEvent.SEARCH_EXTENDED, EmailEvent.SEARCH_EXTENDED]


@pytest.mark.asyncio
async def test_side_paths_rejected_after_authorization(db_session, company_data, candidate_pool, notifier, provider):
    company, _ = company_data
    shortlist, _ = await authorized(db_session, company, notifier, provider)

    result = await shortlists.extend_search(db_session, shortlist.id, "More time")

    assert result.error_kind == ErrorKind.ILLEGAL_TRANSITION
    assert result.current == ShortlistStatus.AUTHORIZED.value


@pytest.mark.asyncio
async def test_broken_notifier_does_not_fail_operations(db_session, company_data, candidate_pool, notifier):
    company, _ = company_data
    notifier.broken = True

    shortlist = await priced(db_session, company, notifier)

    assert (await reload(db_session, shortlist.id)).status == ShortlistStatus.PRICING_PENDING
    assert notifier.sent == []


# -- email history ----------------------------------------------------------


@pytest.mark.asyncio
async def test_resend_last_email(db_session, company_data, notifier):
    company, _ = company_data
    shortlist = await submitted(db_session, company)

    nothing = await shortlists.resend_last_email(db_session, shortlist.id, ADMIN, notifier)
    assert nothing.error_kind == ErrorKind.VALIDATION

    db_session.add(
        ShortlistEmail(
            shortlist_request_id=shortlist.id,
            event=EmailEvent.PRICING_READY,
            recipient=company.email,
            subject="Your shortlist pricing is ready",
        )
    )
    await db_session.commit()

    result = await shortlists.resend_last_email(db_session, shortlist.id, ADMIN, notifier)

    assert result.data == {"event": "pricing_ready", "recipient": company.email}
    assert notifier.sent[-1]["is_resend"] is True
    assert notifier.sent[-1]["sent_by"] == ADMIN.id

    notifier.broken = True
    failed = await shortlists.resend_last_email(db_session, shortlist.id, ADMIN, notifier)
    assert failed.error_kind == ErrorKind.PROVIDER
