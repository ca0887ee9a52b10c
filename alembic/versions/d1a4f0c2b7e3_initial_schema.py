"""initial shortlist marketplace schema

Revision ID: d1a4f0c2b7e3
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "d1a4f0c2b7e3"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
ENUM = sa.String(30)

DEFAULT_PRICING_RULES = [(7, Decimal("30")), (14, Decimal("20")), (30, Decimal("10"))]


def _ts(name: str, nullable: bool = True, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kw)


def _lock_outcome() -> None:
    """Refuse any change to a shortlist outcome once it left 'pending'."""
    if op.get_bind().dialect.name != "postgresql":
        return
    op.execute(
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
    op.execute(
        "CREATE TRIGGER trg_shortlist_outcome_locked BEFORE UPDATE OF outcome ON shortlist_requests "
        "FOR EACH ROW EXECUTE FUNCTION shortlist_outcome_locked()"
    )


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        _ts("created_at", nullable=False),
    )

    op.create_table(
        "candidates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("first_name", sa.String(255)),
        sa.Column("last_name", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("desired_role", sa.String(255)),
        sa.Column("seniority_estimate", sa.Integer()),
        sa.Column("availability", ENUM, nullable=False),
        sa.Column("remote_preference", ENUM),
        sa.Column("profile_visible", sa.Boolean(), nullable=False),
        sa.Column("open_to_opportunities", sa.Boolean(), nullable=False),
        sa.Column("location_country", sa.String(100)),
        sa.Column("location_city", sa.String(100)),
        sa.Column("location_timezone", sa.String(64)),
        sa.Column("willing_to_relocate", sa.Boolean(), nullable=False),
        _ts("last_active_at", nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_table(
        "candidate_skills",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("candidate_id", sa.Uuid(), sa.ForeignKey("candidates.id"), nullable=False, index=True),
        sa.Column("skill_name", sa.String(100), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
    )
    op.create_table(
        "candidate_recommendations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("candidate_id", sa.Uuid(), sa.ForeignKey("candidates.id"), nullable=False, index=True),
        sa.Column("recommender_name", sa.String(255), nullable=False),
        _ts("created_at", nullable=False),
    )

    op.create_table(
        "shortlist_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("companies.id"), nullable=False, index=True),
        sa.Column("role_title", sa.String(255), nullable=False),
        sa.Column("tech_stack_required", JSON, nullable=False),
        sa.Column("seniority_required", sa.Integer()),
        sa.Column("is_remote", sa.Boolean(), nullable=False),
        sa.Column("location_country", sa.String(100)),
        sa.Column("location_city", sa.String(100)),
        sa.Column("location_timezone", sa.String(64)),
        sa.Column("additional_notes", sa.Text()),
        sa.Column("status", ENUM, nullable=False, index=True),
        sa.Column("outcome", ENUM, nullable=False, index=True),
        sa.Column("outcome_reason", sa.Text()),
        _ts("outcome_decided_at"),
        sa.Column("outcome_decided_by", sa.Uuid()),
        sa.Column("pricing_category", ENUM, nullable=False),
        sa.Column("follow_up_discount", sa.Numeric(5, 2), nullable=False),
        sa.Column(
            "previous_request_id", sa.Uuid(), sa.ForeignKey("shortlist_requests.id"), nullable=True, index=True
        ),
        sa.Column("suggested_price", sa.Numeric(10, 2)),
        sa.Column("pricing_factors", JSON),
        sa.Column("is_rare_role", sa.Boolean(), nullable=False),
        sa.Column("proposed_price", sa.Numeric(10, 2)),
        sa.Column("proposed_candidates", sa.Integer()),
        sa.Column("scope_notes", sa.Text()),
        sa.Column("approved_price", sa.Numeric(10, 2)),
        sa.Column("final_price", sa.Numeric(10, 2)),
        sa.Column("price_overridden", sa.Boolean(), nullable=False),
        sa.Column("price_currency", sa.String(3), nullable=False),
        _ts("pricing_approved_at"),
        _ts("declined_at"),
        sa.Column("decline_reason", sa.Text()),
        sa.Column("payment_id", sa.Uuid(), index=True),
        sa.Column("candidates_requested", sa.Integer()),
        sa.Column("candidates_delivered", sa.Integer()),
        _ts("delivered_at"),
        _ts("completed_at"),
        sa.Column("paid_confirmed_by", sa.Uuid()),
        _ts("paid_confirmed_at"),
        sa.Column("payment_note", sa.Text()),
        sa.Column("adjustment_suggestion", sa.Text()),
        _ts("adjustment_suggested_at"),
        _ts("search_extended_at"),
        _ts("search_deadline"),
        sa.Column("extension_notes", sa.Text()),
        _ts("cancelled_at"),
        sa.Column("cancellation_reason", sa.Text()),
        _ts("created_at", nullable=False, index=True),
        sa.CheckConstraint("outcome = 'pending' OR outcome_reason IS NOT NULL", name="ck_shortlist_outcome_reason"),
    )
    _lock_outcome()
    op.create_table(
        "shortlist_candidates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "shortlist_request_id", sa.Uuid(), sa.ForeignKey("shortlist_requests.id"), nullable=False, index=True
        ),
        sa.Column("candidate_id", sa.Uuid(), sa.ForeignKey("candidates.id"), nullable=False, index=True),
        sa.Column("match_score", sa.Float(), nullable=False),
        sa.Column("match_reason", sa.Text()),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("admin_approved", sa.Boolean(), nullable=False),
        sa.Column("is_new", sa.Boolean(), nullable=False),
        sa.Column("previously_recommended_in", sa.Uuid(), sa.ForeignKey("shortlist_requests.id")),
        sa.Column("re_inclusion_reason", sa.String(255)),
        _ts("added_at", nullable=False),
        sa.UniqueConstraint("shortlist_request_id", "candidate_id", name="uq_shortlist_candidate"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("companies.id"), nullable=False, index=True),
        sa.Column(
            "shortlist_request_id", sa.Uuid(), sa.ForeignKey("shortlist_requests.id"), nullable=False, index=True
        ),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("provider_reference", sa.String(255), index=True),
        sa.Column("client_handle", sa.Text()),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("amount_authorized", sa.Numeric(10, 2), nullable=False),
        sa.Column("amount_captured", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", ENUM, nullable=False, index=True),
        sa.Column("error_message", sa.Text()),
        _ts("authorized_at"),
        _ts("captured_at"),
        _ts("released_at"),
        _ts("expired_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_table(
        "payment_audit_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("payment_id", sa.Uuid(), sa.ForeignKey("payments.id"), nullable=False, index=True),
        sa.Column("previous_status", ENUM),
        sa.Column("new_status", ENUM, nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("context", JSON),
        _ts("created_at", nullable=False, index=True),
    )

    pricing_rules = op.create_table(
        "follow_up_pricing_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("days_threshold", sa.Integer(), nullable=False, unique=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at", nullable=False),
    )

    op.create_table(
        "shortlist_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "shortlist_request_id", sa.Uuid(), sa.ForeignKey("shortlist_requests.id"), nullable=False, index=True
        ),
        sa.Column("event_type", ENUM, nullable=False),
        sa.Column("previous_status", ENUM),
        sa.Column("new_status", ENUM),
        sa.Column("actor_id", sa.Uuid()),
        sa.Column("actor_type", ENUM, nullable=False),
        sa.Column("metadata", JSON),
        _ts("created_at", nullable=False, index=True),
    )
    op.create_table(
        "shortlist_emails",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "shortlist_request_id", sa.Uuid(), sa.ForeignKey("shortlist_requests.id"), nullable=False, index=True
        ),
        sa.Column("event", ENUM, nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("is_resend", sa.Boolean(), nullable=False),
        sa.Column("sent_by", sa.Uuid()),
        _ts("sent_at", nullable=False, index=True),
    )

    now = datetime.now(timezone.utc)
    op.bulk_insert(
        pricing_rules,
        [
            {
                "id": uuid.uuid4(),
                "days_threshold": days,
                "discount_percent": discount,
                "is_active": True,
                "created_at": now,
            }
            for days, discount in DEFAULT_PRICING_RULES
        ],
    )


def downgrade() -> None:
    op.drop_table("shortlist_emails")
    op.drop_table("shortlist_events")
    op.drop_table("follow_up_pricing_rules")
    op.drop_table("payment_audit_entries")
    op.drop_table("payments")
    op.drop_table("shortlist_candidates")
    op.drop_table("shortlist_requests")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS shortlist_outcome_locked()")
    op.drop_table("candidate_recommendations")
    op.drop_table("candidate_skills")
    op.drop_table("candidates")
    op.drop_table("companies")
