"""Seed the database with demo companies, a candidate pool and the follow-up pricing staircase."""

import os
import random
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.candidate import Candidate, CandidateRecommendation, CandidateSkill
from app.models.company import Company
from app.models.enums import Availability, RemotePreference
from app.models.payment import Payment, PaymentAuditEntry
from app.models.pricing_rule import FollowUpPricingRule
from app.models.shortlist import ShortlistCandidate, ShortlistRequest
from app.models.shortlist_email import ShortlistEmail
from app.models.shortlist_event import ShortlistEvent

settings = get_settings()
sync_url = settings.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
engine = create_engine(sync_url)

NOW = datetime.now(timezone.utc)

PRICING_RULES = [(7, Decimal("30")), (14, Decimal("20")), (30, Decimal("10"))]

COMPANIES = [
    ("Northwind Labs", "hiring@northwind.example"),
    ("Blue Harbor Fintech", "talent@blueharbor.example"),
]

FIRST_NAMES = ["Ana", "Bilal", "Chen", "Dara", "Emeka", "Farah", "Goran", "Hana", "Ivan", "Jonas", "Kemi", "Lea"]
LAST_NAMES = ["Silva", "Haddad", "Wei", "Okafor", "Novak", "Larsen", "Moreau", "Tanaka", "Costa", "Weber"]

ROLES = {
    "Backend Engineer": ["Python", "PostgreSQL", "FastAPI", "Redis", "Docker"],
    "Frontend Engineer": ["TypeScript", "React", "CSS", "Next.js", "GraphQL"],
    "Data Engineer": ["Python", "Spark", "Airflow", "SQL", "dbt"],
    "DevOps Engineer": ["Kubernetes", "Terraform", "AWS", "Docker", "Go"],
    "Mobile Engineer": ["Kotlin", "Swift", "Flutter", "Firebase"],
}

LOCATIONS = [
    ("Portugal", "Lisbon", "Europe/Lisbon"),
    ("Germany", "Berlin", "Europe/Berlin"),
    ("Nigeria", "Lagos", "Africa/Lagos"),
    ("Brazil", "Sao Paulo", "America/Sao_Paulo"),
    ("Canada", "Toronto", "America/Toronto"),
]


def seed_pricing_rules(session: Session) -> None:
    existing = {r.days_threshold for r in session.execute(select(FollowUpPricingRule)).scalars()}
    for days, discount in PRICING_RULES:
        if days not in existing:
            session.add(FollowUpPricingRule(days_threshold=days, discount_percent=discount, is_active=True))


def seed_candidates(session: Session, count: int = 40) -> None:
    for _ in range(count):
        role, stack = random.choice(list(ROLES.items()))
        country, city, tz = random.choice(LOCATIONS)
        candidate = Candidate(
            first_name=random.choice(FIRST_NAMES),
            last_name=random.choice(LAST_NAMES),
            desired_role=role,
            seniority_estimate=random.randint(0, 4),
            availability=random.choice(list(Availability)),
            remote_preference=random.choice(list(RemotePreference)),
            location_country=country,
            location_city=city,
            location_timezone=tz,
            willing_to_relocate=random.random() < 0.3,
            last_active_at=NOW - timedelta(days=random.randint(0, 120)),
            created_at=NOW - timedelta(days=random.randint(0, 180)),
        )
        session.add(candidate)
        session.flush()
        for skill in random.sample(stack, k=random.randint(2, len(stack))):
            session.add(
                CandidateSkill(
                    candidate_id=candidate.id,
                    skill_name=skill,
                    confidence_score=round(random.uniform(0.4, 1.0), 2),
                )
            )
        for _ in range(random.choice([0, 0, 1, 2])):
            session.add(
                CandidateRecommendation(
                    candidate_id=candidate.id,
                    recommender_name=f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
                )
            )


def seed():
    with Session(engine) as session:
        existing = session.execute(select(Company).limit(1)).scalar_one_or_none()
        if existing:
            print("DB already has data. Use --force to reset.")
            if "--force" not in sys.argv:
                return
            for model in [
                ShortlistEmail, ShortlistEvent, PaymentAuditEntry, Payment, ShortlistCandidate,
                ShortlistRequest, CandidateRecommendation, CandidateSkill, Candidate, Company,
            ]:
                session.execute(delete(model))
            session.commit()

        seed_pricing_rules(session)
        for name, email in COMPANIES:
            session.add(Company(name=name, email=email))
        seed_candidates(session)
        session.commit()

        for company in session.execute(select(Company)).scalars():
            print(f"Company {company.name}: {company.id}")
        print("Seed complete.")


if __name__ == "__main__":
    seed()
