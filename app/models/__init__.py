from app.models.candidate import Candidate, CandidateRecommendation, CandidateSkill
from app.models.company import Company
from app.models.payment import Payment, PaymentAuditEntry
from app.models.pricing_rule import FollowUpPricingRule
from app.models.shortlist import ShortlistCandidate, ShortlistRequest
from app.models.shortlist_email import ShortlistEmail
from app.models.shortlist_event import ShortlistEvent

__all__ = [
    "Company",
    "Candidate",
    "CandidateSkill",
    "CandidateRecommendation",
    "ShortlistRequest",
    "ShortlistCandidate",
    "Payment",
    "PaymentAuditEntry",
    "FollowUpPricingRule",
    "ShortlistEvent",
    "ShortlistEmail",
]
