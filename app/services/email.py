"""Lifecycle email subjects and Jinja2 template rendering."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from app.models.enums import EmailEvent

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
_env = Environment(loader=FileSystemLoader(str(_TEMPLATE_DIR)), autoescape=True)

SUBJECTS = {
    EmailEvent.PRICING_READY: "Your shortlist proposal for {role} is ready",
    EmailEvent.AUTHORIZATION_REQUIRED: "Authorize payment for your {role} shortlist",
    EmailEvent.DELIVERED: "Your {role} shortlist has been delivered",
    EmailEvent.NO_MATCH: "Update on your {role} shortlist",
    EmailEvent.ADJUSTMENT_SUGGESTED: "Suggested adjustment for your {role} search",
    EmailEvent.SEARCH_EXTENDED: "We are extending the search for {role}",
    EmailEvent.COMPLETED: "Your {role} shortlist is complete",
    EmailEvent.PRICING_DECLINED: "Pricing declined for {role}",
}

# Sent to the operator inbox rather than the company
OPERATOR_EVENTS = frozenset({EmailEvent.PRICING_DECLINED})


def template_for(event: EmailEvent) -> str:
    return f"email/shortlist_{event.value}.html"


def render_shortlist_email(event: EmailEvent, role_title: str, **ctx) -> tuple[str, str]:
    """Return ``(subject, html)`` for one lifecycle email.

    Context keys a template does not use are ignored; ``role_title`` is always
    available to both the subject and the body.
    """
    subject = SUBJECTS[event].format(role=role_title)
    html = _env.get_template(template_for(event)).render(role_title=role_title, **ctx)
    return subject, html
