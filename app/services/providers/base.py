"""Provider-agnostic payment contract.

Adapters never raise for provider or transport failures: they log and return
a result with success=False so the payment service can record the failure.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID


@dataclass
class AuthorizationRequest:
    company_id: UUID
    shortlist_request_id: UUID
    amount: Decimal
    currency: str = "USD"
    customer_id: str | None = None
    customer_email: str | None = None
    description: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class AuthorizationResult:
    success: bool
    provider_reference: str | None = None
    # Stripe client_secret or PayPal approve link
    client_handle: str | None = None
    status: str | None = None
    error_message: str | None = None
    error_code: str | None = None


@dataclass
class CaptureResult:
    success: bool
    amount_captured: Decimal = Decimal("0")
    provider_reference: str | None = None
    error_message: str | None = None


@dataclass
class ReleaseResult:
    success: bool
    error_message: str | None = None


class PaymentProvider:
    name: str = ""

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        raise NotImplementedError

    async def capture_full(self, reference: str, amount: Decimal) -> CaptureResult:
        raise NotImplementedError

    async def capture_partial(
        self, reference: str, authorized_amount: Decimal, final_amount: Decimal
    ) -> CaptureResult:
        raise NotImplementedError

    async def release(self, reference: str) -> ReleaseResult:
        raise NotImplementedError

    async def is_authorization_valid(self, reference: str) -> bool:
        raise NotImplementedError


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def from_minor_units(value: int | None) -> Decimal:
    return (Decimal(value or 0) / 100).quantize(Decimal("0.01"))
