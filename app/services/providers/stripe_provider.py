"""Stripe PaymentIntents with manual capture."""

import asyncio
from decimal import Decimal

import stripe
import structlog

from app.core.config import get_settings
from app.services.providers.base import (
    AuthorizationRequest,
    AuthorizationResult,
    CaptureResult,
    PaymentProvider,
    ReleaseResult,
    from_minor_units,
    to_minor_units,
)

logger = structlog.get_logger()


class StripeProvider(PaymentProvider):
    name = "stripe"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else get_settings().STRIPE_SECRET_KEY

    async def _call(self, fn, *args, **kwargs):
        # stripe-python is blocking; keep it off the event loop
        return await asyncio.to_thread(fn, *args, api_key=self.api_key, **kwargs)

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        params = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "capture_method": "manual",
            "description": request.description or f"Shortlist request {request.shortlist_request_id}",
            "metadata": {
                "companyId": str(request.company_id),
                "shortlistRequestId": str(request.shortlist_request_id),
                **request.metadata,
            },
        }
        if request.customer_id:
            params["customer"] = request.customer_id
        elif request.customer_email:
            params["receipt_email"] = request.customer_email

        try:
            intent = await self._call(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            logger.error(
                "stripe_authorize_failed",
                shortlist_id=str(request.shortlist_request_id),
                error=str(e),
                code=getattr(e, "code", None),
            )
            return AuthorizationResult(
                success=False, error_message=str(e), error_code=getattr(e, "code", None)
            )

        logger.info(
            "stripe_intent_created",
            payment_intent=intent.id,
            amount=str(request.amount),
            currency=request.currency,
        )
        return AuthorizationResult(
            success=True,
            provider_reference=intent.id,
            client_handle=intent.client_secret,
            status=intent.status,
        )

    async def _capture(self, reference: str, **params) -> CaptureResult:
        try:
            intent = await self._call(stripe.PaymentIntent.capture, reference, **params)
        except stripe.StripeError as e:
            logger.error("stripe_capture_failed", payment_intent=reference, error=str(e))
            return CaptureResult(success=False, error_message=str(e))

        if intent.status != "succeeded":
            return CaptureResult(
                success=False,
                provider_reference=intent.id,
                error_message=f"Unexpected PaymentIntent status {intent.status}",
            )
        captured = from_minor_units(intent.amount_received)
        logger.info("stripe_captured", payment_intent=reference, amount=str(captured))
        return CaptureResult(success=True, amount_captured=captured, provider_reference=intent.id)

    async def capture_full(self, reference: str, amount: Decimal) -> CaptureResult:
        return await self._capture(reference)

    async def capture_partial(
        self, reference: str, authorized_amount: Decimal, final_amount: Decimal
    ) -> CaptureResult:
        return await self._capture(reference, amount_to_capture=to_minor_units(final_amount))

    async def release(self, reference: str) -> ReleaseResult:
        try:
            intent = await self._call(stripe.PaymentIntent.cancel, reference)
        except stripe.StripeError as e:
            logger.error("stripe_release_failed", payment_intent=reference, error=str(e))
            return ReleaseResult(success=False, error_message=str(e))

        if intent.status != "canceled":
            return ReleaseResult(
                success=False, error_message=f"Unexpected PaymentIntent status {intent.status}"
            )
        logger.info("stripe_released", payment_intent=reference)
        return ReleaseResult(success=True)

    async def is_authorization_valid(self, reference: str) -> bool:
        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, reference)
        except stripe.StripeError as e:
            logger.error("stripe_validity_check_failed", payment_intent=reference, error=str(e))
            return False
        # Card authorizations stay capturable for 7 days
        return intent.status == "requires_capture"
