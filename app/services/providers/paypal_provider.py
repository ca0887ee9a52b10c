"""PayPal Orders v2 with the AUTHORIZE intent."""

import time
from decimal import Decimal

import httpx
import structlog

from app.core.config import get_settings
from app.services.providers.base import (
    AuthorizationRequest,
    AuthorizationResult,
    CaptureResult,
    PaymentProvider,
    ReleaseResult,
)

logger = structlog.get_logger()

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"


class PayPalError(Exception):
    pass


class PayPalProvider(PaymentProvider):
    name = "paypal"

    def __init__(self, client_id=None, client_secret=None, base_url=None, transport=None):
        settings = get_settings()
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.base_url = base_url or (SANDBOX_URL if settings.PAYPAL_USE_SANDBOX else LIVE_URL)
        self.return_url = settings.PAYPAL_RETURN_URL
        self.cancel_url = settings.PAYPAL_CANCEL_URL
        self._transport = transport
        self._access_token: str | None = None
        self._token_expiry = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=30, transport=self._transport)

    async def _ensure_token(self, client: httpx.AsyncClient) -> str:
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token
        response = await client.post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code >= 400:
            raise PayPalError(f"Failed to get PayPal access token: {response.status_code}")
        body = response.json()
        self._access_token = body["access_token"]
        # refresh a minute early
        self._token_expiry = time.monotonic() + int(body.get("expires_in", 0)) - 60
        return self._access_token

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, json=None) -> httpx.Response:
        token = await self._ensure_token(client)
        return await client.request(
            method, path, json=json, headers={"Authorization": f"Bearer {token}"}
        )

    async def _authorization_id(self, client: httpx.AsyncClient, order_id: str) -> str | None:
        response = await self._request(client, "GET", f"/v2/checkout/orders/{order_id}")
        if response.status_code >= 400:
            return None
        units = response.json().get("purchase_units") or []
        if not units:
            return None
        authorizations = (units[0].get("payments") or {}).get("authorizations") or []
        return authorizations[0].get("id") if authorizations else None

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationResult:
        payload = {
            "intent": "AUTHORIZE",
            "purchase_units": [
                {
                    "reference_id": str(request.shortlist_request_id),
                    "description": request.description
                    or f"Shortlist request {request.shortlist_request_id}",
                    "custom_id": str(request.company_id),
                    "amount": {
                        "currency_code": request.currency,
                        "value": f"{Decimal(request.amount):.2f}",
                    },
                }
            ],
            "application_context": {
                "return_url": self.return_url,
                "cancel_url": self.cancel_url,
            },
        }
        try:
            async with self._client() as client:
                response = await self._request(client, "POST", "/v2/checkout/orders", json=payload)
                if response.status_code >= 400:
                    logger.error("paypal_order_failed", status=response.status_code, body=response.text)
                    return AuthorizationResult(
                        success=False, error_message=f"PayPal error: {response.status_code}"
                    )
                body = response.json()
        except (httpx.HTTPError, PayPalError, KeyError, ValueError) as e:
            logger.error(
                "paypal_authorize_failed", shortlist_id=str(request.shortlist_request_id), error=str(e)
            )
            return AuthorizationResult(success=False, error_message=str(e))

        approve = next((link["href"] for link in body.get("links", []) if link.get("rel") == "approve"), None)
        logger.info("paypal_order_created", order_id=body.get("id"))
        return AuthorizationResult(
            success=True,
            provider_reference=body.get("id"),
            client_handle=approve,
            status=body.get("status"),
        )

    async def _capture(self, reference: str, payload: dict) -> CaptureResult:
        try:
            async with self._client() as client:
                authorization_id = await self._authorization_id(client, reference)
                if not authorization_id:
                    return CaptureResult(success=False, error_message="Authorization not found")
                response = await self._request(
                    client, "POST", f"/v2/payments/authorizations/{authorization_id}/capture", json=payload
                )
                if response.status_code >= 400:
                    logger.error("paypal_capture_failed", status=response.status_code, body=response.text)
                    return CaptureResult(
                        success=False, error_message=f"PayPal error: {response.status_code}"
                    )
                body = response.json()
        except (httpx.HTTPError, PayPalError, KeyError, ValueError) as e:
            logger.error("paypal_capture_failed", order_id=reference, error=str(e))
            return CaptureResult(success=False, error_message=str(e))

        captured = Decimal(str(body.get("amount", {}).get("value", "0")))
        logger.info("paypal_captured", order_id=reference, amount=str(captured))
        return CaptureResult(success=True, amount_captured=captured, provider_reference=body.get("id"))

    async def capture_full(self, reference: str, amount: Decimal) -> CaptureResult:
        return await self._capture(reference, {})

    async def capture_partial(
        self, reference: str, authorized_amount: Decimal, final_amount: Decimal
    ) -> CaptureResult:
        payload = {
            "amount": {"currency_code": get_settings().DEFAULT_CURRENCY, "value": f"{Decimal(final_amount):.2f}"},
            "final_capture": True,
        }
        return await self._capture(reference, payload)

    async def release(self, reference: str) -> ReleaseResult:
        try:
            async with self._client() as client:
                authorization_id = await self._authorization_id(client, reference)
                if not authorization_id:
                    return ReleaseResult(success=False, error_message="Authorization not found")
                response = await self._request(
                    client, "POST", f"/v2/payments/authorizations/{authorization_id}/void", json={}
                )
                if response.status_code >= 400:
                    logger.error("paypal_void_failed", status=response.status_code, body=response.text)
                    return ReleaseResult(success=False, error_message=f"PayPal error: {response.status_code}")
        except (httpx.HTTPError, PayPalError, KeyError, ValueError) as e:
            logger.error("paypal_release_failed", order_id=reference, error=str(e))
            return ReleaseResult(success=False, error_message=str(e))

        logger.info("paypal_voided", order_id=reference)
        return ReleaseResult(success=True)

    async def is_authorization_valid(self, reference: str) -> bool:
        try:
            async with self._client() as client:
                authorization_id = await self._authorization_id(client, reference)
                if not authorization_id:
                    return False
                response = await self._request(
                    client, "GET", f"/v2/payments/authorizations/{authorization_id}"
                )
                if response.status_code >= 400:
                    return False
                status = response.json().get("status")
        except (httpx.HTTPError, PayPalError, KeyError, ValueError) as e:
            logger.error("paypal_validity_check_failed", order_id=reference, error=str(e))
            return False
        return status in ("CREATED", "PENDING")
