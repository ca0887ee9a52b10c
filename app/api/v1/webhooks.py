import json

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.results import unwrap
from app.core.config import get_settings
from app.core.database import get_db
from app.services.webhooks import handle_stripe_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = structlog.get_logger()

SIGNATURE_TOLERANCE_SECONDS = 300


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Stripe webhooks are not configured")

    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature,
            settings.STRIPE_WEBHOOK_SECRET,
            SIGNATURE_TOLERANCE_SECONDS,
        )
        event = json.loads(payload)
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe_webhook_bad_signature", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError as e:
        logger.warning("stripe_webhook_bad_payload", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid payload")

    result = await handle_stripe_event(db, event)
    unwrap(result)
    return {"status": "ok", "detail": result.message}
