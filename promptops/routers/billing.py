import json
import logging
from datetime import datetime
from fastapi import APIRouter, HTTPException, Depends, status, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.core.database import get_db
from promptops.core.entitlement_middleware import get_entitlement_service
from promptops.core.exceptions import UserNotFoundError
from promptops.crud import stripe_webhook_crud
from promptops.crud.stripe_webhook import StripeWebhookCreate
from promptops.services.entitlement_service import EntitlementService
from promptops.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Handle Stripe subscription events.
    Plan changes take effect immediately; usage counters are never reset here.
    """
    payload = await request.body()
    signature = request.headers.get('stripe-signature')

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    if not stripe_service.verify_webhook_signature(payload, signature):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid Stripe signature"
        )

    event = json.loads(payload)
    event_id = event.get("id")

    # Idempotency: Stripe retries deliveries
    if event_id:
        existing = await stripe_webhook_crud.get_by_event_id(db, event_id)
        if existing:
            return JSONResponse(content={"success": True, "message": "Event already processed", "action": existing.action})

    change = stripe_service.parse_plan_change(event)

    user_id = change.user_id
    if not user_id and change.customer_id:
        user_id = await stripe_service.get_user_id_from_customer(change.customer_id)

    applied_plan = None
    message = "Webhook processed successfully"
    if change.plan is not None:
        if not user_id:
            message = "User ID not found for customer"
            logger.warning(f"⚠️ Stripe event {event_id} ({change.action}) has no resolvable user")
        else:
            try:
                await service.set_plan(db, user_id, change.plan)
                applied_plan = change.plan.value
            except UserNotFoundError:
                # Acknowledge so Stripe stops retrying; the account row is missing
                message = "Usage record not found for user"

    if event_id:
        await stripe_webhook_crud.create_with_timestamp(
            db,
            obj_in=StripeWebhookCreate(
                event_id=event_id,
                stripe_customer_id=change.customer_id,
                stripe_subscription_id=change.subscription_id,
                supabase_user_id=user_id,
                plan=applied_plan,
                subscription_status=change.status,
                action=change.action
            ),
            processed_at=datetime.utcnow()
        )

    return JSONResponse(content={
        "success": True,
        "message": message,
        "action": change.action,
        "plan": applied_plan,
        "event_id": event_id
    })
