import logging
import stripe
from dataclasses import dataclass
from promptops.core.config import settings
from promptops.services.plan_catalog import Plan
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Subscription statuses that grant the paid plan, and those that fall back to free
ACTIVE_STATUSES = {"active", "trialing"}
LAPSED_STATUSES = {"canceled", "unpaid", "incomplete_expired"}


@dataclass
class PlanChange:
    """What a webhook event means for a user's plan. plan is None when nothing changes."""
    action: str
    plan: Optional[Plan] = None
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    for converter in ("to_dict_recursive", "to_dict"):
        if hasattr(obj, converter):
            return getattr(obj, converter)()
    return dict(obj)


class StripeService:
    def __init__(self):
        if settings.stripe_secret:
            stripe.api_key = settings.stripe_secret
        self.webhook_secret = settings.stripe_webhook_secret

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify Stripe webhook signature"""
        if not self.webhook_secret:
            logger.error("❌ STRIPE_WEBHOOK_SECRET is not configured")
            return False
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            return True
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"⚠️ Stripe signature verification failed: {e}")
            return False

    def _plan_from_price(self, price: Dict[str, Any]) -> Optional[Plan]:
        metadata = price.get("metadata") or {}
        if metadata.get("plan_name"):
            return Plan.parse(metadata["plan_name"])

        price_map = {
            settings.stripe_price_id_pro: Plan.PRO,
            settings.stripe_price_id_team: Plan.TEAM,
            settings.stripe_price_id_enterprise: Plan.ENTERPRISE,
        }
        price_id = price.get("id")
        if price_id and price_id in price_map:
            return price_map[price_id]

        return Plan.parse(price.get("nickname"))

    def extract_plan_from_subscription(self, subscription: Dict[str, Any]) -> Optional[Plan]:
        """Extract plan from the first subscription item's price"""
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            return None
        return self._plan_from_price(items[0].get("price") or {})

    def _subscription_change(self, action: str, subscription: Dict[str, Any]) -> PlanChange:
        status = subscription.get("status")
        if status in ACTIVE_STATUSES:
            plan = self.extract_plan_from_subscription(subscription)
        elif status in LAPSED_STATUSES:
            plan = Plan.FREE
        else:
            # past_due, incomplete, paused: keep the current plan until Stripe settles it
            plan = None

        return PlanChange(
            action=action,
            plan=plan,
            user_id=(subscription.get("metadata") or {}).get("user_id"),
            customer_id=subscription.get("customer"),
            subscription_id=subscription.get("id"),
            status=status
        )

    def parse_plan_change(self, event: Dict[str, Any]) -> PlanChange:
        """Map a Stripe event onto a plan change"""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "customer.subscription.created":
            return self._subscription_change("subscription_created", obj)

        if event_type == "customer.subscription.updated":
            return self._subscription_change("subscription_updated", obj)

        if event_type == "customer.subscription.deleted":
            return PlanChange(
                action="subscription_cancelled",
                plan=Plan.FREE,
                user_id=(obj.get("metadata") or {}).get("user_id"),
                customer_id=obj.get("customer"),
                subscription_id=obj.get("id"),
                status="canceled"
            )

        if event_type == "checkout.session.completed":
            plan = Plan.parse((obj.get("metadata") or {}).get("plan"))
            subscription_id = obj.get("subscription")
            if plan is None and subscription_id:
                plan = self.extract_plan_from_subscription(self.retrieve_subscription(subscription_id))
            return PlanChange(
                action="checkout_completed",
                plan=plan,
                user_id=obj.get("client_reference_id") or (obj.get("metadata") or {}).get("user_id"),
                customer_id=obj.get("customer"),
                subscription_id=subscription_id,
                status="active"
            )

        return PlanChange(action="unhandled_event")

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            return _as_dict(stripe.Subscription.retrieve(subscription_id))
        except stripe.StripeError as e:
            logger.error(f"❌ Failed to retrieve Stripe subscription {subscription_id}: {e}")
            return {}

    async def get_user_id_from_customer(self, customer_id: str) -> Optional[str]:
        """Get Supabase user ID from Stripe customer metadata"""
        try:
            customer = _as_dict(stripe.Customer.retrieve(customer_id))
        except stripe.StripeError as e:
            logger.error(f"❌ Failed to retrieve Stripe customer {customer_id}: {e}")
            return None
        return (customer.get("metadata") or {}).get("user_id")


# Create a singleton instance
stripe_service = StripeService()
