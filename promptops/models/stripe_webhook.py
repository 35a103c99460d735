from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.postgresql import UUID
import uuid
from .base import Base, TimestampMixin


class StripeWebhook(Base, TimestampMixin):
    __tablename__ = "stripe_webhooks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    # Stripe event id for idempotency
    event_id = Column(String(255), nullable=False, unique=True, index=True)

    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    supabase_user_id = Column(String, nullable=True)
    plan = Column(String(50), nullable=True)  # plan applied, None when the event changed nothing
    subscription_status = Column(String(50), nullable=True)  # active, canceled, past_due, etc
    action = Column(String(100), nullable=True)  # action name from webhook handler
    webhook_timestamp = Column(DateTime, nullable=True)  # when processed locally
