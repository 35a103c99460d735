# Database models package

from .base import Base
from .usage_record import UsageRecord
from .ai_model import AIModel, ModelTier
from .stripe_webhook import StripeWebhook

__all__ = [
    'Base',
    'UsageRecord',
    'AIModel',
    'ModelTier',
    'StripeWebhook'
]
