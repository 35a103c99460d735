# CRUD operations package

from .usage_record import usage_record
from .ai_model import ai_model_crud
from .stripe_webhook import stripe_webhook_crud

__all__ = [
    'usage_record',
    'ai_model_crud',
    'stripe_webhook_crud'
]
