from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from datetime import datetime

from promptops.crud.base import CRUDBase
from promptops.core.exceptions import handle_database_errors
from promptops.models.stripe_webhook import StripeWebhook
from pydantic import BaseModel


class StripeWebhookCreate(BaseModel):
    event_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    supabase_user_id: Optional[str] = None
    plan: Optional[str] = None
    subscription_status: Optional[str] = None
    action: Optional[str] = None
    # webhook_timestamp set server-side by handler when saving


class CRUDStripeWebhook(CRUDBase[StripeWebhook, StripeWebhookCreate, BaseModel]):
    @handle_database_errors
    async def get_by_event_id(self, db: AsyncSession, event_id: str) -> Optional[StripeWebhook]:
        result = await db.execute(
            select(self.model).where(self.model.event_id == event_id)
        )
        return result.scalar_one_or_none()

    @handle_database_errors
    async def create_with_timestamp(
        self,
        db: AsyncSession,
        *,
        obj_in: StripeWebhookCreate,
        processed_at: datetime
    ) -> StripeWebhook:
        return await self.create(db, obj_in={**obj_in.model_dump(), "webhook_timestamp": processed_at})


stripe_webhook_crud = CRUDStripeWebhook(StripeWebhook)
