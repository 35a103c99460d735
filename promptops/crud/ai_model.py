from typing import List, Optional, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from promptops.crud.base import CRUDBase
from promptops.core.exceptions import NotFoundError, handle_store_errors
from promptops.models.ai_model import AIModel, ModelTier
from promptops.schemas.ai_model import AIModelCreate, AIModelUpdate


class CRUDAIModel(CRUDBase[AIModel, AIModelCreate, AIModelUpdate]):
    @handle_store_errors
    async def get_model(self, db: AsyncSession, model_id: str) -> Optional[AIModel]:
        """Get a registered model by id, or None"""
        return await self.get(db, model_id, raise_if_not_found=False)

    @handle_store_errors
    async def list_models(self, db: AsyncSession, tiers: Optional[Iterable[ModelTier]] = None) -> List[AIModel]:
        """List registered models ordered by tier then name"""
        query = select(self.model)
        if tiers is not None:
            query = query.where(self.model.tier.in_(list(tiers)))
        result = await db.execute(query.order_by(self.model.name))
        tier_order = list(ModelTier)
        return sorted(result.scalars().all(), key=lambda m: tier_order.index(ModelTier(m.tier)))

    @handle_store_errors
    async def set_enabled(self, db: AsyncSession, model_id: str, enabled: bool) -> AIModel:
        """Enable or disable a model"""
        result = await db.execute(
            update(self.model)
            .where(self.model.id == model_id)
            .values(enabled=enabled)
            .returning(self.model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        obj = result.scalar_one_or_none()
        await db.commit()
        if obj is None:
            raise NotFoundError("AI model")
        return obj

    @handle_store_errors
    async def update_model(self, db: AsyncSession, db_obj: AIModel, update_data: dict) -> AIModel:
        if update_data.get("tier") is not None:
            update_data = {**update_data, "tier": ModelTier(update_data["tier"])}
        return await self.update(db, db_obj=db_obj, obj_in=update_data)

    @handle_store_errors
    async def seed(self, db: AsyncSession, models: Iterable[AIModelCreate]) -> int:
        """Insert models that are not registered yet. Existing rows keep their admin settings."""
        result = await db.execute(select(self.model.id))
        existing = set(result.scalars().all())
        new_models = [
            AIModel(**{**m.model_dump(), "tier": ModelTier(m.tier)})
            for m in models if m.id not in existing
        ]
        if new_models:
            db.add_all(new_models)
            await db.commit()
        return len(new_models)


ai_model_crud = CRUDAIModel(AIModel)
