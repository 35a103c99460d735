from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, and_, case
from sqlalchemy.exc import IntegrityError

from promptops.crud.base import CRUDBase
from promptops.core.exceptions import UserNotFoundError, ProtocolError, handle_store_errors
from promptops.models.usage_record import UsageRecord
from promptops.schemas.entitlement import UsageCounter


class UsageRecordCreate(BaseModel):
    supabase_user_id: str
    plan: str = "free"
    period_start: datetime
    period_end: datetime
    period_anchor: datetime


class UsageRecordUpdate(BaseModel):
    plan: Optional[str] = None


class CRUDUsageRecord(CRUDBase[UsageRecord, UsageRecordCreate, UsageRecordUpdate]):
    """
    Usage counter store.

    Every counter mutation is a single UPDATE ... RETURNING statement so
    concurrent requests for the same user never lose an increment.
    """

    def _column(self, field: Union[UsageCounter, str]):
        try:
            return getattr(self.model, UsageCounter(field).value)
        except ValueError:
            raise ProtocolError(f"Unknown usage counter: {field}")

    async def _update_returning(
        self,
        db: AsyncSession,
        user_id: str,
        values: Dict[str, Any],
        *conditions
    ) -> Optional[UsageRecord]:
        result = await db.execute(
            update(self.model)
            .where(and_(self.model.supabase_user_id == user_id, *conditions))
            .values(**values)
            .returning(self.model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        obj = result.scalar_one_or_none()
        await db.commit()
        return obj

    async def _require(self, db: AsyncSession, user_id: str) -> UsageRecord:
        obj = await self.get_by_user_id(db, user_id)
        if obj is None:
            raise UserNotFoundError(user_id)
        return obj

    @handle_store_errors
    async def get_by_user_id(self, db: AsyncSession, user_id: str) -> Optional[UsageRecord]:
        """Get the usage record for a Supabase user, or None"""
        result = await db.execute(
            select(self.model)
            .where(self.model.supabase_user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load(self, db: AsyncSession, user_id: str) -> UsageRecord:
        """Get the usage record for a user. Rows are never created implicitly."""
        return await self._require(db, user_id)

    @handle_store_errors
    async def create_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        *,
        plan: str,
        period_start: datetime,
        period_end: datetime,
        period_anchor: Optional[datetime] = None
    ) -> Optional[UsageRecord]:
        """
        Create the zeroed usage record for a new account.
        Returns None when a record for the user already exists.
        """
        try:
            return await self.create(
                db,
                obj_in=UsageRecordCreate(
                    supabase_user_id=user_id,
                    plan=plan,
                    period_start=period_start,
                    period_end=period_end,
                    period_anchor=period_anchor or period_start
                )
            )
        except IntegrityError:
            # Unique supabase_user_id: another request provisioned the user first
            await db.rollback()
            return None

    @handle_store_errors
    async def increment(
        self,
        db: AsyncSession,
        user_id: str,
        field: Union[UsageCounter, str],
        amount: int = 1
    ) -> UsageRecord:
        """Atomically add amount to a counter"""
        column = self._column(field)
        obj = await self._update_returning(db, user_id, {column.key: column + amount})
        if obj is None:
            raise UserNotFoundError(user_id)
        return obj

    @handle_store_errors
    async def increment_if_below(
        self,
        db: AsyncSession,
        user_id: str,
        field: Union[UsageCounter, str],
        limit: int
    ) -> Optional[UsageRecord]:
        """
        Conditional increment: adds one only while the counter is below limit.
        Returns None when the quota is already used up.
        """
        column = self._column(field)
        obj = await self._update_returning(db, user_id, {column.key: column + 1}, column < limit)
        if obj is None:
            await self._require(db, user_id)
        return obj

    @handle_store_errors
    async def reset_period(
        self,
        db: AsyncSession,
        user_id: str,
        new_period_start: datetime,
        new_period_end: datetime,
        *,
        expected_period_end: Optional[datetime] = None
    ) -> Optional[UsageRecord]:
        """
        Zero the per-period counters and move the window. prompts_saved is untouched.

        With expected_period_end the reset only applies if the window has not
        moved in the meantime; None is returned when another request won.
        """
        conditions = []
        if expected_period_end is not None:
            conditions.append(self.model.period_end == expected_period_end)
        obj = await self._update_returning(
            db,
            user_id,
            {
                "prompts_used": 0,
                "enhancements_used": 0,
                "period_start": new_period_start,
                "period_end": new_period_end,
            },
            *conditions
        )
        if obj is None:
            await self._require(db, user_id)
        return obj

    @handle_store_errors
    async def adjust_saved_count(self, db: AsyncSession, user_id: str, delta: int) -> UsageRecord:
        """Add delta to prompts_saved, never going below zero"""
        adjusted = self.model.prompts_saved + delta
        obj = await self._update_returning(
            db,
            user_id,
            {"prompts_saved": case((adjusted < 0, 0), else_=adjusted)}
        )
        if obj is None:
            raise UserNotFoundError(user_id)
        return obj

    @handle_store_errors
    async def set_plan(self, db: AsyncSession, user_id: str, plan: str) -> UsageRecord:
        """Update the denormalized plan. Counters are left as they are."""
        obj = await self._update_returning(db, user_id, {"plan": plan})
        if obj is None:
            raise UserNotFoundError(user_id)
        return obj

    @handle_store_errors
    async def reset_counters(self, db: AsyncSession, user_id: str) -> UsageRecord:
        """Zero the per-period counters without touching the window"""
        obj = await self._update_returning(db, user_id, {"prompts_used": 0, "enhancements_used": 0})
        if obj is None:
            raise UserNotFoundError(user_id)
        return obj

    @handle_store_errors
    async def delete_for_user(self, db: AsyncSession, user_id: str) -> bool:
        """Remove the usage record when the account is deleted"""
        result = await db.execute(
            delete(self.model).where(self.model.supabase_user_id == user_id)
        )
        await db.commit()
        return result.rowcount > 0

    @handle_store_errors
    async def list_expired(self, db: AsyncSession, now: datetime, limit: int = 500) -> List[str]:
        """User ids whose period ended before now"""
        result = await db.execute(
            select(self.model.supabase_user_id)
            .where(self.model.period_end < now)
            .order_by(self.model.period_end.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


usage_record = CRUDUsageRecord(UsageRecord)
