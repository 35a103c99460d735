from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
from .base import Base, TimestampMixin


class UsageRecord(Base, TimestampMixin):
    """Per-user usage counters for the current billing period"""
    __tablename__ = "user_usage"
    __table_args__ = (
        CheckConstraint("prompts_saved >= 0", name="ck_user_usage_prompts_saved_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    supabase_user_id = Column(String, nullable=False, unique=True, index=True)  # References user in Supabase
    plan = Column(String(50), nullable=False, default="free")  # Denormalized copy of the user's plan
    prompts_used = Column(Integer, default=0, nullable=False)  # Reset every period
    enhancements_used = Column(Integer, default=0, nullable=False)  # Reset every period
    prompts_saved = Column(Integer, default=0, nullable=False)  # Never reset, decremented on delete
    period_start = Column(DateTime, nullable=False)  # UTC
    period_end = Column(DateTime, nullable=False)  # UTC
    period_anchor = Column(DateTime, nullable=False)  # Signup time; every window boundary is anchor + k periods

    def __repr__(self) -> str:
        return (
            f"<UsageRecord user={self.supabase_user_id} plan={self.plan} "
            f"prompts={self.prompts_used} enhancements={self.enhancements_used} saved={self.prompts_saved}>"
        )
