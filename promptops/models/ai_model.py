from sqlalchemy import Column, String, Integer, Boolean, Text, Enum as SQLEnum
import enum
from .base import Base, TimestampMixin

class ModelTier(str, enum.Enum):
    """Model tiers, matched against a plan's allowed tiers"""
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"

class AIModel(Base, TimestampMixin):
    """Registry of invocable AI backends"""
    __tablename__ = "ai_models"

    id = Column(String(100), primary_key=True, index=True)  # Model key, e.g. gpt-4o
    name = Column(String(255), nullable=False)
    provider = Column(String(100), nullable=False)  # OpenAI, Anthropic, DeepSeek, ...
    description = Column(Text, nullable=True)
    tier = Column(SQLEnum(ModelTier), nullable=False, index=True)
    enabled = Column(Boolean, default=True, nullable=False)  # Administrative switch
    coming_soon = Column(Boolean, default=False, nullable=False)
    max_prompt_length = Column(Integer, nullable=True)  # Characters, None = provider limit
    api_key_env_var = Column(String(100), nullable=True)
