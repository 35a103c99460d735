from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from enum import Enum

class ModelTierEnum(str, Enum):
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"

class AIModelBase(BaseModel):
    id: str
    name: str
    provider: str
    description: Optional[str] = None
    tier: ModelTierEnum
    enabled: bool = True
    coming_soon: bool = False
    max_prompt_length: Optional[int] = None
    api_key_env_var: Optional[str] = None

class AIModelCreate(AIModelBase):
    pass

class AIModelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    tier: Optional[ModelTierEnum] = None
    enabled: Optional[bool] = None
    coming_soon: Optional[bool] = None
    max_prompt_length: Optional[int] = None

class AIModelResponse(AIModelBase):
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class AvailableModelResponse(BaseModel):
    id: str
    name: str
    provider: str
    description: Optional[str] = None
    tier: ModelTierEnum
    coming_soon: bool = False
    max_prompt_length: Optional[int] = None
    available: bool
    reason: Optional[str] = None

class ModelListResponse(BaseModel):
    success: bool
    plan: str
    models: List[AvailableModelResponse]
