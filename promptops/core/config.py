from pydantic_settings import BaseSettings
from typing import List, Optional
import os


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Database configuration (for SQLAlchemy - connects to Supabase PostgreSQL)
    database_url: Optional[str] = os.getenv("DATABASE_URL", "")
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Frontend URL (for CORS)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # JWT configuration (Supabase access tokens)
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-this")
    jwt_algorithm: str = "HS256"
    jwt_verify_signature: bool = os.getenv("JWT_VERIFY_SIGNATURE", "true").lower() == "true"

    # Usage periods
    usage_period_months: int = int(os.getenv("USAGE_PERIOD_MONTHS", "1"))

    # Model registry: insert the default model list on startup when the table is empty
    seed_ai_models: bool = os.getenv("SEED_AI_MODELS", "true").lower() == "true"

    # Supabase user ids allowed to call the admin endpoints
    admin_user_ids: List[str] = []

    # Stripe configuration (plan-change webhooks)
    stripe_secret: Optional[str] = os.getenv("STRIPE_SECRET")
    stripe_webhook_secret: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    stripe_price_id_pro: Optional[str] = os.getenv("STRIPE_PRICE_ID_PRO")
    stripe_price_id_team: Optional[str] = os.getenv("STRIPE_PRICE_ID_TEAM")
    stripe_price_id_enterprise: Optional[str] = os.getenv("STRIPE_PRICE_ID_ENTERPRISE")

    class Config:
        env_file = ".env"


settings = Settings()
