from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from dateutil.relativedelta import relativedelta
from dotenv import load_dotenv

from promptops.core.config import settings
from promptops.core import database
from promptops.routers import admin, billing, models, plans, usage
from promptops.services.entitlement_service import EntitlementService

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


def create_app(service: Optional[EntitlementService] = None, seed_models: Optional[bool] = None) -> FastAPI:
    """
    Build the API with a single entitlement engine shared by every request.
    Tests pass their own engine (fixed clock, test database).
    """
    if seed_models is None:
        seed_models = settings.seed_ai_models

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if seed_models and database.AsyncSessionLocal:
            async with database.AsyncSessionLocal() as db:
                await app.state.entitlement_service.registry.seed_defaults(db)
        logger.info("🚀 PromptOps entitlement API started")
        yield

    app = FastAPI(
        title="PromptOps API",
        description="Plan limits, usage counters and model access for PromptOps",
        version="1.0.0",
        redirect_slashes=False,
        lifespan=lifespan
    )

    app.state.entitlement_service = service or EntitlementService(
        period_length=relativedelta(months=settings.usage_period_months)
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [settings.frontend_url],
        allow_credentials=False if settings.environment == "development" else True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return JSONResponse(content={
            "status": "healthy",
            "service": "PromptOps API",
            "version": "1.0.0"
        })

    # Include routers
    app.include_router(usage.router, prefix="/api/usage", tags=["Usage"])
    app.include_router(plans.router, prefix="/api/plans", tags=["Plans"])
    app.include_router(models.router, prefix="/api/models", tags=["Models"])
    app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
