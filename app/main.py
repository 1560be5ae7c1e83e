"""Main FastAPI application"""

from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from app.core.config import settings
from app.core.database import init_db, close_db
from app.core.middleware import setup_middleware
from app.services.sms import SMSGateway

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting up {settings.APP_NAME}...")

    await init_db()

    # SMS backend is chosen once per process
    app.state.sms_gateway = SMSGateway.from_settings(settings)
    if app.state.sms_gateway.provider_name:
        logger.info(f"SMS provider: {app.state.sms_gateway.provider_name}")
    else:
        logger.warning("No SMS provider configured, SMS notifications are disabled")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Email, web push and SMS notifications",
    version=settings.APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

setup_middleware(app)

# Include routers
from app.api.v1 import api_router
from app.api.health import router as health_router
app.include_router(api_router, prefix="/api/v1")
app.include_router(health_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
