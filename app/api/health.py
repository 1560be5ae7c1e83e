"""Health check endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Any
from datetime import datetime
import logging

from app.api.deps import get_sms_gateway
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.services.email import build_transport
from app.services.sms import SMSGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/health/detailed")
async def detailed_health_check(
    db: AsyncSession = Depends(get_db),
    sms_gateway: SMSGateway = Depends(get_sms_gateway),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Database reachability and which delivery channels are configured"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {}
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["components"]["database"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "unhealthy"

    transport = build_transport(settings)
    health_status["components"]["email"] = {
        "transport": transport.name,
        "configured": transport.is_configured(),
    }
    health_status["components"]["push"] = {
        "configured": bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY),
    }
    health_status["components"]["sms"] = {
        "provider": sms_gateway.provider_name,
        "configured": sms_gateway.is_enabled,
    }

    return health_status
