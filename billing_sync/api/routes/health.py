from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from billing_sync.billing.dependencies import BillingServices, get_billing_services
from billing_sync.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(services: BillingServices = Depends(get_billing_services)):
    """Readiness check endpoint that includes subscription store connectivity."""
    if not await services.store.ping():
        logger.warning("health.store_unavailable")
        raise HTTPException(status_code=503, detail="Subscription store is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
        "webhook_secret": "configured" if settings.stripe_webhook_secret else "missing",
    }
