from datetime import datetime, timezone

from fastapi import APIRouter

from relay.config import settings
from relay.services.health_service import get_detailed_health

router = APIRouter()


@router.get("/health")
async def health_check():
	return {
		"status": "healthy",
		"timestamp": datetime.now(timezone.utc).isoformat(),
		"version": settings.APP_VERSION,
	}


@router.get("/health/detailed")
async def detailed_health_check():
	"""Database, broker, workers and dispatch backlog"""
	return await get_detailed_health()
