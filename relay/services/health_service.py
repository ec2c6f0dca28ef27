# relay/services/health_service.py
from typing import Dict, Any
from datetime import datetime, timezone
import platform

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.config import settings
from relay.database import AsyncSessionLocal, check_db_connection
from relay.core.redis import check_redis_connection, get_queue_length
from relay.models.command_envelope import ActionExecutionStatus, CommandEnvelope
from relay.models.outbox import OutboxDelivery, OutboxDeliveryStatus, OutboxMessage, OutboxMessageStatus
import logging

logger = logging.getLogger(__name__)


async def get_dispatch_backlog(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> Dict[str, Any]:
    """Row counts per status for envelopes, outbox messages and deliveries"""
    async with session_factory() as db:
        envelopes = await db.execute(
            select(CommandEnvelope.status, func.count(CommandEnvelope.id)).group_by(CommandEnvelope.status)
        )
        messages = await db.execute(
            select(OutboxMessage.status, func.count(OutboxMessage.id)).group_by(OutboxMessage.status)
        )
        deliveries = await db.execute(
            select(OutboxDelivery.status, func.count(OutboxDelivery.id)).group_by(OutboxDelivery.status)
        )

        return {
            "envelopes": {s.value: 0 for s in ActionExecutionStatus} | {s.value: c for s, c in envelopes.all()},
            "outbox_messages": {s.value: 0 for s in OutboxMessageStatus} | {s.value: c for s, c in messages.all()},
            "outbox_deliveries": {s.value: 0 for s in OutboxDeliveryStatus} | {s.value: c for s, c in deliveries.all()},
        }


async def get_detailed_health(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> Dict[str, Any]:
    """Get detailed health status of all services"""
    health_status = {
        "services": {},
        "dispatch": {},
        "system": {
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "environment": settings.ENVIRONMENT,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    # DB
    try:
        db_healthy = await check_db_connection(session_factory)
        health_status["services"]["database"] = {
            "healthy": db_healthy,
            "status": "connected" if db_healthy else "disconnected",
        }
    except Exception as e:
        health_status["services"]["database"] = {"healthy": False, "error": str(e)}

    # Broker
    try:
        redis_healthy = await check_redis_connection()
        health_status["services"]["broker"] = {
            "healthy": redis_healthy,
            "type": "Redis",
            "status": "connected" if redis_healthy else "disconnected",
            "queued_jobs": await get_queue_length() if redis_healthy else None,
        }
    except Exception as e:
        health_status["services"]["broker"] = {"healthy": False, "error": str(e)}

    # Celery
    try:
        from relay.core.celery_app import celery_app
        inspector = celery_app.control.inspect(timeout=1.0)
        stats = inspector.stats() if inspector else None
        active_workers = list(stats.keys()) if stats else []
        health_status["services"]["workers"] = {
            "healthy": bool(active_workers),
            "workers": active_workers,
            "count": len(active_workers),
        }
    except Exception as e:
        health_status["services"]["workers"] = {"healthy": False, "error": str(e)}

    # Backlog
    if health_status["services"]["database"].get("healthy"):
        try:
            health_status["dispatch"] = await get_dispatch_backlog(session_factory)
        except Exception as e:
            logger.error(f"Failed to read dispatch backlog: {e}")
            health_status["dispatch"] = {"error": str(e)}

    # Overall
    all_services_healthy = all(s.get("healthy", False) for s in health_status["services"].values())
    health_status["overall_health"] = "healthy" if all_services_healthy else "degraded"

    return health_status
