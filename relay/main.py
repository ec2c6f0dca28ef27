import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from relay.config import settings
from relay.api.v1 import dispatch, health
from relay.core.container import get_delivery_handlers, get_handler_registry
from relay.core.logging_config import configure_logging
from relay.core.redis import close_redis
from relay.database import close_db
from relay.middleware.monitoring import MonitoringMiddleware
from relay.middleware.request_id import RequestIDMiddleware
from relay.monitoring import metrics

configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # registries are built and frozen before the first request
    registry = get_handler_registry()
    delivery_handlers = get_delivery_handlers()
    logger.info(
        f"{settings.APP_NAME} {settings.APP_VERSION} started: {len(registry.command_types)} command types, "
        f"{len(delivery_handlers)} outbox handlers"
    )
    yield
    await close_redis()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    **Relay** - durable command dispatch and transactional outbox

    ## Operator endpoints
		* [Health Check](/health)
		* [Detailed Health](/health/detailed)
		* [Metrics](/metrics)
		* Command envelopes and outbox inspection under `/api/v1/dispatch`
    """,
    version=settings.APP_VERSION,
    openapi_tags=[
        {"name": "dispatch", "description": "Command envelope and outbox inspection"},
        {"name": "monitoring", "description": "System monitoring"},
    ],
    docs_url="/docs",
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Custom middleware
app.add_middleware(MonitoringMiddleware)
app.add_middleware(RequestIDMiddleware)

# Include routers
app.include_router(health.router, tags=["monitoring"])
app.include_router(dispatch.router, prefix=f"{settings.API_V1_PREFIX}/dispatch", tags=["dispatch"])

if settings.EXPOSE_METRICS:
    app.include_router(metrics.router, tags=["monitoring"])
