import redis.asyncio as redis
from typing import Optional
from relay.config import settings
import logging

logger = logging.getLogger(__name__)

redis_pool: Optional[redis.ConnectionPool] = None
redis_client: Optional[redis.Redis] = None


async def init_redis():
	"""Initialize the connection pool to the Celery broker"""
	global redis_pool, redis_client

	try:
		redis_pool = redis.ConnectionPool.from_url(
			settings.REDIS_URL,
			max_connections=settings.REDIS_POOL_SIZE,
			decode_responses=True,
			health_check_interval=30
		)
		redis_client = redis.Redis(connection_pool=redis_pool)

		await redis_client.ping()
		logger.info("Broker connection pool initialized")

	except Exception as e:
		logger.error(f"Failed to initialize broker connection: {e}")
		raise


async def get_redis() -> redis.Redis:
	if not redis_client:
		await init_redis()
	return redis_client


async def close_redis():
	global redis_pool, redis_client

	if redis_client:
		await redis_client.aclose()
		redis_client = None

	if redis_pool:
		await redis_pool.disconnect()
		redis_pool = None

	logger.info("Broker connections closed")


async def check_redis_connection() -> bool:
	"""Check if the broker is reachable"""
	try:
		client = await get_redis()
		await client.ping()
		return True
	except Exception as e:
		logger.error(f"Broker health check failed: {e}")
		return False


async def get_queue_length(queue_name: str = "celery") -> Optional[int]:
	"""Jobs waiting in a Celery queue on the Redis broker"""
	try:
		client = await get_redis()
		return await client.llen(queue_name)
	except Exception as e:
		logger.error(f"Could not read length of queue {queue_name}: {e}")
		return None
