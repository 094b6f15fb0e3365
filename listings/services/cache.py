import json

from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from listings.config import settings

logger = get_logger()

# Initialize Redis client globally for reuse
redis_client: Redis | None = None

def get_redis_client() -> Redis | None:
    global redis_client
    if not settings.REDIS_URL:
        return None
    if redis_client is None:
        redis_client = Redis.from_url(settings.REDIS_URL)
    return redis_client

async def close_redis_client():
    global redis_client
    if redis_client is not None:
        await redis_client.close()
        redis_client = None

# Cache failures degrade to a miss; callers always fall back to the database.

async def cache_get_json(key: str):
    redis = get_redis_client()
    if redis is None:
        return None
    try:
        cached = await redis.get(key)
    except RedisError as e:
        logger.warning("Redis read failed", key=key, error=str(e))
        return None
    return json.loads(cached) if cached else None

async def cache_set_json(key: str, value, ttl_seconds: int):
    redis = get_redis_client()
    if redis is None:
        return
    try:
        await redis.setex(key, ttl_seconds, json.dumps(value, default=str))
    except RedisError as e:
        logger.warning("Redis write failed", key=key, error=str(e))

async def ping() -> dict:
    redis = get_redis_client()
    if redis is None:
        return {"status": "disabled"}
    try:
        await redis.ping()
        return {"status": "ok"}
    except Exception as e:
        logger.warning("Redis ping failed", error=str(e))
        return {"status": "error", "error": f"{type(e).__name__}: {e}"}
