"""Redis connection setup shared by the submission queue and the event bus."""
import logging

import redis.asyncio as redis
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from app.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> redis.Redis:
    """Create a Redis client. No connection is made until first use."""
    return redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


async def connect_with_retry(
    client: redis.Redis,
    name: str,
    attempts: int = 10,
    initial_seconds: float = 2,
    growth: float = 1.5,
    max_seconds: float = 30,
) -> bool:
    """
    Ping ``client`` until it answers, backing off between attempts.

    Returns False once ``attempts`` are exhausted; the caller keeps running
    in degraded mode instead of crashing.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=initial_seconds, exp_base=growth, max=max_seconds),
            reraise=False,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                logger.info(f"Attempting to connect to {name} (attempt {number}/{attempts})...")
                try:
                    await client.ping()
                except Exception as e:
                    logger.warning(f"{name} connection attempt {number} failed: {e}")
                    raise
        logger.info(f"Successfully connected to {name}")
        return True
    except RetryError:
        logger.error(
            f"Failed to connect to {name} after maximum retries. "
            f"Service will continue but {name} operations may fail."
        )
        return False
