"""Redis connection used for the status channel and the session-id cache."""

import logging

import redis

from agent_engine.config import Config

logger = logging.getLogger(__name__)


def get_client(config: Config) -> redis.Redis:
    """Create a client from ``config.redis_url``. Connects lazily."""
    client = redis.Redis.from_url(config.redis_url, decode_responses=True)
    logger.debug("Redis client configured for %s", config.redis_url)
    return client


def ping(client: redis.Redis) -> bool:
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed: %s", e)
        return False
