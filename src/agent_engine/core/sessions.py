"""Per-(project, role) assistant conversation ids cached in Redis."""

import logging

import redis

from agent_engine.core.constants import SESSION_KEY_FORMAT, SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


def session_key(project_guid: str, role: str) -> str:
    return SESSION_KEY_FORMAT.format(project_guid=project_guid, role=role)


class SessionIdStore:
    """Best-effort cache: failures are logged and never raised."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = SESSION_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def save(self, project_guid: str, role: str, session_id: str) -> bool:
        if not project_guid or not role or not session_id:
            logger.warning(
                "Not caching session id: project=%r role=%r session=%r",
                project_guid, role, session_id,
            )
            return False
        try:
            self.client.set(session_key(project_guid, role), session_id, ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.error("Failed to cache session id for %s/%s: %s", project_guid, role, e)
            return False
        logger.debug("Cached session %s for %s/%s", session_id, project_guid, role)
        return True

    def get(self, project_guid: str, role: str) -> str:
        try:
            value = self.client.get(session_key(project_guid, role))
        except redis.RedisError as e:
            logger.error("Failed to read session id for %s/%s: %s", project_guid, role, e)
            return ""
        if value is None:
            return ""
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def clear(self, project_guid: str, role: str):
        try:
            self.client.delete(session_key(project_guid, role))
        except redis.RedisError as e:
            logger.error("Failed to clear session id for %s/%s: %s", project_guid, role, e)
