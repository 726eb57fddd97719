"""
Redis Audit Sink
Publishes AgentAction events over Redis pub/sub for notification consumers
"""
import json
import logging

import redis.asyncio as redis

from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.models.agent_action import AgentAction

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "outreach:audit"


class RedisAuditSink(AuditSink):
    """
    Publishes each record as JSON on `channel`.

    Pub/sub is fire-and-forget; pair this sink with LoggingAuditSink (via
    CompositeAuditSink) so every record also lands in the log.
    """

    def __init__(self, client: redis.Redis, channel: str = DEFAULT_CHANNEL):
        self._redis = client
        self.channel = channel

    @classmethod
    async def from_url(cls, redis_url: str, channel: str = DEFAULT_CHANNEL) -> "RedisAuditSink":
        client = await redis.from_url(redis_url, decode_responses=True)
        return cls(client, channel)

    async def emit(self, action: AgentAction) -> None:
        try:
            await self._redis.publish(self.channel, json.dumps(action.to_event()))
            logger.debug(f"Published audit event {action.action_type} for {action.candidate_id}")
        except Exception as e:
            logger.error(f"Failed to publish audit event {action.id}: {e}")

    async def close(self) -> None:
        await self._redis.aclose()
