import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .events import Event

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Fire-and-forget notifications over Redis pub/sub.
    A failed publish is logged and never fails the operation that emitted it.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str) -> "EventPublisher":
        return cls(redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        ))

    async def publish(self, channel: str, event: Event) -> bool:
        try:
            await self.redis.publish(channel, event.to_json())
            return True
        except RedisError as e:
            logger.warning(f"Failed to publish {event.type_name} on {channel}: {e}")
            return False

    async def publish_team_event(self, team_id: str, event: Event) -> bool:
        return await self.publish(f"team:{team_id}:events", event)

    async def publish_tournament_event(self, tournament_id: str, event: Event) -> bool:
        return await self.publish(f"tournament:{tournament_id}:events", event)

    async def publish_user_notification(self, user_id: str, event: Event) -> bool:
        return await self.publish(f"user:{user_id}:notifications", event)

    async def close(self):
        await self.redis.aclose()


def build_publisher(config) -> Optional[EventPublisher]:
    if not config.get('PUBLISH_EVENTS', False):
        return None
    return EventPublisher.from_url(config.get('REDIS_URL', 'redis://localhost:6379'))
