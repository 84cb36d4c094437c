import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as SchemaError
from redis.exceptions import RedisError

from ..schemas.incident import EventKind, FanoutEvent, IncidentResponse
from .websocket import FanoutHub

log = logging.getLogger("uvicorn.error").getChild("relay")


class EventPublisher:
    """Hands incident events to the local fanout hub."""

    def __init__(self, hub: FanoutHub):
        self.hub = hub

    async def publish(self, kind: EventKind, incident: IncidentResponse) -> None:
        self.hub.publish(kind, incident)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class RedisEventPublisher(EventPublisher):
    """
    Routes events through a redis channel so observers connected to any
    worker process see them. Each worker listens on the channel and feeds
    its own hub. If redis rejects a publish the event is delivered to the
    local hub only.
    """

    def __init__(self, hub: FanoutHub, client: "redis.Redis", channel: str):
        super().__init__(hub)
        self.client = client
        self.channel = channel
        self._listener: Optional[asyncio.Task] = None

    @classmethod
    def from_url(cls, hub: FanoutHub, url: str, channel: str) -> "RedisEventPublisher":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(hub, client, channel)

    async def publish(self, kind: EventKind, incident: IncidentResponse) -> None:
        event = FanoutEvent(type=kind, data=incident)
        try:
            await self.client.publish(self.channel, event.model_dump_json())
        except RedisError:
            log.exception("[relay] publish to %s failed; delivering locally", self.channel)
            self.hub.deliver(event)

    async def start(self) -> None:
        self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self.client.aclose()

    async def _listen(self) -> None:
        while True:
            pubsub = self.client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                log.info("[relay] listening on %s", self.channel)
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    self._handle(message["data"])
            except RedisError:
                log.exception("[relay] subscription to %s lost; retrying", self.channel)
                await asyncio.sleep(1.0)
            finally:
                await pubsub.aclose()

    def _handle(self, data: str) -> None:
        try:
            event = FanoutEvent.model_validate_json(data)
        except SchemaError as e:
            log.warning("[relay] ignoring malformed event: %s", e)
            return
        self.hub.deliver(event)
