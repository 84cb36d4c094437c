import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import make_response
from incidenthub.core.relay import EventPublisher, RedisEventPublisher
from incidenthub.core.websocket import CLOSE_GOING_AWAY, CLOSE_STALLED, FanoutHub
from incidenthub.schemas.incident import EventKind, FanoutEvent

pytestmark = pytest.mark.anyio

CREATED = EventKind.incident_created
UPDATED = EventKind.incident_updated


def pending(observer):
    out = []
    while not observer.queue.empty():
        out.append(observer.queue.get_nowait())
    return out


async def test_late_subscriber_gets_no_backlog():
    hub = FanoutHub()
    early = hub.subscribe()
    hub.publish(CREATED, make_response(1))

    late = hub.subscribe()
    hub.publish(UPDATED, make_response(1, "In Progress"))

    assert [(e["type"], e["data"]["id"]) for e in pending(early)] == [
        ("incident-created", 1), ("incident-updated", 1)]
    assert [(e["type"], e["data"]["status"]) for e in pending(late)] == [
        ("incident-updated", "In Progress")]


async def test_events_arrive_in_publish_order():
    hub = FanoutHub()
    observer = hub.subscribe()
    statuses = ["Pending", "In Progress", "Pending", "In Progress", "Resolved"]
    for status in statuses:
        hub.publish(UPDATED, make_response(7, status))

    assert [e["data"]["status"] for e in pending(observer)] == statuses


async def test_full_observer_drops_without_blocking_others():
    hub = FanoutHub(queue_size=2)
    slow = hub.subscribe()
    fast = hub.subscribe()

    for i in range(1, 4):
        hub.publish(CREATED, make_response(i))
        assert [e["data"]["id"] for e in pending(fast)] == [i]

    assert slow.dropped == 1
    assert [e["data"]["id"] for e in pending(slow)] == [1, 2]


async def test_unsubscribe_stops_delivery_and_is_idempotent():
    hub = FanoutHub()
    observer = hub.subscribe()
    hub.unsubscribe(observer)
    hub.unsubscribe(observer)

    assert hub.publish(CREATED, make_response(1)) == 0
    assert pending(observer) == []
    assert hub.observer_count == 0


async def test_publish_returns_delivery_count():
    hub = FanoutHub()
    a, b = hub.subscribe(), hub.subscribe()
    assert hub.publish(CREATED, make_response(1)) == 2
    hub.unsubscribe(a)
    assert hub.publish(CREATED, make_response(2)) == 1
    assert [e["data"]["id"] for e in pending(b)] == [1, 2]


async def test_close_detaches_observers_with_stop_marker():
    hub = FanoutHub(queue_size=1)
    observer = hub.subscribe()
    hub.publish(CREATED, make_response(1))

    hub.close()

    assert hub.observer_count == 0
    assert pending(observer) == [None]


async def test_event_payload_is_json_ready():
    hub = FanoutHub()
    observer = hub.subscribe()
    hub.publish(CREATED, make_response(3))

    message = pending(observer)[0]
    assert message["data"]["category"] == "Fire"
    assert message["data"]["location"] == {"type": "Point", "coordinates": [77.2090, 28.6139]}
    assert isinstance(message["data"]["created_at"], str)


async def test_local_publisher_feeds_hub():
    hub = FanoutHub()
    observer = hub.subscribe()
    await EventPublisher(hub).publish(UPDATED, make_response(5))
    assert [e["type"] for e in pending(observer)] == ["incident-updated"]


class _FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("redis is down")
        self.published.append((channel, message))
        return 1


async def test_redis_publisher_sends_to_channel():
    hub = FanoutHub()
    observer = hub.subscribe()
    fake = _FakeRedis()
    relay = RedisEventPublisher(hub, fake, "events")

    await relay.publish(CREATED, make_response(9))

    channel, message = fake.published[0]
    assert channel == "events"
    assert FanoutEvent.model_validate_json(message).data.id == 9
    # local delivery happens when the message comes back from the channel
    assert pending(observer) == []
    relay._handle(message)
    assert [e["data"]["id"] for e in pending(observer)] == [9]


async def test_redis_publisher_falls_back_to_local_delivery():
    hub = FanoutHub()
    observer = hub.subscribe()
    relay = RedisEventPublisher(hub, _FakeRedis(fail=True), "events")

    await relay.publish(UPDATED, make_response(4))
    assert [e["data"]["id"] for e in pending(observer)] == [4]


async def test_redis_listener_ignores_malformed_messages():
    hub = FanoutHub()
    observer = hub.subscribe()
    RedisEventPublisher(hub, _FakeRedis(), "events")._handle('{"type": "bogus"}')
    assert pending(observer) == []


class _Socket:
    """Websocket stand-in: never sends client messages, each send takes `delay` seconds."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.sent = []
        self.closed_with = None
        self._gone = asyncio.Event()

    async def accept(self):
        pass

    async def receive(self):
        await self._gone.wait()
        return {"type": "websocket.disconnect"}

    async def send_json(self, message):
        await asyncio.sleep(self.delay)
        self.sent.append(message)

    async def close(self, code=1000):
        self.closed_with = code

    def disconnect(self):
        self._gone.set()


async def wait_for_observers(hub, count):
    for _ in range(100):
        if hub.observer_count == count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} observers, have {hub.observer_count}")


async def test_stalled_client_is_disconnected_while_others_keep_receiving():
    hub = FanoutHub(queue_size=5, send_timeout=0.05)
    healthy = hub.subscribe()
    stalled = _Socket(delay=5.0)
    session = asyncio.create_task(hub.stream(stalled))
    await wait_for_observers(hub, 2)

    hub.publish(CREATED, make_response(1))
    await asyncio.wait_for(session, timeout=2.0)

    assert stalled.closed_with == CLOSE_STALLED
    assert stalled.sent == []
    assert hub.observer_count == 1

    hub.publish(CREATED, make_response(2))
    assert [e["data"]["id"] for e in pending(healthy)] == [1, 2]


async def test_streamed_client_gets_events_and_going_away_on_shutdown():
    hub = FanoutHub(queue_size=5, send_timeout=1.0)
    sock = _Socket()
    session = asyncio.create_task(hub.stream(sock))
    await wait_for_observers(hub, 1)

    hub.publish(CREATED, make_response(1))
    hub.publish(UPDATED, make_response(1, "In Progress"))
    hub.close()
    await asyncio.wait_for(session, timeout=2.0)

    assert [(e["type"], e["data"]["status"]) for e in sock.sent] == [
        ("incident-created", "Pending"), ("incident-updated", "In Progress")]
    assert sock.closed_with == CLOSE_GOING_AWAY


async def test_client_disconnect_unsubscribes_without_close():
    hub = FanoutHub()
    sock = _Socket()
    session = asyncio.create_task(hub.stream(sock))
    await wait_for_observers(hub, 1)

    sock.disconnect()
    await asyncio.wait_for(session, timeout=2.0)

    assert hub.observer_count == 0
    assert sock.closed_with is None


class _UnsubscribingQueue(asyncio.Queue):
    """Unsubscribes another observer the moment an event is queued here."""

    def __init__(self, hub, other):
        super().__init__(maxsize=10)
        self.hub = hub
        self.other = other

    def put_nowait(self, item):
        self.hub.unsubscribe(self.other)
        super().put_nowait(item)


async def test_unsubscribe_during_delivery_is_safe():
    hub = FanoutHub()
    first = hub.subscribe()
    second = hub.subscribe()
    first.queue = _UnsubscribingQueue(hub, second)

    # the observer set for an event is fixed when delivery starts
    assert hub.publish(CREATED, make_response(1)) == 2
    assert hub.observer_count == 1
    assert hub.publish(CREATED, make_response(2)) == 1

    assert [e["data"]["id"] for e in pending(first)] == [1, 2]
    assert [e["data"]["id"] for e in pending(second)] == [1]
