import asyncio
import logging
import uuid
from typing import Dict

from fastapi import WebSocket

from ..schemas.incident import EventKind, FanoutEvent, IncidentResponse

log = logging.getLogger("uvicorn.error").getChild("fanout")

CLOSE_GOING_AWAY = 1001
CLOSE_STALLED = 1011


class Observer:
    """One subscriber: a bounded queue of pending event messages."""

    def __init__(self, maxsize: int):
        self.id = uuid.uuid4().hex[:8]
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __repr__(self) -> str:
        return f"<Observer {self.id} pending={self.queue.qsize()} dropped={self.dropped}>"


class FanoutHub:
    """
    Best-effort broadcast of incident events to connected observers.

    publish() never waits on an observer: each one has its own bounded queue
    and an event that does not fit is dropped for that observer only. Events
    reach a given observer in publish order. Observers only see events
    published after they subscribed.
    """

    def __init__(self, queue_size: int = 100, send_timeout: float = 5.0):
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._observers: Dict[str, Observer] = {}

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self) -> Observer:
        observer = Observer(self.queue_size)
        self._observers[observer.id] = observer
        log.info("[WS] observer %s subscribed; now %d observer(s)", observer.id, len(self._observers))
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        if self._observers.pop(observer.id, None) is not None:
            log.info("[WS] observer %s unsubscribed; now %d observer(s)", observer.id, len(self._observers))

    def publish(self, kind: EventKind, incident: IncidentResponse) -> int:
        return self.deliver(FanoutEvent(type=kind, data=incident))

    def deliver(self, event: FanoutEvent) -> int:
        message = event.model_dump(mode="json")
        targets = list(self._observers.values())
        delivered = 0
        for observer in targets:
            try:
                observer.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                observer.dropped += 1
                log.warning("[WS] observer %s queue full; dropped %s for incident %s",
                            observer.id, event.type.value, event.data.id)
        log.info("[WS] queued type=%s incident=%s to %d/%d observer(s)",
                 event.type.value, event.data.id, delivered, len(targets))
        return delivered

    async def stream(self, websocket: WebSocket) -> None:
        """
        Serve one websocket client until it disconnects, stalls or the hub
        shuts down. Shutdown closes with 1001, a stalled send with 1011.
        """
        # registered before the handshake completes so no event after connect is missed
        observer = self.subscribe()
        sender = None
        tasks = []
        done = set()
        try:
            await websocket.accept()
            receiver = asyncio.create_task(self._drain(websocket))
            sender = asyncio.create_task(self._pump(websocket, observer))
            tasks = [receiver, sender]
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self.unsubscribe(observer)
            for task in tasks:
                task.cancel()

        if sender is not None and sender in done:
            try:
                await websocket.close(code=sender.result())
            except RuntimeError:
                pass

    async def _drain(self, websocket: WebSocket) -> None:
        # client messages are ignored
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    async def _pump(self, websocket: WebSocket, observer: Observer) -> int:
        """Send queued events until shutdown or a failed send; returns the close code."""
        while True:
            message = await observer.queue.get()
            if message is None:
                return CLOSE_GOING_AWAY
            try:
                await asyncio.wait_for(websocket.send_json(message), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                log.warning("[WS] observer %s stalled for %.1fs; disconnecting", observer.id, self.send_timeout)
                return CLOSE_STALLED
            except Exception as e:
                log.warning("[WS] send to observer %s failed: %s", observer.id, e)
                return CLOSE_STALLED

    def close(self) -> None:
        """Detach every observer; their pumps stop after the queued events."""
        for observer in list(self._observers.values()):
            self.unsubscribe(observer)
            while True:
                try:
                    observer.queue.put_nowait(None)
                    break
                except asyncio.QueueFull:
                    observer.queue.get_nowait()
