import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Callable, Dict

from ..core.errors import Conflict, Forbidden, StaleWrite
from ..core.relay import EventPublisher
from ..models.incident import Incident
from ..schemas.incident import EventKind, IncidentResponse
from . import state_machine
from .geo_store import IncidentStore, render

log = logging.getLogger("uvicorn.error").getChild("volunteers")


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or awaits it."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: int):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class VolunteerCoordinator:
    """
    Single writer of incident volunteer sets and status.

    Every mutation runs as read, check, mutate, persist, broadcast. Inside a
    process the incident's lock serializes them; across processes the store's
    versioned update rejects a write based on a stale read, and the whole
    step is retried from a fresh read. Display data is loaded before the
    write, so a persisted change is always returned and broadcast.
    """

    max_attempts = 5

    def __init__(self, store: IncidentStore, events: EventPublisher):
        self.store = store
        self.events = events
        self._locks = KeyedLock()

    async def join(self, incident_id: int, user_id: int) -> IncidentResponse:
        def apply(incident: Incident) -> None:
            volunteers = list(incident.volunteer_ids or [])
            if user_id in volunteers:
                raise Conflict("You have already volunteered for this incident")
            if incident.reporter_id == user_id:
                raise Forbidden("You cannot volunteer for your own reported incident")
            volunteers.append(user_id)
            incident.volunteer_ids = volunteers
            incident.status = state_machine.after_join(incident.status).value

        out = await self._mutate(incident_id, apply)
        log.info("[volunteer] user=%s joined incident=%s status=%s volunteers=%d",
                 user_id, incident_id, out.status.value, len(out.volunteers))
        return out

    async def leave(self, incident_id: int, user_id: int) -> IncidentResponse:
        def apply(incident: Incident) -> None:
            volunteers = list(incident.volunteer_ids or [])
            if user_id not in volunteers:
                raise Conflict("You are not volunteering for this incident")
            volunteers.remove(user_id)
            incident.volunteer_ids = volunteers
            incident.status = state_machine.after_leave(incident.status, len(volunteers)).value

        out = await self._mutate(incident_id, apply)
        log.info("[volunteer] user=%s left incident=%s status=%s volunteers=%d",
                 user_id, incident_id, out.status.value, len(out.volunteers))
        return out

    async def resolve(self, incident_id: int, user_id: int) -> IncidentResponse:
        def apply(incident: Incident) -> None:
            state_machine.ensure_reporter(incident, user_id, "resolve")
            incident.status = state_machine.resolve(incident.status).value

        out = await self._mutate(incident_id, apply)
        log.info("[incident] user=%s resolved incident=%s", user_id, incident_id)
        return out

    async def delete(self, incident_id: int, user_id: int) -> None:
        async with self._locks.hold(incident_id):
            for attempt in range(1, self.max_attempts + 1):
                incident = await self.store.get(incident_id)
                state_machine.ensure_deletable(incident, user_id)
                try:
                    await self.store.delete(incident_id, version=incident.version)
                    break
                except StaleWrite:
                    if attempt == self.max_attempts:
                        raise
                    log.info("[incident] delete of incident=%s raced another write; retrying", incident_id)

        log.info("[incident] user=%s deleted incident=%s", user_id, incident_id)

    async def _mutate(self, incident_id: int, apply: Callable[[Incident], None]) -> IncidentResponse:
        async with self._locks.hold(incident_id):
            for attempt in range(1, self.max_attempts + 1):
                incident = await self.store.get(incident_id)
                apply(incident)
                users = await self.store.users_for([incident])
                try:
                    await self.store.update(incident)
                except StaleWrite:
                    if attempt == self.max_attempts:
                        raise
                    log.info("[volunteer] incident=%s changed under us (attempt %d); retrying",
                             incident_id, attempt)
                    continue
                out = render([incident], users)[0]
                await self.events.publish(EventKind.incident_updated, out)
                return out
