import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.errors import NotFound, StaleWrite, Unavailable, ValidationError
from ..models.incident import Incident, geography_of
from ..models.user import User
from ..schemas.incident import (
    GeoJSONPoint,
    GeoPoint,
    IncidentCreate,
    IncidentResponse,
    IncidentStatus,
    UserRef,
    parse_report,
)
from .geo import bounding_ranges, haversine_m

log = logging.getLogger("uvicorn.error").getChild("geo_store")


def _newest_first(stmt):
    return stmt.order_by(Incident.created_at.desc(), Incident.id.desc())


class IncidentStore:
    """
    Durable incident storage with proximity lookup.

    With `spatial` (PostGIS) proximity is a single ST_DWithin query served by
    the GiST geography index. Otherwise candidates come from the
    (latitude, longitude) index through a spherical bounding box and are
    filtered by great-circle distance.
    """

    def __init__(self, sessionmaker: async_sessionmaker, spatial: bool = False):
        self._sessionmaker = sessionmaker
        self.spatial = spatial

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._sessionmaker() as session:
                yield session
        except SQLAlchemyError as exc:
            log.exception("[store] database error")
            raise Unavailable("incident store unavailable") from exc

    async def create(
        self,
        report: Union[IncidentCreate, Mapping[str, Any]],
        reporter_id: int,
        image_url: Optional[str] = None,
    ) -> Incident:
        report = parse_report(report)
        now = datetime.now(timezone.utc)
        incident = Incident(
            category=report.category.value,
            description=report.description,
            address=report.address,
            longitude=report.location.longitude,
            latitude=report.location.latitude,
            image_url=image_url or None,
            status=IncidentStatus.pending.value,
            reporter_id=reporter_id,
            volunteer_ids=[],
            version=1,
            created_at=now,
            updated_at=now,
        )
        async with self._session() as session:
            session.add(incident)
            await session.commit()
        log.info("[store] created incident id=%s category=%s by user=%s",
                 incident.id, incident.category, reporter_id)
        return incident

    async def get(self, incident_id: int) -> Incident:
        async with self._session() as session:
            incident = await session.get(Incident, incident_id)
        if incident is None:
            raise NotFound("Incident not found")
        return incident

    async def find_near(
        self,
        point: GeoPoint,
        radius_m: float,
        exclude_status: Optional[IncidentStatus] = None,
    ) -> List[Incident]:
        if radius_m is None or radius_m <= 0:
            raise ValidationError("radius must be positive")

        stmt = near_statement(point, radius_m, exclude_status, self.spatial)
        async with self._session() as session:
            result = await session.execute(stmt)
            candidates = list(result.scalars().all())

        if self.spatial:
            return candidates
        return [
            inc for inc in candidates
            if haversine_m(point.longitude, point.latitude, inc.longitude, inc.latitude) <= radius_m
        ]

    async def find_by_reporter(self, user_id: int) -> List[Incident]:
        stmt = _newest_first(select(Incident).where(Incident.reporter_id == user_id))
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_by_volunteer(self, user_id: int) -> List[Incident]:
        # volunteer ids live in a JSON column, so membership is checked here
        async with self._session() as session:
            result = await session.execute(_newest_first(select(Incident)))
            rows = result.scalars().all()
        return [inc for inc in rows if user_id in (inc.volunteer_ids or [])]

    async def update(self, incident: Incident) -> Incident:
        """
        Persist status and volunteer set of an incident loaded at
        `incident.version`. Raises StaleWrite when the stored row has moved
        on since it was read; a concurrent write is never overwritten.
        """
        now = datetime.now(timezone.utc)
        read_version = incident.version
        stmt = (
            update(Incident)
            .where(Incident.id == incident.id, Incident.version == read_version)
            .values(
                status=incident.status,
                volunteer_ids=list(incident.volunteer_ids or []),
                version=read_version + 1,
                updated_at=now,
            )
        )
        exists = True
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                exists = await session.scalar(select(Incident.id).where(Incident.id == incident.id)) is not None
        if result.rowcount == 0:
            if not exists:
                raise NotFound("Incident not found")
            raise StaleWrite("Incident was modified concurrently")
        incident.version = read_version + 1
        incident.updated_at = now
        return incident

    async def delete(self, incident_id: int, version: Optional[int] = None) -> None:
        """Delete an incident; with `version`, only if it is still at that version."""
        stmt = delete(Incident).where(Incident.id == incident_id)
        if version is not None:
            stmt = stmt.where(Incident.version == version)
        exists = True
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0 and version is not None:
                exists = await session.scalar(select(Incident.id).where(Incident.id == incident_id)) is not None
        if result.rowcount == 0:
            if version is None or not exists:
                raise NotFound("Incident not found")
            raise StaleWrite("Incident was modified concurrently")
        log.info("[store] deleted incident id=%s", incident_id)

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._session() as session:
            return await session.get(User, user_id)

    async def users_by_id(self, user_ids: Iterable[int]) -> Dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        async with self._session() as session:
            result = await session.execute(select(User).where(User.id.in_(ids)))
            return {u.id: u for u in result.scalars().all()}

    async def ping(self) -> None:
        async with self._session() as session:
            await session.execute(text("select 1"))

    async def users_for(self, incidents: Iterable[Incident]) -> Dict[int, User]:
        """Reporter and volunteer rows for a batch, in one lookup."""
        wanted = set()
        for inc in incidents:
            wanted.add(inc.reporter_id)
            wanted.update(inc.volunteer_ids or [])
        return await self.users_by_id(wanted)

    async def present(self, incident: Incident) -> IncidentResponse:
        return (await self.present_many([incident]))[0]

    async def present_many(self, incidents: List[Incident]) -> List[IncidentResponse]:
        return render(incidents, await self.users_for(incidents))


def near_statement(point: GeoPoint, radius_m: float, exclude_status: Optional[IncidentStatus] = None,
                   spatial: bool = False):
    if spatial:
        stmt = select(Incident).where(
            func.ST_DWithin(
                geography_of(Incident.longitude, Incident.latitude),
                geography_of(point.longitude, point.latitude),
                radius_m,
            )
        )
    else:
        lat_range, lon_ranges = bounding_ranges(point.longitude, point.latitude, radius_m)
        stmt = select(Incident).where(
            Incident.latitude.between(*lat_range),
            or_(*[Incident.longitude.between(lo, hi) for lo, hi in lon_ranges]),
        )
    if exclude_status is not None:
        stmt = stmt.where(Incident.status != exclude_status.value)
    return _newest_first(stmt)


def render(incidents: Iterable[Incident], users: Mapping[int, User]) -> List[IncidentResponse]:
    """Response models with reporter/volunteer display data from `users`; ids alone when missing."""

    def ref(user_id: int) -> UserRef:
        user = users.get(user_id)
        return UserRef.model_validate(user) if user else UserRef(id=user_id)

    return [
        IncidentResponse(
            id=inc.id,
            category=inc.category,
            description=inc.description,
            address=inc.address,
            location=GeoJSONPoint(coordinates=inc.coordinates),
            image_url=inc.image_url,
            status=inc.status,
            reported_by=ref(inc.reporter_id),
            volunteers=[ref(uid) for uid in inc.volunteer_ids or []],
            created_at=inc.created_at,
            updated_at=inc.updated_at,
        )
        for inc in incidents
    ]
