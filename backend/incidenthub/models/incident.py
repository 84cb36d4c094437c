from datetime import datetime, timezone

from geoalchemy2 import Geography
from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, cast, func, literal_column

from ..core.database import Base

POINT_4326 = Geography(geometry_type="POINT", srid=4326)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def geography_of(longitude, latitude):
    """
    PostGIS geography point built from longitude/latitude columns or values.
    The SRID stays a literal so queries match the index expression.
    """
    return cast(func.ST_SetSRID(func.ST_MakePoint(longitude, latitude), literal_column("4326")), POINT_4326)


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True, index=True)
    category = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    address = Column(Text, nullable=False)

    # WGS84 point; only used by proximity queries
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)

    image_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="Pending", index=True)  # Pending, In Progress, Resolved
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # user ids in join order; written only by the volunteer coordinator
    volunteer_ids = Column(JSON, nullable=False, default=list)

    # bumped by every status/volunteer write; updates only apply to the version they read
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_incidents_lat_lon", "latitude", "longitude"),
        # GiST over the geography point, answers ST_DWithin on PostGIS
        Index(
            "ix_incidents_geog",
            geography_of(longitude, latitude),
            postgresql_using="gist",
        ).ddl_if(dialect="postgresql"),
    )

    @property
    def coordinates(self):
        return [self.longitude, self.latitude]

    def __repr__(self) -> str:
        return f"<Incident id={self.id} category={self.category!r} status={self.status!r} v{self.version}>"
