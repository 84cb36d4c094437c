import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaError

from ..core.errors import ValidationError


class IncidentCategory(str, Enum):
    fire = "Fire"
    flood = "Flood"
    power_outage = "Power Outage"
    accident = "Accident"
    medical_emergency = "Medical Emergency"
    blood_donation = "Blood Donation"
    food_water_aid = "Food & Water Aid"
    shelter_help = "Shelter Help"
    elderly_support = "Elderly Support"
    lost_pet = "Lost Pet"
    cleanup_drive = "Cleanup Drive"
    community_support = "Community Support"
    other = "Other"


class IncidentStatus(str, Enum):
    pending = "Pending"
    in_progress = "In Progress"
    resolved = "Resolved"


class EventKind(str, Enum):
    incident_created = "incident-created"
    incident_updated = "incident-updated"


class GeoPoint(BaseModel):
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)


class IncidentCreate(BaseModel):
    category: IncidentCategory
    description: str
    address: str
    location: GeoPoint

    @field_validator("description", "address")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


def _describe(exc: SchemaError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return "; ".join(parts)


def parse_report(data: Mapping[str, Any]) -> IncidentCreate:
    """
    Build an IncidentCreate from loosely typed input (form fields or a dict).

    Coordinates may arrive as a JSON ``[lng, lat]`` string (what the report
    form sends), as a list, or as separate ``longitude``/``latitude`` values.
    Raises ValidationError with a readable message on any problem.
    """
    if isinstance(data, IncidentCreate):
        return data

    payload = dict(data)
    if "location" not in payload:
        coords = payload.pop("coordinates", None)
        if isinstance(coords, str):
            try:
                coords = json.loads(coords)
            except ValueError:
                raise ValidationError("coordinates must be a JSON array [longitude, latitude]")
        if coords is not None:
            if not isinstance(coords, (list, tuple)) or len(coords) != 2:
                raise ValidationError("coordinates must be a [longitude, latitude] pair")
            payload["location"] = {"longitude": coords[0], "latitude": coords[1]}
        elif payload.get("longitude") is not None and payload.get("latitude") is not None:
            payload["location"] = {
                "longitude": payload.pop("longitude"),
                "latitude": payload.pop("latitude"),
            }
        else:
            raise ValidationError("coordinates are required")

    try:
        return IncidentCreate.model_validate(payload)
    except SchemaError as exc:
        raise ValidationError(_describe(exc)) from exc


def validate_point(longitude: Any, latitude: Any) -> GeoPoint:
    try:
        return GeoPoint(longitude=longitude, latitude=latitude)
    except SchemaError as exc:
        raise ValidationError(_describe(exc)) from exc


class UserRef(BaseModel):
    id: int
    full_name: Optional[str] = None
    email: Optional[str] = None

    class Config:
        from_attributes = True


class GeoJSONPoint(BaseModel):
    type: str = "Point"
    coordinates: List[float]


class IncidentResponse(BaseModel):
    id: int
    category: IncidentCategory
    description: str
    address: str
    location: GeoJSONPoint
    image_url: Optional[str] = None
    status: IncidentStatus
    reported_by: UserRef
    volunteers: List[UserRef]
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # sqlite hands back naive values
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class VolunteerActionResponse(BaseModel):
    message: str
    incident: IncidentResponse


class DeleteResponse(BaseModel):
    message: str
    deleted_incident_id: int


class FanoutEvent(BaseModel):
    type: EventKind
    data: IncidentResponse
