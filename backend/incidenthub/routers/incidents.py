import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from ..core.config import Settings
from ..core.deps import get_coordinator, get_events, get_settings, get_store, get_uploader
from ..core.errors import ValidationError
from ..core.ratelimit import limit_reports
from ..core.relay import EventPublisher
from ..core.security import get_current_user_id
from ..schemas.incident import (
    DeleteResponse,
    EventKind,
    IncidentResponse,
    IncidentStatus,
    VolunteerActionResponse,
    parse_report,
    validate_point,
)
from ..services.geo_store import IncidentStore, render
from ..services.volunteers import VolunteerCoordinator

log = logging.getLogger("uvicorn.error").getChild("routes_incidents")

router = APIRouter(
    prefix="/incidents",
    tags=["incidents"],
    responses={404: {"description": "Not found"}},
)


@router.post(
    "",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_reports)],
)
async def report_incident(
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    coordinates: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    media: Optional[UploadFile] = File(None),
    user_id: int = Depends(get_current_user_id),
    store: IncidentStore = Depends(get_store),
    events: EventPublisher = Depends(get_events),
    uploader=Depends(get_uploader),
):
    """
    Report a new incident. Multipart form: category, description, address and
    either `coordinates` (JSON `[lng, lat]`) or `longitude` + `latitude`, plus
    an optional `media` image. A failed image upload does not fail the report.
    """
    fields = {
        "category": category,
        "description": description,
        "address": address,
        "coordinates": coordinates,
        "longitude": longitude,
        "latitude": latitude,
    }
    report = parse_report({k: v for k, v in fields.items() if v is not None})
    reporter = await store.users_by_id([user_id])

    image_url = None
    if media is not None and media.filename:
        if uploader is None:
            log.warning("[report] uploads not configured; storing incident without image")
        else:
            result = await uploader.upload(
                await media.read(),
                content_type=media.content_type or "application/octet-stream",
                filename=media.filename,
            )
            if result.ok:
                image_url = result.url
            else:
                log.warning("[report] image upload failed (%s); storing incident without image", result.error)

    incident = await store.create(report, reporter_id=user_id, image_url=image_url)
    out = render([incident], reporter)[0]
    await events.publish(EventKind.incident_created, out)
    return out


@router.get("/nearby", response_model=List[IncidentResponse])
async def nearby_incidents(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    user_id: int = Depends(get_current_user_id),
    store: IncidentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Open incidents within the nearby radius of (lat, lng), newest first."""
    if lat is None or lng is None:
        raise ValidationError("Latitude and Longitude are required.")
    point = validate_point(longitude=lng, latitude=lat)
    incidents = await store.find_near(point, settings.NEARBY_RADIUS_METERS, exclude_status=IncidentStatus.resolved)
    return await store.present_many(incidents)


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    store: IncidentStore = Depends(get_store),
):
    return await store.present(await store.get(incident_id))


@router.post("/{incident_id}/volunteer", response_model=VolunteerActionResponse)
async def volunteer(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    incident = await coordinator.join(incident_id, user_id)
    return {"message": "Successfully volunteered for incident", "incident": incident}


@router.delete("/{incident_id}/volunteer", response_model=VolunteerActionResponse)
async def unvolunteer(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    incident = await coordinator.leave(incident_id, user_id)
    return {"message": "Successfully removed from incident volunteers", "incident": incident}


@router.post("/{incident_id}/resolve", response_model=IncidentResponse)
async def resolve_incident(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    return await coordinator.resolve(incident_id, user_id)


@router.delete("/{incident_id}", response_model=DeleteResponse)
async def delete_incident(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    await coordinator.delete(incident_id, user_id)
    return {"message": "Incident deleted successfully", "deleted_incident_id": incident_id}
