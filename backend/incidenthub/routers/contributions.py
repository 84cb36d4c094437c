from typing import List

from fastapi import APIRouter, Depends

from ..core.deps import get_aggregator, get_coordinator
from ..core.security import get_current_user_id
from ..schemas.contribution import ContributionStats, ReportedIncident, VolunteeredIncident
from ..schemas.incident import DeleteResponse, VolunteerActionResponse
from ..services.contributions import ContributionAggregator
from ..services.volunteers import VolunteerCoordinator

router = APIRouter(
    prefix="/contributions",
    tags=["contributions"],
)


@router.get("/stats", response_model=ContributionStats)
async def contribution_stats(
    user_id: int = Depends(get_current_user_id),
    aggregator: ContributionAggregator = Depends(get_aggregator),
):
    return await aggregator.stats(user_id)


@router.get("/reported", response_model=List[ReportedIncident])
async def reported_incidents(
    user_id: int = Depends(get_current_user_id),
    aggregator: ContributionAggregator = Depends(get_aggregator),
):
    return await aggregator.reported(user_id)


@router.get("/volunteered", response_model=List[VolunteeredIncident])
async def volunteered_incidents(
    user_id: int = Depends(get_current_user_id),
    aggregator: ContributionAggregator = Depends(get_aggregator),
):
    return await aggregator.volunteered(user_id)


# Same operations as under /incidents, kept for the contributions page.

@router.post("/volunteer/{incident_id}", response_model=VolunteerActionResponse)
async def volunteer(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    incident = await coordinator.join(incident_id, user_id)
    return {"message": "Successfully volunteered for incident", "incident": incident}


@router.delete("/volunteer/{incident_id}", response_model=VolunteerActionResponse)
async def unvolunteer(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    incident = await coordinator.leave(incident_id, user_id)
    return {"message": "Successfully removed from incident volunteers", "incident": incident}


@router.delete("/incident/{incident_id}", response_model=DeleteResponse)
async def delete_incident(
    incident_id: int,
    user_id: int = Depends(get_current_user_id),
    coordinator: VolunteerCoordinator = Depends(get_coordinator),
):
    await coordinator.delete(incident_id, user_id)
    return {"message": "Incident deleted successfully", "deleted_incident_id": incident_id}
