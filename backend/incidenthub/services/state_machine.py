"""
Incident status transitions.

Status follows the volunteer set: an incident with volunteers is In Progress,
one without is Pending, and Resolved is terminal for volunteer changes. Every
function here is pure; callers apply the result inside the same mutation that
changes the volunteer set.
"""
from ..core.errors import Conflict, Forbidden
from ..models.incident import Incident
from ..schemas.incident import IncidentStatus


def after_join(status: IncidentStatus) -> IncidentStatus:
    status = IncidentStatus(status)
    if status is IncidentStatus.pending:
        return IncidentStatus.in_progress
    return status


def after_leave(status: IncidentStatus, remaining: int) -> IncidentStatus:
    status = IncidentStatus(status)
    if remaining == 0 and status is IncidentStatus.in_progress:
        return IncidentStatus.pending
    return status


def resolve(status: IncidentStatus) -> IncidentStatus:
    if IncidentStatus(status) is IncidentStatus.resolved:
        raise Conflict("Incident is already resolved")
    return IncidentStatus.resolved


def is_consistent(status: IncidentStatus, volunteer_count: int) -> bool:
    status = IncidentStatus(status)
    if status is IncidentStatus.resolved:
        return True
    if volunteer_count:
        return status is IncidentStatus.in_progress
    return status is IncidentStatus.pending


def ensure_reporter(incident: Incident, user_id: int, action: str) -> None:
    if incident.reporter_id != user_id:
        raise Forbidden(f"You can only {action} incidents you reported")


def ensure_deletable(incident: Incident, user_id: int) -> None:
    ensure_reporter(incident, user_id, "delete")
    if IncidentStatus(incident.status) is IncidentStatus.resolved:
        raise Conflict("Cannot delete resolved incidents")
