"""
Per-user contribution statistics, computed from the incident store on
every request.

Volunteer hours are a policy estimate per incident: no join or leave
timestamps are recorded, so the figure depends only on the incident's
status and category (see volunteer_hours).
"""
import calendar
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from ..models.incident import Incident
from ..schemas.contribution import (
    ContributionStats,
    ContributionType,
    ImpactLevel,
    MonthlyContribution,
    Priority,
    ReportedIncident,
    VolunteeredIncident,
)
from ..schemas.incident import IncidentCategory, IncidentStatus
from .geo_store import IncidentStore

HIGH_EFFORT_CATEGORIES = frozenset({
    IncidentCategory.fire,
    IncidentCategory.flood,
    IncidentCategory.medical_emergency,
    IncidentCategory.blood_donation,
})

MEDIUM_PRIORITY_CATEGORIES = frozenset({
    IncidentCategory.power_outage,
    IncidentCategory.accident,
    IncidentCategory.food_water_aid,
    IncidentCategory.shelter_help,
    IncidentCategory.elderly_support,
    IncidentCategory.community_support,
})

IMPACT_STATEMENTS = {
    IncidentCategory.fire: "Helped protect property",
    IncidentCategory.flood: "Protected multiple homes",
    IncidentCategory.medical_emergency: "Provided medical assistance",
    IncidentCategory.accident: "Managed traffic flow",
    IncidentCategory.power_outage: "Assisted affected residents",
    IncidentCategory.blood_donation: "Supported critical medical needs",
    IncidentCategory.food_water_aid: "Supplied essential resources",
    IncidentCategory.shelter_help: "Organized safe shelter",
    IncidentCategory.elderly_support: "Assisted vulnerable residents",
    IncidentCategory.lost_pet: "Reunited families with pets",
    IncidentCategory.cleanup_drive: "Restored community areas",
    IncidentCategory.community_support: "Coordinated neighborhood aid",
    IncidentCategory.other: "Provided community support",
}

MONTHS_IN_BREAKDOWN = 4


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def volunteer_hours(incident: Incident) -> int:
    """Resolved: 4h for high-effort categories, else 2h. In Progress: 2h. Pending: 0h."""
    status = IncidentStatus(incident.status)
    if status is IncidentStatus.resolved:
        return 4 if IncidentCategory(incident.category) in HIGH_EFFORT_CATEGORIES else 2
    if status is IncidentStatus.in_progress:
        return 2
    return 0


def priority_for(category: IncidentCategory) -> Priority:
    category = IncidentCategory(category)
    if category in HIGH_EFFORT_CATEGORIES:
        return Priority.high
    if category in MEDIUM_PRIORITY_CATEGORIES:
        return Priority.medium
    return Priority.low


def impact_statement(category: IncidentCategory) -> str:
    return IMPACT_STATEMENTS.get(IncidentCategory(category), "Made a positive impact")


def response_time(incident: Incident, now: datetime) -> str:
    if IncidentStatus(incident.status) is IncidentStatus.pending:
        return "N/A"
    minutes = max(0, int((now - as_utc(incident.created_at)).total_seconds() // 60))
    if minutes < 60:
        return f"{minutes} minutes"
    hours = minutes // 60
    return f"{hours} hour{'s' if hours > 1 else ''}"


def impact_score(report_count: int, volunteered_hours: int, resolved_report_count: int) -> int:
    return 2 * report_count + 3 * volunteered_hours + 5 * resolved_report_count


def impact_level(score: int) -> ImpactLevel:
    if score >= 50:
        return ImpactLevel.very_high
    if score >= 30:
        return ImpactLevel.high
    if score >= 15:
        return ImpactLevel.medium
    return ImpactLevel.low


def recent_months(now: datetime, count: int = MONTHS_IN_BREAKDOWN) -> List[Tuple[int, int]]:
    """(year, month) pairs for the last `count` calendar months, oldest first, current included."""
    months = []
    for back in range(count - 1, -1, -1):
        year, month = now.year, now.month - back
        while month <= 0:
            month += 12
            year -= 1
        months.append((year, month))
    return months


def _in_month(incident: Incident, year: int, month: int) -> bool:
    created = as_utc(incident.created_at)
    return created.year == year and created.month == month


def monthly_breakdown(reported: Iterable[Incident], volunteered: Iterable[Incident],
                      now: datetime) -> List[MonthlyContribution]:
    reported = list(reported)
    volunteered = list(volunteered)
    out = []
    for year, month in recent_months(now):
        out.append(MonthlyContribution(
            month=calendar.month_abbr[month],
            year=year,
            reports_filed=sum(1 for inc in reported if _in_month(inc, year, month)),
            volunteer_hours=sum(volunteer_hours(inc) for inc in volunteered if _in_month(inc, year, month)),
        ))
    return out


class ContributionAggregator:
    def __init__(self, store: IncidentStore):
        self.store = store

    async def stats(self, user_id: int, now: Optional[datetime] = None) -> ContributionStats:
        now = as_utc(now or datetime.now(timezone.utc))
        reported = await self.store.find_by_reporter(user_id)
        volunteered = await self.store.find_by_volunteer(user_id)

        report_count = len(reported)
        resolved_report_count = sum(1 for inc in reported if inc.status == IncidentStatus.resolved.value)
        hours = sum(volunteer_hours(inc) for inc in volunteered)
        completed = sum(1 for inc in volunteered if inc.status == IncidentStatus.resolved.value)
        score = impact_score(report_count, hours, resolved_report_count)

        return ContributionStats(
            report_count=report_count,
            resolved_report_count=resolved_report_count,
            volunteered_hours=hours,
            completed_volunteer_work=completed,
            community_impact_score=score,
            community_impact=impact_level(score),
            monthly_breakdown=monthly_breakdown(reported, volunteered, now),
            contribution_types=[
                ContributionType(name="Reports", value=report_count),
                ContributionType(name="Volunteer Hours", value=hours),
            ],
        )

    async def reported(self, user_id: int, now: Optional[datetime] = None) -> List[ReportedIncident]:
        now = as_utc(now or datetime.now(timezone.utc))
        return [
            ReportedIncident(
                id=inc.id,
                category=inc.category,
                description=inc.description,
                address=inc.address,
                date_reported=as_utc(inc.created_at),
                status=inc.status,
                priority=priority_for(inc.category),
                response_time=response_time(inc, now),
                coordinates=inc.coordinates,
                image_url=inc.image_url,
                volunteer_count=len(inc.volunteer_ids or []),
            )
            for inc in await self.store.find_by_reporter(user_id)
        ]

    async def volunteered(self, user_id: int) -> List[VolunteeredIncident]:
        return [
            VolunteeredIncident(
                id=inc.id,
                category=inc.category,
                description=inc.description,
                address=inc.address,
                # join times are not recorded; the report time stands in
                date_volunteered=as_utc(inc.created_at),
                status=inc.status,
                hours_contributed=volunteer_hours(inc),
                impact=impact_statement(inc.category),
                coordinates=inc.coordinates,
                image_url=inc.image_url,
            )
            for inc in await self.store.find_by_volunteer(user_id)
        ]
