from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .incident import IncidentCategory, IncidentStatus


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class ImpactLevel(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    very_high = "Very High"


class MonthlyContribution(BaseModel):
    month: str  # short month name, e.g. "Oct"
    year: int
    reports_filed: int
    volunteer_hours: int


class ContributionType(BaseModel):
    name: str
    value: int


class ContributionStats(BaseModel):
    report_count: int
    resolved_report_count: int
    volunteered_hours: int
    completed_volunteer_work: int
    community_impact_score: int
    community_impact: ImpactLevel
    monthly_breakdown: List[MonthlyContribution]
    contribution_types: List[ContributionType]


class ReportedIncident(BaseModel):
    id: int
    category: IncidentCategory
    description: str
    address: str
    date_reported: datetime
    status: IncidentStatus
    priority: Priority
    response_time: str
    coordinates: List[float]
    image_url: Optional[str] = None
    volunteer_count: int


class VolunteeredIncident(BaseModel):
    id: int
    category: IncidentCategory
    description: str
    address: str
    date_volunteered: datetime
    status: IncidentStatus
    hours_contributed: int
    impact: str
    coordinates: List[float]
    image_url: Optional[str] = None
