from fastapi import Request

from ..services.contributions import ContributionAggregator
from ..services.geo_store import IncidentStore
from ..services.volunteers import VolunteerCoordinator
from .config import Settings
from .relay import EventPublisher


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> IncidentStore:
    return request.app.state.store


def get_events(request: Request) -> EventPublisher:
    return request.app.state.events


def get_coordinator(request: Request) -> VolunteerCoordinator:
    return request.app.state.coordinator


def get_aggregator(request: Request) -> ContributionAggregator:
    return request.app.state.aggregator


def get_uploader(request: Request):
    return request.app.state.uploader
