import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import Settings
from .core.database import build_engine, build_sessionmaker, create_schema, uses_postgis
from .core.errors import Unavailable, install_error_handlers
from .core.ratelimit import SlidingWindowLimiter
from .core.relay import EventPublisher, RedisEventPublisher
from .core.security import CredentialValidator
from .core.websocket import FanoutHub
from .routers import contributions, incidents, realtime
from .services.contributions import ContributionAggregator
from .services.geo_store import IncidentStore
from .services.uploads import BlobUploader
from .services.volunteers import VolunteerCoordinator

log = logging.getLogger("uvicorn.error").getChild("main")


def configure_logging(level: str) -> None:
    logging.basicConfig(stream=sys.stdout, level=level, format="%(levelname)s:%(name)s:%(message)s")
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings)
        await create_schema(engine)
        store = IncidentStore(build_sessionmaker(engine), spatial=uses_postgis(engine))

        hub = FanoutHub(settings.FANOUT_QUEUE_SIZE, settings.FANOUT_SEND_TIMEOUT)
        if settings.REDIS_URL:
            events = RedisEventPublisher.from_url(hub, settings.REDIS_URL, settings.REDIS_CHANNEL)
        else:
            events = EventPublisher(hub)
        await events.start()

        app.state.store = store
        app.state.hub = hub
        app.state.events = events
        app.state.credentials = CredentialValidator(settings.SECRET_KEY, settings.ALGORITHM, store)
        app.state.coordinator = VolunteerCoordinator(store, events)
        app.state.aggregator = ContributionAggregator(store)
        app.state.uploader = BlobUploader.from_settings(settings)
        app.state.report_limiter = SlidingWindowLimiter(settings.REPORT_RATE_LIMIT, settings.REPORT_RATE_WINDOW)
        log.info("[startup] store ready; spatial=%s relay=%s uploads=%s",
                 "postgis" if store.spatial else "bbox",
                 "redis" if settings.REDIS_URL else "local",
                 "on" if app.state.uploader else "off")
        try:
            yield
        finally:
            hub.close()
            await events.stop()
            await engine.dispose()
            log.info("[shutdown] closed")

    app = FastAPI(title="IncidentHub API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(incidents.router)
    app.include_router(contributions.router)
    app.include_router(realtime.router)

    @app.get("/")
    async def root():
        return {"message": "IncidentHub API is running"}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        status = {"ok": True, "db": False}
        try:
            await app.state.store.ping()
            status["db"] = True
        except Unavailable:
            status["ok"] = False
        return JSONResponse(status, headers={"Cache-Control": "no-store"})

    return app


def main() -> None:
    """Run the API with settings from the environment. Same as `uvicorn --factory incidenthub.main:create_app`."""
    settings = Settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.API_PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
