import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger("uvicorn.error").getChild("errors")


class IncidentHubError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(IncidentHubError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(IncidentHubError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(IncidentHubError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(IncidentHubError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(IncidentHubError):
    status_code = status.HTTP_409_CONFLICT


class StaleWrite(Conflict):
    """The incident changed between read and write; re-read and try again."""


class TooManyRequests(IncidentHubError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class Unavailable(IncidentHubError):
    """Store or transport failure. The message never reaches the caller."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def _incidenthub_error_handler(request: Request, exc: IncidentHubError) -> JSONResponse:
    if isinstance(exc, Unavailable):
        log.error("[%s %s] unavailable: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"detail": "Internal server error"}, status_code=exc.status_code)

    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code, headers=headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return JSONResponse(
        {"detail": "; ".join(problems) or "Invalid request"},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IncidentHubError, _incidenthub_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
