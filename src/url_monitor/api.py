import logging
import re
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from url_monitor.database import Database
from url_monitor.errors import StorageError
from url_monitor.models import (
    CheckResult,
    GroupHierarchy,
    GroupStats,
    GroupURL,
    StatusCodeCount,
    URLStats,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME_RANGE = "24h"
MAX_TIME_RANGE = timedelta(days=36500)

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]

_SHORT_RANGE = re.compile(r"^(\d+)\s*([mhdw])$")
_SQLITE_RANGE = re.compile(r"^-?\s*(\d+)\s+(minute|hour|day|week)s?$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_time_range(value: str | None) -> timedelta:
    """Parse "30m", "24h", "7d", "2w" or the "-24 hours" / "-7 days" form."""
    text = (value or DEFAULT_TIME_RANGE).strip().lower()

    match = _SHORT_RANGE.match(text)
    if match:
        amount, unit = int(match.group(1)), _UNITS[match.group(2)]
    else:
        match = _SQLITE_RANGE.match(text)
        if not match:
            raise ValueError(f"Invalid time range: {value!r}")
        amount, unit = int(match.group(1)), match.group(2) + "s"

    if amount <= 0:
        raise ValueError(f"Time range must be positive: {value!r}")
    try:
        time_range = timedelta(**{unit: amount})
    except OverflowError as exc:
        raise ValueError(f"Time range too large: {value!r}") from exc
    if time_range > MAX_TIME_RANGE:
        raise ValueError(f"Time range exceeds {MAX_TIME_RANGE.days} days: {value!r}")
    return time_range


def _time_range_or_400(value: str | None) -> timedelta:
    try:
        return parse_time_range(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(database: Database, lifespan: Lifespan | None = None) -> FastAPI:
    app = FastAPI(
        title="URL Monitor",
        description="Read-only statistics over stored URL check results.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Store query failed for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/stats", response_model=list[URLStats], tags=["Monitoring"])
    async def get_stats(time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange")):
        return await database.query_stats(_time_range_or_400(time_range))

    @app.get("/api/results", response_model=list[CheckResult], tags=["Monitoring"])
    async def get_results(
        time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange"),
        group: str | None = None,
        url_name: str | None = Query(None, alias="urlName"),
    ):
        """Return stored check results, newest first."""
        return await database.query_results(
            _time_range_or_400(time_range), group=group, name=url_name
        )

    @app.get("/api/group-hierarchy", response_model=list[GroupHierarchy], tags=["Monitoring"])
    async def get_group_hierarchy():
        return await database.query_group_hierarchy()

    @app.get("/api/failed-requests", response_model=list[CheckResult], tags=["Monitoring"])
    async def get_failed_requests(
        time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange"),
    ):
        return await database.query_failed_requests(_time_range_or_400(time_range))

    @app.get("/api/groups", response_model=list[GroupStats], tags=["Monitoring"])
    async def get_group_stats(time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange")):
        return await database.query_group_stats(_time_range_or_400(time_range))

    @app.get("/api/groups/{group_name}/urls", response_model=list[GroupURL], tags=["Monitoring"])
    async def get_urls_by_group(group_name: str):
        return await database.query_urls_by_group(group_name)

    @app.get("/api/status-codes", response_model=list[StatusCodeCount], tags=["Monitoring"])
    async def get_status_codes(
        time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange"),
        group: str | None = None,
    ):
        """Return how often each status code was recorded, 0 meaning no response."""
        return await database.query_status_codes(_time_range_or_400(time_range), group=group)

    return app
