"""FastAPI application with lifespan, router mounting and error mapping."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nomina.api.routes import health, periods
from nomina.core.config import AppSettings
from nomina.core.exceptions import (
    ConfigurationError,
    DependencyError,
    FormulaError,
    InvalidInputError,
    NominaError,
    PeriodStateError,
    PersistenceConflict,
    RecordNotFoundError,
)
from nomina.core.logging import configure_logging
from nomina.engine.period_manager import PeriodManager
from nomina.persistence import create_persistence

_STATUS_CODES: tuple[tuple[type[NominaError], int], ...] = (
    (PeriodStateError, 409),
    (PersistenceConflict, 409),
    (RecordNotFoundError, 404),
    (ConfigurationError, 422),
    (InvalidInputError, 422),
    (FormulaError, 422),
    (DependencyError, 422),
)


def status_code_for(exc: NominaError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return 500


async def _nomina_error_handler(request: Request, exc: NominaError) -> JSONResponse:
    body: dict = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ConfigurationError):
        body["problems"] = exc.problems
    return JSONResponse(status_code=status_code_for(exc), content=body)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and tear down application resources."""
    settings = app.state.settings or AppSettings()
    app.state.settings = settings
    configure_logging(settings.log_level)
    if app.state.manager is None:
        backends = create_persistence(settings)
        app.state.cache = backends.cache
        app.state.manager = PeriodManager(
            backends.concepts, backends.periods, backends.payrolls, backends.inputs, settings=settings,
        )
    yield


def create_app(
    manager: PeriodManager | None = None,
    settings: AppSettings | None = None,
    cache=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A pre-built ``manager`` skips backend wiring (used by tests and local runs).
    """
    app = FastAPI(
        title="Nomina Payroll Engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.manager = manager
    app.state.cache = cache
    app.add_exception_handler(NominaError, _nomina_error_handler)  # type: ignore[arg-type]
    app.include_router(health.router)
    app.include_router(periods.router, prefix="/periods")
    return app
