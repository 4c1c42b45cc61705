"""FastAPI application serving the experiment catalog and analytics ingestion.

Uses a lifespan context manager and pure ASGI middleware. Records live in
``app.state.records`` (a ``RecordStore``).
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from pagelab.config import get_settings

from .errors import ErrorCode, error_response
from .middleware import (
    ApiKeyMiddleware,
    ErrorHandlingMiddleware,
    RateLimitMiddleware,
    RequestBodyLimitMiddleware,
    RequestLoggingMiddleware,
)
from .models import (
    AnalyticsEventIn,
    ConversionRequest,
    ExperimentCreate,
    ExperimentUpdate,
    HealthResponse,
    LiveResponse,
)
from .records import RecordStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging on startup and flag readiness."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app.state.ready = True
    logger.info("pagelab API ready (environment=%s)", settings.ENVIRONMENT)
    yield
    app.state.ready = False
    logger.info("Application shutdown complete.")


def _dump(model: Any) -> dict:
    return model.model_dump(by_alias=True, mode="json")


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _invalid(message: str, exc: ValidationError | None = None) -> JSONResponse:
    body = error_response(ErrorCode.VALIDATION_ERROR, message)
    if exc is not None:
        body["error"]["details"] = exc.errors(include_url=False, include_context=False)
    return JSONResponse(status_code=400, content=body)


def create_app(records: RecordStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="pagelab experiments and analytics API",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.records = records or RecordStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-API-Key"],
    )

    # Starlette executes middleware in REVERSE add order: BodyLimit runs
    # first (outermost), RateLimit last (innermost).
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(ApiKeyMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestBodyLimitMiddleware)

    def _records(request: Request) -> RecordStore:
        return request.app.state.records

    # ------------------------------------------------------------------
    # Public: experiment catalog
    # ------------------------------------------------------------------
    @app.get("/api/experiments/active")
    async def active_experiments(request: Request):
        experiments = await _records(request).get_active_experiments()
        return {"success": True, "data": [_dump(e) for e in experiments]}

    @app.post("/api/experiments/convert")
    async def convert(request: Request):
        try:
            body = ConversionRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _invalid("Invalid conversion data", exc)

        await _records(request).create_event(
            AnalyticsEventIn(
                event_type="experiment_conversion",
                event_data={
                    "experimentId": body.experiment_id,
                    "variantId": body.variant_id,
                    "conversionType": body.conversion_type,
                },
                session_id=body.session_id,
                visitor_id=body.visitor_id,
                page_url=body.page_url,
            )
        )
        return {"success": True}

    # ------------------------------------------------------------------
    # Public: analytics ingestion
    # ------------------------------------------------------------------
    @app.post("/api/analytics/track", status_code=201)
    async def track(request: Request):
        try:
            event = AnalyticsEventIn.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _invalid("Invalid event data", exc)

        event = event.model_copy(
            update={
                "user_agent": request.headers.get("user-agent"),
                "referrer": request.headers.get("referer"),
            }
        )
        stored = await _records(request).create_event(event)
        return {"success": True, "eventId": stored.id}

    @app.post("/api/analytics/batch", status_code=201)
    async def track_batch(request: Request):
        body = await _read_json(request)
        events = body.get("events") if isinstance(body, dict) else None
        if not isinstance(events, list):
            return _invalid("Events must be an array")
        limit = get_settings().MAX_BATCH_EVENTS
        if len(events) > limit:
            return _invalid(f"At most {limit} events per batch")

        stamp = {
            "user_agent": request.headers.get("user-agent"),
            "referrer": request.headers.get("referer"),
        }
        records = _records(request)
        tracked = 0
        for raw in events:
            try:
                event = AnalyticsEventIn.model_validate(raw)
            except ValidationError:
                continue
            await records.create_event(event.model_copy(update=stamp))
            tracked += 1

        if tracked < len(events):
            logger.info("Batch partially accepted: tracked=%d total=%d", tracked, len(events))
        return {"success": True, "tracked": tracked, "total": len(events)}

    # ------------------------------------------------------------------
    # Admin: analytics
    # ------------------------------------------------------------------
    @app.get("/api/admin/analytics/summary")
    async def analytics_summary(request: Request):
        counts = await _records(request).get_event_counts()
        return {"success": True, "data": [_dump(c) for c in counts]}

    @app.get("/api/admin/analytics/events")
    async def analytics_events(request: Request, limit: int = 100, eventType: str | None = None):
        events = await _records(request).get_events(event_type=eventType, limit=max(limit, 1))
        return {"success": True, "data": [_dump(e) for e in events]}

    # ------------------------------------------------------------------
    # Admin: experiments
    # ------------------------------------------------------------------
    @app.get("/api/admin/experiments")
    async def list_experiments(request: Request):
        experiments = await _records(request).list_experiments()
        return {"success": True, "data": [_dump(e) for e in experiments]}

    @app.post("/api/admin/experiments", status_code=201)
    async def create_experiment(request: Request):
        try:
            data = ExperimentCreate.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _invalid("Invalid experiment definition", exc)
        experiment = await _records(request).create_experiment(data)
        return {"success": True, "data": _dump(experiment)}

    @app.patch("/api/admin/experiments/{experiment_id}")
    async def update_experiment(request: Request, experiment_id: int):
        try:
            data = ExperimentUpdate.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _invalid("Invalid experiment update", exc)
        try:
            experiment = await _records(request).update_experiment(experiment_id, data)
        except ValidationError as exc:
            # Fields valid on their own can still conflict with the stored record.
            return _invalid("Invalid experiment update", exc)
        if experiment is None:
            return JSONResponse(
                status_code=404,
                content=error_response(ErrorCode.NOT_FOUND, "Experiment not found"),
            )
        return {"success": True, "data": _dump(experiment)}

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------
    @app.get("/live", response_model=LiveResponse)
    async def liveness():
        return LiveResponse()

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        records = _records(request)
        ready = getattr(request.app.state, "ready", False)
        body = HealthResponse(
            status="healthy" if ready else "starting",
            version=get_settings().VERSION,
            experiments_loaded=len(await records.get_active_experiments()),
            events_stored=await records.count_events(),
            environment=get_settings().ENVIRONMENT,
        )
        return JSONResponse(content=body.model_dump(), status_code=200 if ready else 503)

    return app


app = create_app()

if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "pagelab.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=True,
    )
