# server/api.py
"""
FastAPI Backend API Module

Exposes the fatigue analytics core over REST: driver login, session
start/end, detection-event ingestion, fatigue prediction, driver rating and
statistics, and manual triggers for the maintenance jobs.

Core errors map onto HTTP status codes: invalid input 400, driver name
conflict 409, record store failure 503. Soft failures (no active session)
are reported in the response body or as 404.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.core import FatigueCore, build_core
from server.database import SessionLocal, init_db
from server.errors import DriverNameConflictError, InvalidInputError, PersistenceError
from server.feature_extractor import DEFAULT_WINDOW_MINUTES
from server.input_validator import validator
from server.session_reaper import MaintenanceScheduler
from shared.config import Config
from shared.models import (
    ClientEvent,
    DriverLogin,
    DriverOut,
    DriverState,
    DriverStatistics,
    DriverSummary,
    EventOut,
    EventResponse,
    MaintenanceResult,
    MetadataSummary,
    RiskAssessment,
    SessionOut,
    SessionRequest,
)

logger = logging.getLogger(__name__)


def create_app(core: Optional[FatigueCore] = None,
               enable_maintenance: Optional[bool] = None) -> FastAPI:
    """
    Build the API around `core`. Without one, the core is built over the
    configured database when the app starts.
    """
    if enable_maintenance is None:
        enable_maintenance = Config.ENABLE_MAINTENANCE

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "core", None) is None:
            init_db()
            app.state.core = build_core(SessionLocal)
        scheduler = None
        if enable_maintenance:
            scheduler = MaintenanceScheduler(app.state.core.reaper)
            scheduler.start()
        yield
        if scheduler is not None:
            scheduler.stop()

    app = FastAPI(title="FatigueWatch API", version="1.0.0", lifespan=lifespan)
    app.state.core = core

    # CORS – allow dashboard origin (adjust in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DriverNameConflictError)
    async def name_conflict_handler(request: Request, exc: DriverNameConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        return JSONResponse(status_code=503, content={"detail": "Record store unavailable, retry later"})

    _register_routes(app)
    return app


def get_core(request: Request) -> FatigueCore:
    """Dependency to obtain the core built for this app."""
    return request.app.state.core


def _register_routes(app: FastAPI) -> None:

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    @app.post("/api/drivers/login", response_model=DriverOut)
    def login(payload: DriverLogin, core: FatigueCore = Depends(get_core)):
        return core.drivers.login(payload.driver_id, payload.driver_name)

    @app.get("/api/drivers", response_model=List[DriverSummary])
    def list_drivers(core: FatigueCore = Depends(get_core)):
        return [
            DriverSummary(driver_id=d.driver_id, driver_name=d.driver_name,
                          rating=core.analytics.get_driver_rating(d.driver_id))
            for d in core.drivers.list_drivers()
        ]

    @app.get("/api/drivers/{driver_id}/rating")
    def driver_rating(driver_id: str, core: FatigueCore = Depends(get_core)):
        return {"driver_id": driver_id, "rating": core.analytics.get_driver_rating(driver_id)}

    @app.get("/api/drivers/{driver_id}/statistics", response_model=DriverStatistics)
    def driver_statistics(driver_id: str, core: FatigueCore = Depends(get_core)):
        return core.analytics.get_driver_statistics(driver_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @app.post("/api/sessions/start", response_model=SessionOut)
    def start_session(payload: SessionRequest, core: FatigueCore = Depends(get_core)):
        return core.sessions.start_session(payload.driver_id)

    @app.post("/api/sessions/end", response_model=SessionOut)
    def end_session(payload: SessionRequest, core: FatigueCore = Depends(get_core)):
        session = core.sessions.end_session(payload.driver_id)
        if session is None:
            raise HTTPException(status_code=404,
                                detail=f"No active session found for driver: {payload.driver_id}")
        return session

    @app.get("/api/sessions/active", response_model=List[SessionOut])
    def active_sessions(core: FatigueCore = Depends(get_core)):
        return core.sessions.get_all_active_sessions()

    @app.get("/api/sessions/{session_id}", response_model=SessionOut)
    def session_by_id(session_id: int, core: FatigueCore = Depends(get_core)):
        session = core.sessions.get_session_by_id(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return session

    @app.get("/api/drivers/{driver_id}/sessions", response_model=List[SessionOut])
    def driver_sessions(driver_id: str, core: FatigueCore = Depends(get_core)):
        return core.sessions.get_sessions_for_driver(driver_id)

    @app.get("/api/drivers/{driver_id}/active-session", response_model=SessionOut)
    def driver_active_session(driver_id: str, core: FatigueCore = Depends(get_core)):
        session = core.sessions.get_active_session(driver_id)
        if session is None:
            raise HTTPException(status_code=404,
                                detail=f"No active session found for driver: {driver_id}")
        return session

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @app.post("/api/detection-event", response_model=EventResponse)
    def detection_event(payload: ClientEvent, core: FatigueCore = Depends(get_core)):
        """
        Accept a detection event from the perception client.

        Steps:
        1. Validate driver id and state (400 on failure).
        2. NORMAL is acknowledged but not stored.
        3. Other states are stored in the driver's active session; without
           one the event is acknowledged with received=false.
        """
        logger.debug(f"Received detection event: {payload}")
        validator.require_driver_id(payload.driver_id)
        state = validator.require_state(payload.state)
        if state is DriverState.NORMAL:
            return EventResponse(received=True, message="NORMAL state is not stored")

        event = core.events.log_event_with_metadata(
            payload.driver_id, state, payload.duration, payload.metadata)
        if event is None:
            return EventResponse(received=False,
                                 message=f"No active session found for driver: {payload.driver_id}")
        if payload.session_id is not None and payload.session_id != event.session_id:
            logger.info(f"Client session {payload.session_id} differs from active session "
                        f"{event.session_id} for driver {payload.driver_id}")
        return EventResponse(received=True, event_id=event.event_id,
                             message="Event stored successfully")

    @app.get("/api/sessions/{session_id}/events", response_model=List[EventOut])
    def session_events(session_id: int, core: FatigueCore = Depends(get_core)):
        return core.events.get_events_for_session(session_id)

    @app.get("/api/drivers/{driver_id}/events", response_model=List[EventOut])
    def driver_events(driver_id: str, limit: int = 20, core: FatigueCore = Depends(get_core)):
        return core.events.get_recent_events_for_driver(driver_id, limit)

    @app.get("/api/sessions/{session_id}/metadata-summary", response_model=MetadataSummary)
    def metadata_summary(session_id: int, core: FatigueCore = Depends(get_core)):
        return MetadataSummary(
            session_id=session_id,
            average_ear=core.metadata.average_ear_for_session(session_id),
            metadata_fields=core.metadata.metadata_fields_for_session(session_id),
            source_distribution=core.metadata.source_distribution_for_session(session_id),
            event_type_distribution=core.metadata.event_type_distribution_for_session(session_id),
        )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    @app.get("/api/driver/{driver_id}/prediction", response_model=RiskAssessment)
    def prediction(driver_id: str, period: int = Query(DEFAULT_WINDOW_MINUTES),
                   core: FatigueCore = Depends(get_core)):
        return core.analytics.get_fatigue_prediction(driver_id, period)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @app.post("/api/maintenance/stale-sweep", response_model=MaintenanceResult)
    def stale_sweep(core: FatigueCore = Depends(get_core)):
        closed = core.reaper.sweep_stale_sessions()
        return MaintenanceResult(operation="stale-session-sweep", affected=len(closed))

    @app.post("/api/maintenance/retention-purge", response_model=MaintenanceResult)
    def retention_purge(core: FatigueCore = Depends(get_core)):
        return MaintenanceResult(operation="retention-purge",
                                 affected=core.reaper.purge_old_events())

    @app.get("/health")
    def health_check():
        """Simple health endpoint."""
        return {"status": "healthy"}


app = create_app()
