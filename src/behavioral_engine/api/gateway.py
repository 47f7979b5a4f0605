"""API Gateway - FastAPI application for the behavioral engine."""

import asyncio
import os
import threading
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from behavioral_engine.agents.feedback import RespondRequest
from behavioral_engine.api.auth import decode_token, get_current_user
from behavioral_engine.api.schemas import (
    BatchEventsIn,
    ChildrenResponse,
    ChildStats,
    ErrorResponse,
    EventIn,
    IngestResponse,
    InterventionListResponse,
    OrchestrateRequest,
    OrchestrateResponse,
    RespondResponse,
    RiskHistoryResponse,
    RiskStateResponse,
)
from behavioral_engine.api.service import BehavioralEngineService
from behavioral_engine.common.constants import DataConstants
from behavioral_engine.common.exceptions import (
    AuthenticationError,
    BehavioralEngineError,
    ValidationError,
)
from behavioral_engine.common.logging import get_logger
from behavioral_engine.data.schemas.intervention import InterventionStatus
from behavioral_engine.data.schemas.policy import PolicyUpdate, ResolvedPolicy
from behavioral_engine.realtime import MessageType

logger = get_logger(__name__)


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ServiceManager:
    """Thread-safe service singleton manager."""

    _instance: Optional[BehavioralEngineService] = None
    _lock = threading.Lock()
    _state = LifecycleState.UNINITIALIZED

    @classmethod
    def initialize(cls, service: Optional[BehavioralEngineService] = None) -> BehavioralEngineService:
        """Build the service once. A prebuilt ``service`` is installed as-is."""
        with cls._lock:
            if cls._instance is not None:
                return cls._instance
            cls._state = LifecycleState.INITIALIZING
            try:
                cls._instance = service or BehavioralEngineService.from_config()
            except Exception:
                cls._state = LifecycleState.FAILED
                logger.exception("BehavioralEngineService failed to initialize")
                raise
            cls._state = LifecycleState.READY
            logger.info("BehavioralEngineService initialized")
            return cls._instance

    @classmethod
    def get_service(cls) -> BehavioralEngineService:
        """Get or create the service instance (thread-safe)."""
        if cls._instance is None:
            return cls.initialize()
        return cls._instance

    @classmethod
    def state(cls) -> LifecycleState:
        return cls._state

    @classmethod
    def shutdown(cls) -> None:
        """Shutdown the service and release resources."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.shutdown()
                cls._instance = None
                logger.info("BehavioralEngineService shutdown complete")
            cls._state = LifecycleState.UNINITIALIZED


def get_service() -> BehavioralEngineService:
    """Get the service instance."""
    return ServiceManager.get_service()


# =============================================================================
# CORS CONFIGURATION
# =============================================================================

def get_cors_origins() -> List[str]:
    """Get allowed CORS origins from environment.

    Example: BEHAVIOR_CORS_ORIGINS="https://app.example.com,https://family.example.com"
    """
    origins_env = os.environ.get("BEHAVIOR_CORS_ORIGINS", "")

    if origins_env:
        return [origin.strip() for origin in origins_env.split(",") if origin.strip()]

    if os.environ.get("BEHAVIOR_ENVIRONMENT", "development") == "production":
        logger.warning(
            "BEHAVIOR_CORS_ORIGINS not set in production. "
            "CORS will be disabled. Set BEHAVIOR_CORS_ORIGINS for cross-origin access."
        )
        return []

    logger.warning("Running in development mode with permissive CORS (allow_origins=['*'])")
    return ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Behavioral engine gateway starting up...")
    ServiceManager.initialize()
    logger.info("Behavioral engine gateway ready")

    yield

    logger.info("Behavioral engine gateway shutting down...")
    ServiceManager.shutdown()
    logger.info("Behavioral engine gateway shutdown complete")


environment = os.environ.get("BEHAVIOR_ENVIRONMENT", "development")
enable_docs_default = "false" if environment == "production" else "true"
enable_docs = os.environ.get("BEHAVIOR_ENABLE_DOCS", enable_docs_default).lower() == "true"

app = FastAPI(
    title="Behavioral Engine API Gateway",
    description="Behavioral risk orchestration: events in, graduated interventions out.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if enable_docs else None,
    redoc_url="/redoc" if enable_docs else None,
)

cors_origins = get_cors_origins()
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["POST", "GET", "PUT"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def _validation_details(errors) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in errors
        ]
    }


@app.exception_handler(BehavioralEngineError)
async def engine_error_handler(request: Request, exc: BehavioralEngineError) -> JSONResponse:
    """Map the engine's error taxonomy onto status codes."""
    request_id = getattr(request.state, "request_id", None)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        exc.message,
        extra={"request_id": request_id, "error_code": exc.code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.code,
            message=exc.message,
            request_id=request_id,
            details=exc.details,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed payloads are 400, not FastAPI's default 422."""
    request_id = getattr(request.state, "request_id", None)
    logger.warning(
        "Validation error",
        extra={"request_id": request_id, "error": str(exc)}
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="VALIDATION_ERROR",
            message="Request contains invalid or missing fields",
            request_id=request_id,
            details=_validation_details(exc.errors()),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors.

    Logs full exception for debugging but returns sanitized message to client.
    """
    request_id = getattr(request.state, "request_id", None)
    logger.exception(
        "Unexpected error",
        extra={"request_id": request_id, "error_type": type(exc).__name__}
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="INTERNAL_ERROR",
            message="An unexpected error occurred",
            request_id=request_id,
        ).model_dump(),
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to each request for tracing."""
    request_id = f"req_{uuid4().hex[:12]}"
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# EVENTS & INTERVENTIONS
# =============================================================================

@app.post(
    "/v1/events",
    response_model=IngestResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Record one event or a batch",
)
def ingest_events(
    body: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
) -> IngestResponse:
    """Accepts a single event object or ``{"events": [...]}``.

    The response returns once the events are committed. Risk evaluation
    runs afterwards.
    """
    try:
        if "events" in body:
            events = BatchEventsIn.model_validate(body).events
        else:
            events = [EventIn.model_validate(body)]
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid event payload",
            details=_validation_details(e.errors()),
        ) from e

    response = get_service().ingest(user_id, events)
    logger.info(
        "Events ingested",
        extra={
            "user_id": user_id,
            "event_count": len(events),
            "session_id": response.session_id,
        }
    )
    return response


@app.post(
    "/v1/interventions/respond",
    response_model=RespondResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def respond_to_intervention(
    request: RespondRequest,
    user_id: str = Depends(get_current_user),
) -> RespondResponse:
    return get_service().respond(user_id, request)


@app.get("/v1/interventions", response_model=InterventionListResponse)
def list_interventions(
    status_filter: Optional[InterventionStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=DataConstants.DEFAULT_QUERY_LIMIT, ge=1, le=DataConstants.MAX_QUERY_LIMIT),
    user_id: str = Depends(get_current_user),
) -> InterventionListResponse:
    return InterventionListResponse(
        interventions=get_service().list_interventions(user_id, status=status_filter, limit=limit)
    )


@app.get("/v1/risk-state", response_model=RiskStateResponse)
def get_risk_state(user_id: str = Depends(get_current_user)) -> RiskStateResponse:
    return RiskStateResponse(risk_state=get_service().get_risk_state(user_id))


@app.get("/v1/risk-history", response_model=RiskHistoryResponse)
def get_risk_history(
    limit: int = Query(default=DataConstants.DEFAULT_QUERY_LIMIT, ge=1, le=DataConstants.MAX_QUERY_LIMIT),
    user_id: str = Depends(get_current_user),
) -> RiskHistoryResponse:
    return RiskHistoryResponse(history=get_service().get_risk_history(user_id, limit=limit))


@app.post("/v1/orchestrate", response_model=OrchestrateResponse)
def orchestrate(
    request: OrchestrateRequest,
    user_id: str = Depends(get_current_user),
) -> OrchestrateResponse:
    """Run the pipeline synchronously for the caller (debug/admin)."""
    return get_service().orchestrate(user_id, request)


# =============================================================================
# GUARDIAN
# =============================================================================

@app.get("/v1/guardian/children", response_model=ChildrenResponse)
def list_children(guardian_id: str = Depends(get_current_user)) -> ChildrenResponse:
    return ChildrenResponse(children=get_service().list_children(guardian_id))


@app.get("/v1/guardian/children/{user_id}/stats", response_model=ChildStats)
def child_stats(user_id: str, guardian_id: str = Depends(get_current_user)) -> ChildStats:
    return get_service().child_stats(guardian_id, user_id)


@app.put("/v1/guardian/children/{user_id}/policy", response_model=ResolvedPolicy)
def update_child_policy(
    user_id: str,
    changes: PolicyUpdate,
    guardian_id: str = Depends(get_current_user),
) -> ResolvedPolicy:
    return get_service().update_child_policy(guardian_id, user_id, changes)


@app.get("/v1/guardian/children/{user_id}/interventions", response_model=InterventionListResponse)
def child_interventions(
    user_id: str,
    status_filter: Optional[InterventionStatus] = Query(default=None, alias="status"),
    guardian_id: str = Depends(get_current_user),
) -> InterventionListResponse:
    return InterventionListResponse(
        interventions=get_service().child_interventions(guardian_id, user_id, status=status_filter)
    )


# =============================================================================
# REALTIME
# =============================================================================

async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


@app.websocket("/v1/realtime")
async def realtime(
    websocket: WebSocket,
    token: Optional[str] = None,
    subscriber_id: Optional[str] = None,
) -> None:
    """Snapshot on connect, then the user's channel messages."""
    try:
        user_id = decode_token(token or "")
    except AuthenticationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    service = get_service()
    await websocket.accept()
    subscription = service.channels.subscribe(user_id, subscriber_id)
    listener = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        snapshot = await run_in_threadpool(service.snapshot, user_id)
        await websocket.send_json({"type": MessageType.SNAPSHOT, "user_id": user_id, "payload": snapshot})

        while subscription.active and not listener.done():
            message = await run_in_threadpool(subscription.get, service.realtime_poll_seconds)
            if message is not None:
                await websocket.send_json(message.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        listener.cancel()
        await asyncio.gather(listener, return_exceptions=True)
        service.channels.unsubscribe(subscription)
        logger.info(
            "Realtime subscriber disconnected",
            extra={"user_id": user_id, "subscriber_id": subscription.subscriber_id},
        )


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "service": "behavioral-engine-gateway"}


@app.get("/ready")
async def readiness_check() -> JSONResponse:
    """Readiness check endpoint.

    Returns 503 until the service singleton is ready.
    """
    state = ServiceManager.state()
    if state != LifecycleState.READY:
        return JSONResponse(
            status_code=503,
            content={"status": state.value, "service": "behavioral-engine-gateway"},
        )
    return JSONResponse(content={"status": "ready", "service": "behavioral-engine-gateway"})
