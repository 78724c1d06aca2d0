"""FastAPI server for the oven monitoring system."""

from typing import Dict, Any, Optional
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator
import structlog

from ...errors import PersistenceError, SessionNotFoundError, StorageUnavailableError
from ...models import CommandResult, ErrorCode, OvenId, utc_now
from ...services.oven_controller import (
    DEFAULT_SESSION_LIMIT,
    DEFAULT_TEMPERATURE_LIMIT,
    OvenController
)
from .websocket import ConnectionManager, websocket_endpoint

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ErrorCode.ALREADY_RUNNING: 409,
    ErrorCode.NOT_RUNNING: 409,
    ErrorCode.STORAGE_UNAVAILABLE: 503,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_REQUEST: 400,
}


class StartLoggingRequest(BaseModel):
    """Request model for starting a session."""

    order_number: str = Field(min_length=1, description="Production order, used as product id")
    operation: str = Field(min_length=1)
    quantity: int = Field(ge=0)

    @field_validator('order_number', 'operation')
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TemperatureResponse(BaseModel):
    """Response model for /ovens/{oven_id}/temperature."""

    oven_id: OvenId
    temperature: Optional[float] = None


class HealthResponse(BaseModel):
    """Response model for /health."""

    status: str
    timestamp: datetime
    storage_ready: bool
    ovens: Dict[str, Any]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _command_response(result: CommandResult) -> JSONResponse:
    status_code = 200 if result.ok else ERROR_STATUS[result.error]
    return JSONResponse(status_code=status_code, content=result.model_dump(mode='json'))


def create_app(controller: OvenController) -> FastAPI:
    """Create FastAPI application with all routes."""

    connection_manager = ConnectionManager(controller)
    controller.live_state.subscribe(connection_manager.on_reading)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("API server starting up")
        yield
        controller.live_state.unsubscribe(connection_manager.on_reading)
        logger.info("API server shutting down")

    app = FastAPI(
        title="Oven Monitor API",
        description="HTTP API for the two-oven temperature logging system",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.controller = controller
    app.state.connection_manager = connection_manager

    # CORS configuration for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageUnavailableError)
    @app.exception_handler(PersistenceError)
    async def storage_error_handler(request, exc):
        logger.error("Storage error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.get("/ovens/{oven_id}/state")
    async def get_oven_state(oven_id: OvenId):
        """Running/idle status and last temperature of one oven."""
        return controller.get_oven_state(oven_id).model_dump(mode='json')

    @app.get("/ovens/{oven_id}/session")
    async def get_active_session(oven_id: OvenId):
        """Active session of one oven, for restoring an operator screen."""
        return controller.get_active_session(oven_id).model_dump(mode='json')

    @app.get("/ovens/{oven_id}/temperature", response_model=TemperatureResponse)
    async def get_latest_temperature(oven_id: OvenId):
        """Last received temperature of one oven."""
        return TemperatureResponse(oven_id=oven_id, temperature=controller.get_latest_temperature(oven_id))

    @app.post("/ovens/{oven_id}/start")
    async def start_logging(oven_id: OvenId, request: StartLoggingRequest):
        """Open a logging session on an idle oven."""
        result = await controller.start_logging(
            oven_id,
            request.order_number,
            request.operation,
            request.quantity
        )
        return _command_response(result)

    @app.post("/ovens/{oven_id}/stop")
    async def stop_logging(oven_id: OvenId):
        """Close the running session of an oven after a final flush."""
        result = await controller.stop_logging(oven_id)
        return _command_response(result)

    @app.get("/settings")
    async def get_settings():
        """Operation labels and logging policy of both ovens."""
        return controller.get_settings().export_dict()

    @app.put("/settings")
    async def save_settings(patch: Dict[str, Any] = Body(...)):
        """Merge a partial settings payload; running ovens are reprogrammed."""
        try:
            settings = controller.save_settings(patch)
        except ValidationError as e:
            logger.warning("Rejected settings update", error=str(e))
            raise HTTPException(
                status_code=400,
                detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            )

        return settings.export_dict()

    @app.get("/sessions")
    async def list_sessions(limit: int = Query(DEFAULT_SESSION_LIMIT, ge=1, le=DEFAULT_SESSION_LIMIT)):
        """Session history of both ovens, newest first."""
        records = await controller.list_sessions(limit)
        return [record.model_dump(mode='json') for record in records]

    @app.get("/sessions/{oven_id}/{session_id}")
    async def get_session(oven_id: OvenId, session_id: str):
        """One session record."""
        try:
            record = await controller.get_session(oven_id, session_id)
        except SessionNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)

        return record.model_dump(mode='json')

    @app.get("/products/{product_id}/temperatures")
    async def get_session_temperatures(
        product_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = Query(DEFAULT_TEMPERATURE_LIMIT, ge=1, le=DEFAULT_TEMPERATURE_LIMIT)
    ):
        """Temperature records of one product, oldest first. Naive bounds are UTC."""
        start = _as_utc(start)
        end = _as_utc(end)
        if start and end and start > end:
            raise HTTPException(status_code=400, detail="start must not be after end")

        records = await controller.get_session_temperatures(product_id, start, end, limit)
        return [record.model_dump(mode='json') for record in records]

    @app.websocket("/ws")
    async def websocket_route(websocket: WebSocket, client_id: Optional[str] = None):
        """WebSocket endpoint for real-time temperature updates."""
        await websocket_endpoint(connection_manager, websocket, client_id)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Storage readiness and oven status."""
        storage_ready = controller.store.is_ready
        return HealthResponse(
            status="healthy" if storage_ready else "degraded",
            timestamp=utc_now(),
            storage_ready=storage_ready,
            ovens={
                oven_id.value: controller.get_oven_state(oven_id).model_dump(mode='json')
                for oven_id in OvenId
            }
        )

    @app.get("/stats")
    async def get_stats():
        """Controller, scheduler and connection statistics."""
        stats = controller.get_stats()
        stats["connections"] = {
            "active_connections": len(connection_manager.active_connections),
            "messages_sent": connection_manager.messages_sent
        }
        return stats

    return app


def create_server(app: FastAPI, host: str = "127.0.0.1", port: int = 5002, debug: bool = False):
    """Build a uvicorn server for ``app`` that runs inside the caller's event loop."""
    import uvicorn

    log_level = "debug" if debug else "info"
    logger.info("Starting API server", host=host, port=port, debug=debug)

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    return uvicorn.Server(config)


# Export the main components
__all__ = [
    "create_app",
    "create_server",
    "StartLoggingRequest",
    "TemperatureResponse",
    "HealthResponse",
    "ERROR_STATUS"
]
