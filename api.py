"""
Secure Data API — FastAPI server
Authenticated CRUD over named JSON documents kept in Azure Blob Storage.

Run:  uvicorn api:app --reload --port 8000
Docs: http://localhost:8000/docs
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from securedata.blob_store import build_store
from securedata.config import GatewaySettings
from securedata.gateway import DataGateway
from securedata.permissions import PermissionTable

load_dotenv()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

API_KEY_HEADER = "x-api-key"
DATA_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

CORS_BASE_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
    "Access-Control-Allow-Credentials": "true",
}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status:    str
    timestamp: str
    backend:   str   # "azure" | "memory"


class ErrorResponse(BaseModel):
    """Shape of every non-2xx body returned by /api/data."""
    error:   str   # "Unauthorized" | "Forbidden" | "Bad Request" | "Not Found" | "Server Error"
    message: str


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_gateway(settings: GatewaySettings) -> DataGateway:
    """Assemble the gateway from process settings.  Called once at startup."""
    permissions = (
        PermissionTable.from_file(settings.permissions_file)
        if settings.permissions_file
        else PermissionTable.default()
    )
    if not settings.valid_api_keys:
        logger.warning("VALID_API_KEYS is empty; every data request will be rejected.")
    logger.info(
        "Gateway ready | backend={} | roles={} | keys={}",
        settings.store_backend, sorted(permissions.roles), len(settings.valid_api_keys),
    )
    return DataGateway(
        store=build_store(settings),
        permissions=permissions,
        valid_api_keys=settings.valid_api_keys,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the gateway once per process unless one was injected."""
    if getattr(app.state, "gateway", None) is None:
        settings = GatewaySettings.from_env()
        app.state.gateway = build_gateway(settings)
        app.state.allowed_origins = settings.allowed_origins
    yield
    logger.info("Secure Data API shutting down.")


def cors_headers(origin: Optional[str], allowed_origins: Iterable[str]) -> dict[str, str]:
    """
    Echo *origin* when it is allow-listed; otherwise fall back to the first
    configured origin, or ``*`` when none are configured.
    """
    allowed = list(allowed_origins)
    if origin and origin in allowed:
        allow_origin = origin
    else:
        allow_origin = allowed[0] if allowed else "*"
    return {"Access-Control-Allow-Origin": allow_origin, **CORS_BASE_HEADERS}


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------


def create_app(
    gateway: Optional[DataGateway] = None,
    allowed_origins: Iterable[str] = (),
) -> FastAPI:
    """
    Build the ASGI app.  Pass *gateway* to skip environment-driven setup
    (tests, scripted local runs).
    """
    app = FastAPI(
        title="Secure Data API",
        description=(
            "Role-gated CRUD over the sales portal's JSON documents "
            "(clients, contracts, energy profiles, LMP database, ...)."
        ),
        version="2.0.0",
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    app.state.allowed_origins = tuple(allowed_origins)

    async def dispatch(
        request: Request,
        filename: Optional[str],
        record_id: Optional[str] = None,
    ) -> JSONResponse:
        gateway: DataGateway = request.app.state.gateway
        headers = cors_headers(request.headers.get("origin"), request.app.state.allowed_origins)
        raw_body = await request.body() if request.method in ("POST", "PUT", "PATCH") else None

        result = await run_in_threadpool(
            gateway.handle,
            request.method,
            request.headers.get(API_KEY_HEADER),
            filename,
            record_id,
            raw_body=raw_body,
        )
        return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)

    @app.options("/{path:path}", include_in_schema=False)
    async def preflight(request: Request, path: str):
        """CORS preflight — no authentication."""
        headers = cors_headers(request.headers.get("origin"), request.app.state.allowed_origins)
        return Response(status_code=204, headers=headers)

    @app.get("/health", response_model=HealthResponse, tags=["Meta"])
    async def health(request: Request):
        """Service liveness plus the active storage backend."""
        return HealthResponse(
            status="ok",
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            backend=request.app.state.gateway.store.backend,
        )

    @app.api_route(
        "/api/data", methods=DATA_METHODS, tags=["Data"], include_in_schema=False,
    )
    async def data_root(request: Request):
        return await dispatch(request, None)

    @app.api_route(
        "/api/data/{filename}",
        methods=DATA_METHODS,
        tags=["Data"],
        responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    )
    async def data_document(request: Request, filename: str):
        """Read, create/append, replace or delete a whole document."""
        return await dispatch(request, filename)

    @app.api_route(
        "/api/data/{filename}/{record_id}",
        methods=DATA_METHODS,
        tags=["Data"],
        responses={
            400: {"model": ErrorResponse},
            401: {"model": ErrorResponse},
            403: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
        },
    )
    async def data_record(request: Request, filename: str, record_id: str):
        """Read, update or delete one record of an array document."""
        return await dispatch(request, filename, record_id)

    return app


app = create_app()
