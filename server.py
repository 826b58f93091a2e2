# FastAPI Application Factory

import asyncio
import contextlib
import time
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api_client import DatabricksAPIClient, DatabricksAPIError, log
from catalog_admin import CatalogAdmin
import config
from dependencies import ApiError
from routes_assistant import router as assistant_router
from routes_auth import router as auth_router
from routes_catalog import router as catalog_router
from routes_identity import router as identity_router
from routes_workspace import router as workspace_router
from scim import ScimService
from session_store import ExpiringStore, sweep_forever
from stats_cache import SnapshotCache
from table_loader import LoadError
from workspace_stats import WorkspaceStatsAggregator


def _error(status: int, message: str, **details) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message, **details})


def install_error_handlers(app: FastAPI):
    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError):
        return _error(exc.status, exc.message, **exc.details)

    @app.exception_handler(LoadError)
    async def load_error(request: Request, exc: LoadError):
        log(f"[SAGA] {request.url.path} -> {exc.status}: {exc.message}")
        if exc.details:
            return _error(exc.status, exc.message, details=exc.details)
        return _error(exc.status, exc.message)

    @app.exception_handler(DatabricksAPIError)
    async def vendor_error(request: Request, exc: DatabricksAPIError):
        log(f"[ERROR] {request.method} {request.url.path}: {exc}")
        if exc.error_code:
            return _error(500, exc.message, error_code=exc.error_code)
        return _error(500, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = []
        for err in exc.errors():
            loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
            name = ".".join(loc) or "body"
            if name not in fields:
                fields.append(name)
        return _error(400, f"Missing required parameters: {', '.join(fields)}")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log(f"[ERROR] {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
        return _error(500, "Internal server error")


def create_app(client: DatabricksAPIClient = None, clock: Callable[[], float] = time.time) -> FastAPI:
    """Build the API app. Services hang off ``app.state`` so tests can pass a fake client."""
    client = client or DatabricksAPIClient(config.DATABRICKS_HOST, config.DATABRICKS_TOKEN)
    stores = [
        ExpiringStore("oauth state", config.OAUTH_STATE_TTL_SEC, clock),
        ExpiringStore("session", config.SESSION_TTL_SEC, clock),
        ExpiringStore("otp", config.OTP_TTL_SEC, clock),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(sweep_forever(stores, config.SESSION_SWEEP_SEC))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await client.close()

    app = FastAPI(title="Unity Catalog Manager API", lifespan=lifespan)
    app.state.client = client
    app.state.admin = CatalogAdmin(client)
    app.state.scim = ScimService(client)
    app.state.aggregator = WorkspaceStatsAggregator(client, app.state.admin,
                                                    SnapshotCache(config.STATS_CACHE_TTL_SEC, clock), clock)
    app.state.oauth_states, app.state.sessions, app.state.otps = stores

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        t0 = time.time()
        response = await call_next(request)
        log(f"[HTTP] {request.method} {request.url.path} → {response.status_code} [{time.time() - t0:.2f}s]")
        return response

    install_error_handlers(app)
    for router in (workspace_router, catalog_router, identity_router, auth_router, assistant_router):
        app.include_router(router)
    return app
