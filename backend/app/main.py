"""
PLS Tracker API v1.0
FastAPI backend for construction progress measurement (PLS): budget template,
per-unit progress matrix, financial roll-ups, document extraction via LiteLLM
(Gemini primary, Groq fallback), exports and backups. PostgreSQL through async
SQLAlchemy; without DATABASE_URL the API runs on an in-memory store.
"""
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

load_dotenv()

from app.services.errors import (  # noqa: E402
    BoundaryError,
    ExtractionError,
    ResolutionError,
    StoreError,
    ValidationFailed,
)
from app.services.logging_config import setup_logging  # noqa: E402
from app.services.middleware import RequestTimingMiddleware, SecurityHeadersMiddleware  # noqa: E402

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("pls-api")

APP_VERSION = "1.0.0"

# Startup validation
if not os.getenv("JWT_SECRET_KEY"):
    logger.warning("MISSING env var: JWT_SECRET_KEY, using the development secret")
for var in ["GEMINI_API_KEY", "GROQ_API_KEY"]:
    if not os.getenv(var):
        logger.info(f"Optional env var not set: {var}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db import DEV_MODE, AsyncSessionLocal, engine, init_db
    from app.services.project_store import InMemoryProjectStore, SqlProjectStore

    if DEV_MODE:
        logger.warning("DATABASE_URL not set, using the in-memory project store (dev mode)")
        app.state.store = InMemoryProjectStore()
    else:
        await init_db()
        app.state.store = SqlProjectStore(AsyncSessionLocal)
    yield
    if not DEV_MODE:
        await engine.dispose()


app = FastAPI(
    title="PLS Tracker API",
    version=APP_VERSION,
    description="Construction progress measurement: PLS template, progress matrix and financial roll-ups",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Domain errors -> HTTP
# ---------------------------------------------------------------------------
@app.exception_handler(ValidationFailed)
async def _validation_failed(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(ResolutionError)
async def _resolution_error(request: Request, exc: ResolutionError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BoundaryError)
async def _boundary_error(request: Request, exc: BoundaryError):
    status_code = 503 if isinstance(exc, StoreError) else 502
    kind = "extraction" if isinstance(exc, ExtractionError) else "store" if isinstance(exc, StoreError) else "upstream"
    logger.error(f"{kind} failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": kind})


# ---------------------------------------------------------------------------
# CORS: allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:5173"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.assistant_routes import router as assistant_router  # noqa: E402
from app.api.ingestion_routes import router as ingestion_router  # noqa: E402
from app.api.project_routes import me_router, router as project_router  # noqa: E402
from app.api.report_routes import router as report_router  # noqa: E402

app.include_router(me_router)
app.include_router(project_router)
app.include_router(assistant_router)
app.include_router(ingestion_router)
app.include_router(report_router)


@app.get("/health")
async def health_check(request: Request):
    from app.db import DEV_MODE, ping_db

    store = getattr(request.app.state, "store", None)
    return {
        "status": "active",
        "version": APP_VERSION,
        "store": type(store).__name__ if store is not None else None,
        "db_connected": False if DEV_MODE else await ping_db(),
        "llm_primary": os.getenv("LLM_PRIMARY_MODEL", "gemini/gemini-1.5-flash"),
    }
