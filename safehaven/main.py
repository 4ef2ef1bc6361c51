"""
SafeHaven API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
maps domain errors to HTTP responses, and owns the lifecycle of the
MongoDB connection and the expiry scanner.

Run locally:
    uvicorn safehaven.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from safehaven.core.config import settings
from safehaven.core.database import close_mongo_connection, connect_to_mongo, db_client
from safehaven.core.errors import LocationError, SafeHavenError
from safehaven.core.rate_limit import limiter
from safehaven.routes.auth import router as auth_router
from safehaven.routes.contacts import router as contacts_router
from safehaven.routes.health import router as health_router
from safehaven.routes.location_shares import router as location_shares_router
from safehaven.routes.places import router as places_router
from safehaven.routes.safety_checks import router as safety_checks_router
from safehaven.routes.sos import router as sos_router
from safehaven.routes.stream import router as stream_router
from safehaven.routes.users import router as users_router
from safehaven.services.expiry_scanner import scan_scheduler

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: connect MongoDB, then start the expiry scanner (resuming any
    owner that still has active deadlined sessions).
    Shutdown: cancel every scan task, then close MongoDB.
    """
    logger.info("Starting SafeHaven API (env: %s)", settings.environment)
    await connect_to_mongo()
    async with scan_scheduler.running(db_client.db):
        yield
    logger.info("Shutting down SafeHaven API")
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="SafeHaven API",
    description=(
        "Personal safety backend: safety check-ins, emergency SOS, live "
        "location sharing, trusted contacts and community-rated safe places."
    ),
    version="0.1.0",
    lifespan=lifespan,
    # No interactive docs in production
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Limited routes: SOS trigger, nearby lookup, place feedback (see core/rate_limit.py).
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Domain errors ─────────────────────────────────────────────────────────────
@app.exception_handler(SafeHavenError)
async def safehaven_error_handler(request: Request, exc: SafeHavenError) -> JSONResponse:
    body = {"detail": exc.message}
    if isinstance(exc, LocationError):
        body["kind"] = exc.kind.value
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(PyMongoError)
async def driver_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    # Same answer as PersistenceError for driver calls made outside the services
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


# ─── Middleware ────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])

# Accounts
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(contacts_router)

# Timed sessions
app.include_router(safety_checks_router)
app.include_router(sos_router)
app.include_router(location_shares_router)
app.include_router(stream_router)

# Places
app.include_router(places_router)


@app.get("/", tags=["root"])
async def root():
    """Service name, version and where the docs live."""
    return {
        "name": "SafeHaven API",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
