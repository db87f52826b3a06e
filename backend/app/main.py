"""FastAPI application."""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import SessionLocal
from .problem_details import register_exception_handlers
from .routers import auth, order_assignments, orders, tasks, users
from .schemas import HealthResponse
from .services.statistics_cache import get_statistics_cache

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Production Orders",
    version="1.0.0",
    description="Backend API for production orders, tasks and assignments",
)

# Production safety checks
if settings.is_production and settings.JWT_SECRET_KEY == "change-me-in-production":
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.is_production and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")

# CORS
cors_headers = ["Authorization", "Content-Type"]
if not settings.is_production:
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=cors_headers,
)

register_exception_handlers(app)

# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(orders.normal_orders_router, prefix="/api/v1")
app.include_router(orders.urgent_orders_router, prefix="/api/v1")
app.include_router(tasks.router, prefix="/api/v1")
app.include_router(order_assignments.router, prefix="/api/v1")


def _database_status() -> str:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        return "unavailable"
    finally:
        db.close()


def _redis_status() -> str:
    cache = get_statistics_cache()
    if not cache.enabled:
        return "disabled"
    try:
        cache.client.ping()
        return "ok"
    except RedisError:
        logger.warning("Health check: redis unavailable")
        return "unavailable"


@app.get("/api/v1/system/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=app.version,
        database=_database_status(),
        redis=_redis_status(),
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Production Orders API",
        "version": app.version,
        "docs": "/docs",
    }
