"""
Social Feed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect to Redis (token denylist)
  4. Expose Prometheus /metrics endpoint

On shutdown, in-flight account cleanups are awaited before Redis is closed.
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from app.config import settings
from app.core.lifecycle import drain
from app.database import init_db
from app.errors import register_error_handlers
from app.telemetry import setup_tracing, instrument_app
from app.clients.redis_client import init_redis, close_redis
from app.routers import users, posts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Social Feed API (env=%s)", settings.environment)

    await init_db()
    await init_redis()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await drain()
    await close_redis()


app = FastAPI(
    title="Social Feed API",
    description=(
        "Users, posts, likes and comments with ownership rules and "
        "cascading account deletion."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
