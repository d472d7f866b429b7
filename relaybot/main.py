"""
relaybot/main.py

Purpose: Application entry point

- Builds the FastAPI app and wires the webhook router under API_PREFIX
- Lifespan: validate settings, connect MongoDB, ensure indexes;
  on shutdown close the Bot API client and the database
- Health, readiness and liveness probes
"""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relaybot.core.config import settings, validate_settings
from relaybot.core.errors import add_exception_handlers
from relaybot.core.logging import setup_logging, get_logger
from relaybot.db.mongo import connect_to_mongo, close_mongo_connection, check_database_health
from relaybot.db.indexes import create_indexes
from relaybot.services.telegram_gateway import close_gateway
from relaybot.api import webhook

setup_logging()
logger = get_logger(__name__)

APP_NAME = "RelayBot"
VERSION = "1.0.0"
SLOW_REQUEST_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting {APP_NAME}...")
    try:
        validate_settings()
        await connect_to_mongo()
        await create_indexes()
    except Exception as e:
        logger.critical(f"Failed to start application: {e}", exc_info=True)
        raise

    if not settings.WEBHOOK_SECRET:
        logger.warning("⚠️ WEBHOOK_SECRET not set, webhook requests are not authenticated")
    logger.info(f"🎉 {APP_NAME} ready (environment: {settings.ENVIRONMENT}, admin group: {settings.ADMIN_GROUP_ID})")

    yield

    logger.info(f"🛑 Shutting down {APP_NAME}...")
    try:
        await close_gateway()
    finally:
        await close_mongo_connection()


app = FastAPI(
    title=APP_NAME,
    description="Telegram two-way relay between users and an admin forum group",
    version=VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def time_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning(
            f"🐢 Slow request: {request.method} {request.url.path}",
            extra={"process_time": elapsed},
        )
    return response


add_exception_handlers(app)
app.include_router(webhook.router, prefix=settings.API_PREFIX, tags=["Webhook"])


def _config_checks() -> dict:
    return {
        "bot_token": "configured" if settings.BOT_TOKEN else "missing",
        "admin_group": "configured" if settings.ADMIN_GROUP_ID else "missing",
        "webhook_secret": "configured" if settings.WEBHOOK_SECRET else "disabled",
    }


@app.get("/", tags=["Health"])
async def root():
    return {"name": APP_NAME, "version": VERSION, "status": "running", "environment": settings.ENVIRONMENT}


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Database ping plus a summary of the bot's required settings.
    503 when either the database or a required setting is missing.
    """
    checks = _config_checks()
    checks["database"] = "healthy" if await check_database_health() else "unhealthy"

    degraded = checks["database"] != "healthy" or "missing" in checks.values()
    body = {
        "status": "degraded" if degraded else "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": VERSION,
        "checks": checks,
    }
    return JSONResponse(content=body, status_code=503 if degraded else 200)


@app.get("/ready", tags=["Health"])
async def readiness_check():
    if await check_database_health():
        return {"status": "ready"}
    return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "database_unavailable"})


@app.get("/live", tags=["Health"])
async def liveness_check():
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "relaybot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
