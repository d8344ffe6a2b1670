"""
Voice Usage Dashboard - API

REST API behind the dashboard: ElevenLabs usage, conversations and
per-user API keys for end users, plus user administration and the audit
log for admins.
"""

import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
import structlog

from dashboard.database import check_db_connection, init_db, seed_dev_data, DEV_MODE
from dashboard.routes import api_keys, audit, auth, conversations, usage, users
from shared import __version__
from shared.errors import register_exception_handlers
from shared.logging_config import configure_logging

configure_logging("dashboard-api")
logger = structlog.get_logger()

if DEV_MODE:
    logger.info("dev_mode_active", message="Running in development mode with SQLite in-memory database")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(
    title="Voice Usage Dashboard API",
    description="ElevenLabs usage, conversations and user administration",
    version=__version__,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(api_keys.router)
app.include_router(usage.router)
app.include_router(conversations.router)
app.include_router(audit.router)


@app.on_event("startup")
async def startup_event():
    """Create tables and, in DEV_MODE, seed the development admin."""
    logger.info("dashboard_startup", version=__version__, dev_mode=DEV_MODE)

    if not DEV_MODE and not check_db_connection():
        logger.error("database_connection_failed")
        return

    try:
        init_db()
        if DEV_MODE:
            seed_dev_data()
            logger.info("dev_mode_data_seeded")
    except SQLAlchemyError as e:
        logger.error("database_init_failed", error=str(e))

    logger.info("dashboard_ready", dev_mode=DEV_MODE)


@app.get("/health")
async def health_check():
    """Health check for the API itself."""
    return {
        "status": "healthy" if check_db_connection() else "degraded",
        "service": "dashboard-api",
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
