"""
Database connection and session management for the dashboard API.

Provides SQLAlchemy engine, session factory, and dependency injection
for FastAPI endpoints.

DEV_MODE Support:
    When DEV_MODE=true environment variable is set, uses SQLite in-memory
    database instead of PostgreSQL, and seeds an admin login so the API can
    be exercised without any external services.
"""
import os
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
import structlog

from dashboard.config import get_config
from dashboard.models import Base

logger = structlog.get_logger()

config = get_config()
DEV_MODE = config.dev_mode

if DEV_MODE:
    DATABASE_URL = "sqlite:///:memory:"
    logger.info("dev_mode_enabled", database="sqlite_in_memory")
else:
    DATABASE_URL = config.database_url

# Connection pool settings
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # 1 hour
POOL_PRE_PING = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"

if DEV_MODE:
    # SQLite in-memory requires StaticPool to maintain single connection
    engine = create_engine(
        DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=os.getenv("SQL_ECHO", "false").lower() == "true",
    )
else:
    engine = create_engine(
        DATABASE_URL,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=POOL_PRE_PING,
        echo=os.getenv("SQL_ECHO", "false").lower() == "true",
    )

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


@event.listens_for(Engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Log database connections."""
    logger.debug("database_connection_established")


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Usage in FastAPI endpoints:
        @router.get("/api/users")
        async def list_users(db: Session = Depends(get_db)):
            ...

    Yields:
        Session: SQLAlchemy session, closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context():
    """Context manager for database sessions outside FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize database schema.

    Creates all tables defined in models if they don't exist.
    """
    logger.info("initializing_database_schema")
    Base.metadata.create_all(bind=engine)
    logger.info("database_schema_initialized")


def check_db_connection() -> bool:
    """Return True if a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.debug("database_health_check_passed")
        return True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False


def seed_dev_data(db: Session = None):
    """
    Seed the development database with an admin login.

    Only runs when DEV_MODE=true. Creates the identity account, directory
    record and an empty usage record for DEV_ADMIN_EMAIL.
    """
    if not DEV_MODE:
        return

    from dashboard.auth.backend import hash_password
    from dashboard.models import IdentityAccount, User, UsageData, ROLE_ADMIN

    def _seed(session: Session):
        email = config.dev_admin_email
        if session.query(User).filter(User.email == email).first():
            return

        user_id = uuid.uuid4().hex
        now = datetime.utcnow()
        session.add(IdentityAccount(
            id=user_id,
            email=email,
            password_hash=hash_password(config.dev_admin_password),
        ))
        session.add(User(
            id=user_id,
            email=email,
            display_name="Development Admin",
            role=ROLE_ADMIN,
            is_active=True,
            created_at=now,
        ))
        session.add(UsageData(owner_id=user_id, history=[]))
        session.commit()
        logger.info("dev_mode_admin_user_created", email=email)

    if db is not None:
        _seed(db)
    else:
        with get_db_context() as session:
            _seed(session)
