"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator

from splitlab.config import get_settings

settings = get_settings()


def build_engine(database_url: str, echo: bool = False):
    """
    Create an engine for the given URL.

    SQLite connections are shared across FastAPI's worker threads, and an
    in-memory database must live on a single connection or every session
    would see an empty schema.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, pool_pre_ping=True, echo=echo)


# Create database engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Usage:
        @app.get("/ab-tests")
        def list_tests(db: Session = Depends(get_db)):
            return db.query(ABTest).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
