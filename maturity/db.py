# FILE: maturity/db.py
"""
Database wiring for the interpretation service.

The engine defaults to a local SQLite file; production points
MATURITY_DATABASE_URL at Postgres. Interpretation sessions are the only
shared mutable resource, so every request works on its own ORM session
obtained from get_db().
"""
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("MATURITY_DATABASE_URL", "sqlite:///./data/maturity.db")


def make_engine(url: str, echo: bool = False) -> Engine:
    """Build an engine with the SQLite quirks handled.

    In-memory SQLite ("sqlite://") gets a StaticPool so every connection
    sees the same database, which is what the test suite relies on.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    elif url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency that yields a DB session and closes it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None):
    """Create all tables. Call once at startup."""
    # Import models so Base.metadata knows about them
    from maturity.interpretation import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
