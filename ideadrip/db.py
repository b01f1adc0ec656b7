"""
ideadrip.db

Single source of truth for database connectivity.

Contracts this module provides:
- get_engine()   shared SQLAlchemy Engine, built on first use from DATABASE_URL
- get_sessionmaker()
- get_session()  commit/rollback/close context manager
- init_schema()  create missing tables

Notes:
- DATABASE_URL is expected in the environment (or a .env loaded by the caller).
- We normalize common scheme/driver variants to reduce footguns.
- Nothing connects at import-time so tests can hand in their own engine.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .schema import Base


def normalize_database_url(raw: str) -> str:
    """
    Normalize DATABASE_URL variants to something SQLAlchemy can reliably use.

    Normalizations:
    - postgres://  -> postgresql://
    - postgresql+psycopg:// -> postgresql+psycopg2://
    """
    url = (raw or "").strip()

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]

    if url.startswith("postgresql+psycopg://"):
        url = "postgresql+psycopg2://" + url[len("postgresql+psycopg://") :]

    return url


_lock = threading.Lock()
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_engine(url: Optional[str] = None) -> Engine:
    """Return the shared engine, creating it from DATABASE_URL on first call."""
    global _engine, _SessionLocal
    with _lock:
        if _engine is None:
            raw = url or os.environ.get("DATABASE_URL", "")
            if not raw:
                raise RuntimeError(
                    "DATABASE_URL is not set in environment. "
                    "Export it (or put it in .env) before running the dispatcher."
                )
            _engine = create_engine(normalize_database_url(raw), pool_pre_ping=True, future=True)
            _SessionLocal = sessionmaker(bind=_engine, autoflush=False, autocommit=False, future=True)
        return _engine


def get_sessionmaker(engine: Optional[Engine] = None) -> sessionmaker:
    if engine is not None:
        return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    get_engine()
    assert _SessionLocal is not None
    return _SessionLocal


@contextmanager
def get_session(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Context-managed DB session.

    Usage:
        from ideadrip.db import get_session
        with get_session() as s:
            ...
    """
    session: Session = (factory or get_sessionmaker())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_schema(engine: Optional[Engine] = None) -> None:
    """Create any missing tables. Safe to run repeatedly."""
    Base.metadata.create_all(engine or get_engine())
