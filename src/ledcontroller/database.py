"""Optional SQL storage for persisted documents and the credential vault."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .unifi.utils import logger

SQL_MODES = frozenset({"auto", "database"})


class DatabaseSettings(BaseModel):
    """Database selection read from ``LEDCTL_DB_*``."""

    url: str | None = Field(default=None)
    echo: bool = Field(default=False)
    mode: str = Field(default="memory")

    @classmethod
    def load(cls) -> DatabaseSettings:
        return cls(
            url=os.getenv("LEDCTL_DB_URL") or None,
            echo=os.getenv("LEDCTL_DB_ECHO", "false").lower()
            in {"1", "true", "yes", "on"},
            mode=os.getenv("LEDCTL_DB_MODE", "memory").lower(),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url) and self.mode in SQL_MODES


@lru_cache
def get_database_settings() -> DatabaseSettings:
    return DatabaseSettings.load()


def is_database_configured() -> bool:
    """Return True when the environment selects SQL storage over JSON files."""
    return get_database_settings().enabled


def _build_engine(url: str, *, echo: bool) -> Engine:
    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=echo, future=True)

    from .db_models import Base  # Local import to avoid circular deps

    Base.metadata.create_all(engine)
    logger.bind(dialect=engine.dialect.name).debug("Database schema ready")
    return engine


def _session_factory_for(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


_engine_lock = Lock()
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_engine() -> Engine | None:
    """Return the shared engine, creating it on first use; None when unconfigured."""
    global _engine
    settings = get_database_settings()
    if not settings.enabled or settings.url is None:
        return None

    with _engine_lock:
        if _engine is None:
            _engine = _build_engine(settings.url, echo=settings.echo)
        return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    engine = get_engine()
    if engine is None:
        raise RuntimeError(
            "Database is not configured. Set LEDCTL_DB_URL and "
            "LEDCTL_DB_MODE=database (or auto) to enable SQL storage."
        )

    with _engine_lock:
        if _session_factory is None:
            _session_factory = _session_factory_for(engine)
        return _session_factory


def create_session_factory(url: str, *, echo: bool = False) -> sessionmaker[Session]:
    """Build a standalone session factory for an explicit database URL."""
    return _session_factory_for(_build_engine(url, echo=echo))


__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "is_database_configured",
    "get_engine",
    "get_session_factory",
    "create_session_factory",
]
