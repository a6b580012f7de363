"""Persistence of the controller config and schedule list as JSON documents."""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import get_engine, get_session_factory, is_database_configured
from .db_models import DocumentModel
from .schemas import ControllerConfig, Schedule
from .unifi.config import settings
from .unifi.utils import logger

CONFIG_DOCUMENT = "controllerConfig"
SCHEDULES_DOCUMENT = "schedules"

_SCHEDULE_LIST = TypeAdapter(list[Schedule])


class PersistenceError(RuntimeError):
    """Raised when a persisted document cannot be read or written."""


def encode_config(config: ControllerConfig) -> str:
    # ``password`` is declared with exclude=True and never reaches the document.
    return config.model_dump_json(by_alias=True)


def decode_config(body: str) -> ControllerConfig:
    return ControllerConfig.model_validate_json(body)


def encode_schedules(schedules: list[Schedule]) -> str:
    return _SCHEDULE_LIST.dump_json(schedules, by_alias=True).decode("utf-8")


def decode_schedules(body: str) -> list[Schedule]:
    return _SCHEDULE_LIST.validate_json(body)


class PersistenceController(Protocol):
    """Port for saving and loading configuration and schedules."""

    def save_controller_config(self, config: ControllerConfig) -> None:
        ...

    def load_controller_config(self) -> ControllerConfig | None:
        ...

    def save_schedules(self, schedules: list[Schedule]) -> None:
        ...

    def load_schedules(self) -> list[Schedule]:
        ...


class _DocumentPersistence(ABC):
    """Shared encode/decode on top of a named-document store."""

    @abstractmethod
    def _write(self, name: str, body: str) -> None:
        ...

    @abstractmethod
    def _read(self, name: str) -> str | None:
        """Return the stored body, or None when the document does not exist."""

    def save_controller_config(self, config: ControllerConfig) -> None:
        self._write(CONFIG_DOCUMENT, encode_config(config))

    def load_controller_config(self) -> ControllerConfig | None:
        body = self._read(CONFIG_DOCUMENT)
        if body is None:
            return None
        try:
            return decode_config(body)
        except ValidationError as exc:
            raise PersistenceError(f"Invalid controller config document: {exc}") from exc

    def save_schedules(self, schedules: list[Schedule]) -> None:
        self._write(SCHEDULES_DOCUMENT, encode_schedules(schedules))

    def load_schedules(self) -> list[Schedule]:
        body = self._read(SCHEDULES_DOCUMENT)
        if body is None:
            return []
        try:
            return decode_schedules(body)
        except ValidationError as exc:
            raise PersistenceError(f"Invalid schedules document: {exc}") from exc


class JSONFilePersistence(_DocumentPersistence):
    """Adapter that keeps one JSON file per document in a data directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, name: str) -> Path:
        return self._directory / f"{name}.json"

    def _write(self, name: str, body: str) -> None:
        path = self._path(name)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._directory, prefix=f".{name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(body)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Unable to write {path}: {exc}") from exc
        logger.bind(path=str(path)).debug("Saved document")

    def _read(self, name: str) -> str | None:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Unable to read {path}: {exc}") from exc


class SQLPersistence(_DocumentPersistence):
    """Adapter that stores the same JSON documents in a SQL table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _write(self, name: str, body: str) -> None:
        timestamp = datetime.now(UTC).isoformat()
        try:
            with self._session_factory() as session:
                instance = session.get(DocumentModel, name)
                if instance is None:
                    session.add(DocumentModel(name=name, body=body, updated_at=timestamp))
                else:
                    instance.body = body
                    instance.updated_at = timestamp
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to store document {name!r}: {exc}") from exc

    def _read(self, name: str) -> str | None:
        try:
            with self._session_factory() as session:
                row = (
                    session.execute(
                        select(DocumentModel).where(DocumentModel.name == name)
                    )
                    .scalars()
                    .first()
                )
                return row.body if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to load document {name!r}: {exc}") from exc


_DATABASE_UNAVAILABLE = False


def get_persistence() -> PersistenceController:
    """Return the configured persistence backend."""
    global _DATABASE_UNAVAILABLE
    if not _DATABASE_UNAVAILABLE and is_database_configured():
        try:
            engine = get_engine()
            if engine is not None:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                return SQLPersistence(get_session_factory())
        except (RuntimeError, OperationalError):
            logger.warning("Database unavailable; falling back to JSON files")
            _DATABASE_UNAVAILABLE = True
    return JSONFilePersistence(settings.data_dir)


__all__ = [
    "PersistenceError",
    "PersistenceController",
    "JSONFilePersistence",
    "SQLPersistence",
    "get_persistence",
    "encode_config",
    "decode_config",
    "encode_schedules",
    "decode_schedules",
]
