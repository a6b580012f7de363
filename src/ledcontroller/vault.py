"""Credential vault keyed by controller account (base URL + username)."""

from __future__ import annotations

from threading import Lock
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import get_engine, get_session_factory, is_database_configured
from .db_models import CredentialModel
from .unifi.utils import logger


class VaultError(RuntimeError):
    """Raised when the vault backend cannot store or return a secret."""


class CredentialVault(Protocol):
    """Port for storing controller passwords outside the config document."""

    def save(self, secret: str, account_key: str) -> None:
        ...

    def get(self, account_key: str) -> str | None:
        ...

    def delete(self, account_key: str) -> None:
        ...


class InMemoryCredentialVault(CredentialVault):
    """Process-local vault used when no database is configured."""

    def __init__(self) -> None:
        self._secrets: dict[str, str] = {}
        self._lock = Lock()

    def save(self, secret: str, account_key: str) -> None:
        with self._lock:
            self._secrets[account_key] = secret

    def get(self, account_key: str) -> str | None:
        with self._lock:
            return self._secrets.get(account_key)

    def delete(self, account_key: str) -> None:
        with self._lock:
            self._secrets.pop(account_key, None)


class SQLCredentialVault(CredentialVault):
    """SQLAlchemy-backed vault."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def save(self, secret: str, account_key: str) -> None:
        try:
            with self._session_factory() as session:
                instance = session.get(CredentialModel, account_key)
                if instance is None:
                    session.add(CredentialModel(account_key=account_key, secret=secret))
                else:
                    instance.secret = secret
                session.commit()
        except SQLAlchemyError as exc:
            raise VaultError(f"Unable to save credential: {exc}") from exc

    def get(self, account_key: str) -> str | None:
        try:
            with self._session_factory() as session:
                instance = session.get(CredentialModel, account_key)
                return instance.secret if instance is not None else None
        except SQLAlchemyError as exc:
            raise VaultError(f"Unable to read credential: {exc}") from exc

    def delete(self, account_key: str) -> None:
        try:
            with self._session_factory() as session:
                instance = session.get(CredentialModel, account_key)
                if instance is not None:
                    session.delete(instance)
                    session.commit()
        except SQLAlchemyError as exc:
            raise VaultError(f"Unable to delete credential: {exc}") from exc


_DEFAULT_VAULT = InMemoryCredentialVault()
_VAULT_DB_UNAVAILABLE = False


def get_vault() -> CredentialVault:
    """Return the configured credential vault."""
    global _VAULT_DB_UNAVAILABLE
    if not _VAULT_DB_UNAVAILABLE and is_database_configured():
        try:
            engine = get_engine()
            if engine is not None:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                return SQLCredentialVault(get_session_factory())
        except (RuntimeError, OperationalError):
            logger.warning("Database unavailable; using in-memory credential vault")
            _VAULT_DB_UNAVAILABLE = True
    return _DEFAULT_VAULT


__all__ = [
    "VaultError",
    "CredentialVault",
    "InMemoryCredentialVault",
    "SQLCredentialVault",
    "get_vault",
]
