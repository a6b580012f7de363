"""SQLAlchemy ORM models for persisted documents and stored credentials."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for ORM models."""


class DocumentModel(Base):
    """Named JSON document (controller config, schedule list)."""

    __tablename__ = "documents"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class CredentialModel(Base):
    """Secret stored under a controller account key."""

    __tablename__ = "credentials"

    account_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    secret: Mapped[str] = mapped_column(Text, nullable=False)
