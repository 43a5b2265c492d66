"""ORM models for sessions, files, articles and AI settings."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from abstract_screener.models import Decision, SessionStatus

from .database import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_column_type(enum_cls: type) -> Enum:
    # Store enum values ("Include", "running") rather than member names.
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class ReviewSessionRow(Base):
    __tablename__ = "review_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(Text, nullable=False, default="")
    criteria = Column(JSON, nullable=False, default=list)  # [{"id": ..., "text": ...}]
    articles_count = Column(Integer, nullable=False, default=0)
    status = Column(
        _enum_column_type(SessionStatus),
        nullable=False,
        default=SessionStatus.IDLE,
        index=True,
    )
    last_evaluated_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    files = relationship(
        "FileRow", back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )


class FileRow(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=_new_id)
    session_id = Column(
        String(36),
        ForeignKey("review_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = Column(Text, nullable=False)
    articles_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    session = relationship("ReviewSessionRow", back_populates="files")
    articles = relationship(
        "ArticleRow", back_populates="file", cascade="all, delete-orphan", passive_deletes=True
    )


class ArticleRow(Base):
    __tablename__ = "articles"

    id = Column(String(36), primary_key=True, default=_new_id)
    file_id = Column(
        String(36),
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(Text, nullable=False)
    abstract = Column(Text, nullable=True)
    full_text = Column(Text, nullable=True)
    needs_evaluation = Column(Boolean, nullable=False, default=True, index=True)
    ai_decision = Column(_enum_column_type(Decision), nullable=True, index=True)
    ai_explanation = Column(Text, nullable=True)
    user_decision = Column(_enum_column_type(Decision), nullable=True)
    # Stamped when an evaluation attempt fails; never-attempted articles are served first.
    last_attempted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    file = relationship("FileRow", back_populates="articles")


class AISettingsRow(Base):
    __tablename__ = "ai_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instructions = Column(Text, nullable=False)
    model = Column(String(128), nullable=False)
    temperature = Column(Float, nullable=False, default=0.0)
    max_tokens = Column(Integer, nullable=False, default=500)
    seed = Column(Integer, nullable=True)
    batch_size = Column(Integer, nullable=True, default=10)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
