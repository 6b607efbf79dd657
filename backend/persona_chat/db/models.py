from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from persona_chat.db.base import Base
from persona_chat.utils.time_utils import utc_now


class Persona(Base):
    """Persona record owned by the outer application; read-only for chat."""

    __tablename__ = "personas"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instruction: Mapped[str] = mapped_column(Text, nullable=False)
    seed: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class HistoryEntryRow(Base):
    """One member of a conversation's sorted history set."""

    __tablename__ = "history_entries"
    __table_args__ = (Index("ix_history_key_score", "storage_key", "score", "id"),)

    # Autoincrement id doubles as the arrival-order tie-break for equal scores.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    storage_key: Mapped[str] = mapped_column(String, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class RecallPassageRow(Base):
    """Passage and its embedding in the local similarity index."""

    __tablename__ = "recall_passages"
    __table_args__ = (
        UniqueConstraint("scope_tag", "content_hash", name="uq_recall_scope_hash"),
        Index("ix_recall_scope_id", "scope_tag", "id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    scope_tag: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String, nullable=False)
    embed_provider: Mapped[str] = mapped_column(String, nullable=False)
    embed_model: Mapped[str] = mapped_column(String, nullable=False)
    dim: Mapped[int] = mapped_column(Integer, nullable=False)
    vector_json: Mapped[str] = mapped_column(Text, nullable=False)
    vector_norm: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
