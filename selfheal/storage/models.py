from __future__ import annotations

from sqlalchemy import Boolean, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SelectorRow(Base):
    """Known locators and their learned reliability."""

    __tablename__ = "selectors"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    original_selector: Mapped[str] = mapped_column(Text, nullable=False)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    page_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    element_attributes: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_selectors_page_url", "page_url"),)


class AlternativeSelectorRow(Base):
    """Generated candidates, appended per identity and never merged."""

    __tablename__ = "alternative_selectors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    selector_id: Mapped[str] = mapped_column(String(16), nullable=False)
    alternative_selector: Mapped[str] = mapped_column(Text, nullable=False)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_alternative_selectors_selector_id", "selector_id"),)


class HealingHistoryRow(Base):
    """Append-only audit log of heal attempts."""

    __tablename__ = "healing_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    selector_id: Mapped[str] = mapped_column(String(16), nullable=False)
    original_selector: Mapped[str] = mapped_column(Text, nullable=False)
    healed_selector: Mapped[str | None] = mapped_column(Text, nullable=True)
    strategy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_healing_history_selector_id", "selector_id"),)
