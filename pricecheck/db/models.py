"""SQLAlchemy 2.0 async-compatible ORM models for pricecheck."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


class Base(DeclarativeBase):
    """Shared declarative base for all pricecheck models."""


# ── Persistent price cache ────────────────────────────────────────────

class AssetPrice(Base):
    __tablename__ = "asset_prices"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=_uuid)
    asset: Mapped[str] = mapped_column(String(64), nullable=False)
    price_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("asset", "date", name="uq_asset_prices_asset_date"),
    )


# ── Predictions (legacy shared table) ─────────────────────────────────

class CombinedPrediction(Base):
    __tablename__ = "combined_predictions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=_uuid)

    # Post metadata
    video_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    video_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    language: Mapped[str | None] = mapped_column(String(8), nullable=True)
    raw_transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    post_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Prediction
    asset: Mapped[str] = mapped_column(String(64), nullable=False)
    asset_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sentiment: Mapped[str] = mapped_column(String(16), nullable=False, default="neutral")
    prediction_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[str | None] = mapped_column(String(16), nullable=True)
    target_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    asset_entry_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Horizon
    horizon_value: Mapped[str | None] = mapped_column(String(128), nullable=True)
    horizon_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    horizon_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    horizon_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    horizon_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    horizon_check_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Outcome
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending / correct / wrong
    actual_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    met_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verification: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    revisions: Mapped[list[HorizonRevision]] = relationship(back_populates="prediction")

    __table_args__ = (
        Index("ix_combined_predictions_status_check", "status", "horizon_check_date"),
        Index("ix_combined_predictions_asset_post", "asset", "post_date"),
    )


# ── Horizon audit trail ───────────────────────────────────────────────

class HorizonRevision(Base):
    """Append-only record of every horizon window a prediction has had."""
    __tablename__ = "horizon_revisions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=_uuid)
    prediction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("combined_predictions.id"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    horizon_start: Mapped[date] = mapped_column(Date, nullable=False)
    horizon_end: Mapped[date] = mapped_column(Date, nullable=False)
    corrected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    correction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # calculator / judge
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    prediction: Mapped[CombinedPrediction] = relationship(back_populates="revisions")

    __table_args__ = (
        UniqueConstraint("prediction_id", "version", name="uq_horizon_revisions_prediction_version"),
    )
