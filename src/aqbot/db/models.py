"""SQLAlchemy ORM models for the aqbot database.

Tables: alliances, aq_reminder_settings, aq_states, aq_schedules, aq_skips.
AQ runs are stored as one opaque JSON document per channel; only the columns
the scheduler filters on are lifted out of the document.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class AllianceRow(Base):
    __tablename__ = "alliances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    guild_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    create_aq_thread: Mapped[bool] = mapped_column(Boolean, default=False)
    officer_role_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))

    reminder_settings: Mapped[AQReminderSettingsRow | None] = relationship(
        back_populates="alliance", uselist=False
    )
    schedules: Mapped[list[AQScheduleRow]] = relationship(back_populates="alliance")


class AQReminderSettingsRow(Base):
    """Reminder tiers for one alliance. Times are HH:MM in the alliance time zone."""

    __tablename__ = "aq_reminder_settings"

    alliance_id: Mapped[str] = mapped_column(ForeignKey("alliances.id"), primary_key=True)
    section1_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    section1_time: Mapped[str] = mapped_column(String(5), default="11:00")
    section2_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    section2_time: Mapped[str] = mapped_column(String(5), default="18:00")
    final_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    final_time: Mapped[str] = mapped_column(String(5), default="11:00")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    alliance: Mapped[AllianceRow] = relationship(back_populates="reminder_settings")


class AQStateRow(Base):
    """Live AQ run for a channel. Deleted as soon as the run ends."""

    __tablename__ = "aq_states"

    channel_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    alliance_id: Mapped[str] = mapped_column(String(36), nullable=False)
    lifecycle_state: Mapped[str] = mapped_column(String(20), default="active")
    state: Mapped[dict] = mapped_column(JSON, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("ix_aq_states_alliance", "alliance_id"),)


class AQScheduleRow(Base):
    """Automatic AQ start. ``day_of_week`` is 0=Sunday; ``time`` is HH:MM UTC."""

    __tablename__ = "aq_schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    alliance_id: Mapped[str] = mapped_column(ForeignKey("alliances.id"), nullable=False)
    battlegroup: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    aq_day: Mapped[int] = mapped_column(Integer, nullable=False)
    channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    role_id: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))

    alliance: Mapped[AllianceRow] = relationship(back_populates="schedules")

    __table_args__ = (
        UniqueConstraint(
            "alliance_id", "battlegroup", "day_of_week", name="uq_aq_schedule_bg_day"
        ),
        Index("ix_aq_schedules_slot", "day_of_week", "time"),
    )


class AQSkipRow(Base):
    """Suppresses scheduled starts for an alliance until ``skip_until``."""

    __tablename__ = "aq_skips"

    alliance_id: Mapped[str] = mapped_column(ForeignKey("alliances.id"), primary_key=True)
    skip_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
