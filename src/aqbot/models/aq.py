"""Alliance Quest tracker models.

An ``AQRun`` is the whole tracked state of one AQ day in one channel. It is
persisted as a single JSON document and always read, mutated and written back
whole.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

SectionKey = Literal["s1", "s2", "s3"]

SECTION_KEYS: tuple[SectionKey, ...] = ("s1", "s2", "s3")

MAP_COMPLETE_LABEL = "✅ MAP COMPLETE"


def section_in_progress_label(section: int) -> str:
    return f"Section {section} in Progress"


class LifecycleState(str, Enum):
    """Lifecycle of a tracked run. Everything except ACTIVE is terminal."""

    ACTIVE = "active"
    ENDED_BY_OFFICER = "ended_by_officer"
    COMPLETED = "completed"
    ENDED_ABNORMALLY = "ended_abnormally"


class ReminderTier(str, Enum):
    """The three reminder pings an alliance can configure."""

    SECTION1 = "section1"
    SECTION2 = "section2"
    FINAL = "final"

    @property
    def sections(self) -> tuple[SectionKey, ...]:
        """Sections whose unfinished players count as slackers for this tier."""
        if self is ReminderTier.SECTION1:
            return ("s1",)
        if self is ReminderTier.SECTION2:
            return ("s1", "s2")
        return SECTION_KEYS

    @property
    def flag(self) -> str:
        """Name of the one-shot flag on ``AQRun`` for this tier."""
        return f"{self.value}_reminder_sent"

    @property
    def label(self) -> str:
        return {
            ReminderTier.SECTION1: "Section 1",
            ReminderTier.SECTION2: "Section 2",
            ReminderTier.FINAL: "Final",
        }[self]


class PlayerSectionState(BaseModel):
    done: bool = False


class AQRun(BaseModel):
    """One actively-tracked Alliance Quest day, keyed by channel."""

    channel_id: str
    announcement_message_id: str = ""
    update_thread_id: str | None = None
    participant_role_id: str
    day: int = Field(ge=1, le=4)
    lifecycle_state: LifecycleState = LifecycleState.ACTIVE
    map_status_label: str = "Section 1 in Progress"
    section_progress: dict[SectionKey, dict[str, PlayerSectionState]] = Field(
        default_factory=lambda: {key: {} for key in SECTION_KEYS}
    )
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    scheduled_end_at: datetime
    section1_reminder_sent: bool = False
    section2_reminder_sent: bool = False
    final_reminder_sent: bool = False
    alliance_id: str

    # Display metadata, kept so every re-render can label the board.
    guild_id: str = ""
    channel_name: str = ""
    role_name: str = ""

    # Store-maintained compare-and-swap counter. 0 means never persisted.
    revision: int = 0

    @field_validator("section_progress")
    @classmethod
    def _exactly_three_sections(
        cls, value: dict[SectionKey, dict[str, PlayerSectionState]]
    ) -> dict[SectionKey, dict[str, PlayerSectionState]]:
        if set(value) != set(SECTION_KEYS):
            msg = f"section_progress must have exactly the keys {', '.join(SECTION_KEYS)}"
            raise ValueError(msg)
        return value

    @property
    def is_active(self) -> bool:
        return self.lifecycle_state is LifecycleState.ACTIVE

    @property
    def announcement_target_id(self) -> str:
        """Where progress chatter goes: the companion thread if any, else the channel."""
        return self.update_thread_id or self.channel_id

    def participants(self) -> list[str]:
        """Every tracked participant across all sections, in snowflake order."""
        ids: set[str] = set()
        for key in SECTION_KEYS:
            ids.update(self.section_progress[key])
        return sorted(ids, key=_snowflake_key)

    def is_done(self, section: SectionKey, user_id: str) -> bool:
        entry = self.section_progress[section].get(user_id)
        return bool(entry and entry.done)

    def reminder_sent(self, tier: ReminderTier) -> bool:
        return bool(getattr(self, tier.flag))

    def mark_reminder_sent(self, tier: ReminderTier) -> None:
        """Set a tier's one-shot flag. Flags are never cleared for the life of a run."""
        setattr(self, tier.flag, True)


class ReminderSettings(BaseModel):
    """Per-alliance reminder configuration. Times are HH:MM in the alliance time zone."""

    section1_enabled: bool = True
    section1_time: str = "11:00"
    section2_enabled: bool = True
    section2_time: str = "18:00"
    final_enabled: bool = True
    final_time: str = "11:00"
    timezone: str = "UTC"

    def is_enabled(self, tier: ReminderTier) -> bool:
        return bool(getattr(self, f"{tier.value}_enabled"))

    def time_for(self, tier: ReminderTier) -> str:
        return str(getattr(self, f"{tier.value}_time"))


def _snowflake_key(user_id: str) -> tuple[int, int | str]:
    # Discord ids are numeric strings; anything else sorts after them by text.
    if user_id.isdigit():
        return (0, int(user_id))
    return (1, user_id)
