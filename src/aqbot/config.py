"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Reminder polling cadence. A reminder fires on the first tick at or after its time.
_DEFAULT_REMINDER_CRON = "*/5 * * * *"

# Scheduled starts are matched on exact UTC HH:MM, so this must tick every minute.
_DEFAULT_SCHEDULE_CRON = "* * * * *"


class Settings(BaseSettings):
    """aqbot configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    discord_enabled: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///aqbot.db"

    # Environment
    aqbot_env: str = "development"

    # Scheduling
    aq_scheduler_enabled: bool = True
    aq_reminder_cron: str = _DEFAULT_REMINDER_CRON
    aq_schedule_cron: str = _DEFAULT_SCHEDULE_CRON

    # Logging
    aqbot_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @field_validator("aq_reminder_cron", "aq_schedule_cron")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        """Reject cron expressions APScheduler cannot parse."""
        from apscheduler.triggers.cron import CronTrigger

        CronTrigger.from_crontab(value)
        return value
