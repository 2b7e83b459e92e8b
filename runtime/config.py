"""
Standup Bot Configuration

Defaults come from config/standup.yaml, secrets and deployment values from the
environment (optionally via .env.local).
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import ScheduleSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), '..', 'config', 'standup.yaml')

DEFAULT_REFERENCE_TIMEZONE = "Europe/Lisbon"
DEFAULT_RETENTION_DAYS = 7
DEFAULT_DB_PATH = "standup.db"


@dataclass
class StandupConfig:
    """Everything the bot needs to boot"""
    slack_bot_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    channel_id: Optional[str] = None
    admin_usernames: FrozenSet[str] = field(default_factory=frozenset)
    reference_timezone: str = DEFAULT_REFERENCE_TIMEZONE
    default_settings: ScheduleSettings = field(default_factory=ScheduleSettings)
    retention_days: int = DEFAULT_RETENTION_DAYS
    db_path: str = DEFAULT_DB_PATH
    database_url: Optional[str] = None
    log_level: str = "INFO"

    @property
    def reference_tz(self) -> ZoneInfo:
        return ZoneInfo(self.reference_timezone)

    def validate(self) -> None:
        """Raise ConfigurationError for anything that makes startup impossible"""
        missing = [
            name for name, value in (
                ("SLACK_BOT_TOKEN", self.slack_bot_token),
                ("SLACK_SIGNING_SECRET", self.slack_signing_secret),
                ("STANDUP_CHANNEL_ID", self.channel_id),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        try:
            ZoneInfo(self.reference_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown reference timezone {self.reference_timezone}: {e}")


def parse_admin_usernames(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma-separated handle list, dropping blanks and leading @"""
    if not raw:
        return frozenset()
    return frozenset(
        name.strip().lstrip('@') for name in raw.split(',') if name.strip().lstrip('@')
    )


def load_yaml_defaults(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load the YAML defaults file; missing or broken files fall back to built-ins"""
    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring standup config at {config_path}: expected a mapping")
            return {}
        return data
    except FileNotFoundError:
        logger.warning(f"Standup config not found at {config_path}, using defaults")
        return {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse standup config {config_path}: {e}. Using defaults.")
        return {}


def load_config(config_path: str = DEFAULT_CONFIG_PATH, env_file: Optional[str] = '.env.local') -> StandupConfig:
    """Build the bot configuration from YAML defaults and the environment"""
    if env_file:
        load_dotenv(env_file, override=True)

    defaults = load_yaml_defaults(config_path)
    schedule = defaults.get('schedule', {}) or {}
    late = defaults.get('late_reminder', {}) or {}

    default_settings = ScheduleSettings(
        standup_hour=int(schedule.get('hour', 9)),
        standup_minute=int(schedule.get('minute', 0)),
        late_reminder_enabled=bool(late.get('enabled', True)),
        late_reminder_hours=int(late.get('hours', 4)),
    )

    return StandupConfig(
        slack_bot_token=os.getenv("SLACK_BOT_TOKEN"),
        slack_signing_secret=os.getenv("SLACK_SIGNING_SECRET"),
        channel_id=os.getenv("STANDUP_CHANNEL_ID"),
        admin_usernames=parse_admin_usernames(os.getenv("ADMIN_USERNAMES")),
        reference_timezone=os.getenv(
            "STANDUP_REFERENCE_TIMEZONE",
            defaults.get('reference_timezone', DEFAULT_REFERENCE_TIMEZONE),
        ),
        default_settings=default_settings,
        retention_days=int(defaults.get('retention_days', DEFAULT_RETENTION_DAYS)),
        db_path=os.getenv("STANDUP_DB_PATH", defaults.get('db_path', DEFAULT_DB_PATH)),
        database_url=os.getenv("DATABASE_URL"),
        log_level=os.getenv("LOG_LEVEL", defaults.get('log_level', 'INFO')),
    )
