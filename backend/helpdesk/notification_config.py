"""Notification configuration loader."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .config import get_settings

logger = logging.getLogger(__name__)

# Triggers that ignore critical_only mode (time-sensitive)
PRIORITY_EXEMPT_TRIGGERS = {"deadline_warning", "overdue"}

# All valid trigger names
VALID_TRIGGERS = {
    "ticket_created",
    "status_changed",
    "comment_added",
    "assigned",
    "deadline_warning",
    "overdue",
}

VALID_MODES = {"all", "critical_only", "off"}
VALID_CHANNELS = {"in_app", "email", "slack"}

# Default trigger states
DEFAULT_TRIGGERS = {
    "ticket_created": True,
    "status_changed": True,
    "comment_added": True,
    "assigned": True,
    "deadline_warning": True,
    "overdue": True,
}

DEFAULT_CHANNELS = {
    "in_app": True,
    "email": True,
    "slack": True,
}


@dataclass
class NotificationConfig:
    """Notification configuration."""

    mode: str = "all"  # all | critical_only | off
    triggers: dict = field(default_factory=lambda: DEFAULT_TRIGGERS.copy())
    channels: dict = field(default_factory=lambda: DEFAULT_CHANNELS.copy())

    def is_trigger_enabled(self, trigger: str) -> bool:
        """Check if a trigger is enabled."""
        return self.triggers.get(trigger, False)

    def is_channel_enabled(self, channel: str) -> bool:
        return self.channels.get(channel, False)

    def should_notify(self, trigger: str, ticket_priority: str) -> bool:
        """Check if notification should be sent for this trigger and priority."""
        # Mode off disables everything
        if self.mode == "off":
            return False

        # Check if trigger is enabled
        if not self.is_trigger_enabled(trigger):
            return False

        # critical_only lets through critical tickets and deadline alerts
        if self.mode == "critical_only" and trigger not in PRIORITY_EXEMPT_TRIGGERS:
            if ticket_priority != "critical":
                return False

        return True


def load_notification_config(config_path: Optional[Path] = None) -> NotificationConfig:
    """Load notification config from YAML file.

    Args:
        config_path: Path to config file. If None, uses the configured path
            relative to the project root.

    Returns:
        NotificationConfig with values from file or defaults.
    """
    if config_path is None:
        config_path = Path(get_settings().notifications_config_path)
        if not config_path.is_absolute():
            config_path = Path(__file__).parent.parent.parent / config_path

    config = NotificationConfig()

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}, using defaults")
        return config

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if "mode" in data:
            if data["mode"] in VALID_MODES:
                config.mode = data["mode"]
            else:
                logger.warning(f"Unknown notification mode {data['mode']!r}, using 'all'")
        if "triggers" in data:
            for trigger, enabled in data["triggers"].items():
                if trigger in VALID_TRIGGERS:
                    config.triggers[trigger] = bool(enabled)
        if "channels" in data:
            for channel, enabled in data["channels"].items():
                if channel in VALID_CHANNELS:
                    config.channels[channel] = bool(enabled)

        logger.info(f"Loaded notification config from {config_path}")
        return config

    except (OSError, yaml.YAMLError, AttributeError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return NotificationConfig()


_config: Optional[NotificationConfig] = None


def get_notification_config() -> NotificationConfig:
    """Get the global notification config (lazy loaded)."""
    global _config
    if _config is None:
        _config = load_notification_config()
    return _config
