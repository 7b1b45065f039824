"""Configuration management for focusstats.

Hierarchical configuration backed by a YAML file and Python dataclasses.
Every setting has a default, so a missing or partial file is fine.

Configuration Sections:
- storage: Database location
- retention: Cutoff horizons per table and the mobile usage FIFO window
- aggregation: How rollups are refreshed after new sessions arrive
- live: Live query dispatcher settings
- web: JSON API server

Example:
    >>> from focusstats.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.retention.mobile_usage_window)
    30
    >>> config_mgr.update('retention', 'session_days', 60)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import yaml

logger = logging.getLogger(__name__)


@dataclass
class StorageConfig:
    """Database location.

    Attributes:
        data_dir: Directory holding the database (default: ~/focusstats-data)
        db_filename: SQLite file name inside data_dir (default: focus.db)
    """
    data_dir: str = "~/focusstats-data"
    db_filename: str = "focus.db"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.db_filename


@dataclass
class RetentionConfig:
    """Retention horizons.

    Attributes:
        session_days: Sessions and their app usage older than this are purged (default: 30)
        daily_stats_days: Daily rollups older than this are purged (default: 365)
        weekly_stats_days: Weekly rollups older than this are purged (default: 730)
        monthly_stats_days: Monthly rollups older than this are purged (default: 1825)
        mobile_usage_window: Number of most recent mobile usage dates kept (default: 30)
    """
    session_days: int = 30
    daily_stats_days: int = 365
    weekly_stats_days: int = 730
    monthly_stats_days: int = 1825
    mobile_usage_window: int = 30


@dataclass
class AggregationConfig:
    """Rollup refresh settings.

    Attributes:
        refresh_mode: "sync" refreshes inline after each recorded session,
            "background" hands refreshes to the worker thread (default: sync)
        progress_interval: SQLite VM steps between cancellation checks (default: 1000)
    """
    refresh_mode: str = "sync"
    progress_interval: int = 1000


@dataclass
class LiveConfig:
    """Live query dispatcher settings.

    Attributes:
        poll_interval: Seconds the dispatcher waits for work before re-checking (default: 0.5)
    """
    poll_interval: float = 0.5


@dataclass
class WebConfig:
    """Web server configuration.

    Attributes:
        host: Host address to bind to (default: 127.0.0.1)
        port: Port number for the JSON API (default: 55556)
    """
    host: str = "127.0.0.1"
    port: int = 55556


@dataclass
class Config:
    """Top-level configuration container."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    live: LiveConfig = field(default_factory=LiveConfig)
    web: WebConfig = field(default_factory=WebConfig)


_SECTIONS = {
    'storage': StorageConfig,
    'retention': RetentionConfig,
    'aggregation': AggregationConfig,
    'live': LiveConfig,
    'web': WebConfig,
}


class ConfigManager:
    """Manages configuration loading, saving, and updates.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Actual configuration file path being used
        config: Current configuration object
    """

    DEFAULT_PATH = Path("~/.config/focusstats/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from YAML file.

        Missing fields use dataclass defaults. Invalid YAML returns the
        default Config.
        """
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {self.path}")
                return self._dict_to_config(data)
            except (yaml.YAMLError, OSError) as e:
                logger.warning(f"Failed to load config from {self.path}: {e}")
                logger.info("Using default configuration")
                return Config()
        else:
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

    def _dict_to_config(self, data: dict) -> Config:
        """Construct Config from a dictionary, ignoring unknown keys."""
        def filter_known_fields(data_dict: dict, dataclass_type) -> dict:
            known_fields = {f.name for f in dataclasses.fields(dataclass_type)}
            filtered = {k: v for k, v in data_dict.items() if k in known_fields}
            unknown = set(data_dict.keys()) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown config fields: {unknown}")
            return filtered

        sections = {}
        for name, section_type in _SECTIONS.items():
            section_data = data.get(name) or {}
            sections[name] = section_type(**filter_known_fields(section_data, section_type))
        return Config(**sections)

    def save(self) -> None:
        """Save current configuration to the YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(
                    asdict(self.config),
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single configuration value and save.

        Returns:
            True if value was changed and saved, False if unchanged or invalid
        """
        section_obj = getattr(self.config, section, None)
        if section_obj is None:
            logger.warning(f"Invalid config section: {section}")
            return False

        if not hasattr(section_obj, key):
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value != value:
            setattr(section_obj, key, value)
            self.save()
            logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
            return True

        logger.debug(f"No change for {section}.{key} (already {value})")
        return False

    def to_dict(self) -> dict:
        return asdict(self.config)


_default_config_manager: Optional[ConfigManager] = None


def get_config_manager(path: Optional[Path] = None) -> ConfigManager:
    """Get or create the default ConfigManager instance.

    Args:
        path: Optional custom config path (only used on first call)
    """
    global _default_config_manager
    if _default_config_manager is None:
        _default_config_manager = ConfigManager(path)
    return _default_config_manager
