"""Configuration loader.

Settings come from environment variables (a .env file is loaded at
startup) and retention policy overrides from an optional JSON file,
~/.memhub/config.json by default.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .memory.models import MemoryType
from .memory.retention import RetentionPolicy

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".memhub"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"

_POLICY_FIELDS = (
    "importance_weight",
    "access_weight",
    "recency_weight",
    "recency_window_days",
    "access_saturation",
    "core_floor",
    "delete_threshold",
    "flag_threshold",
    "healthy_threshold",
)


@dataclass
class MemhubConfig:
    """Runtime configuration.

    Attributes:
        db_path: SQLite database file.
        log_dir: Directory for the JSONL event log.
        db_timeout: Seconds to wait on a locked database.
        init_retries: Attempts to prepare the database at startup.
        init_retry_delay: Base delay between those attempts.
        policy: Retention scoring and pruning parameters.
    """

    db_path: Path = field(default_factory=lambda: DEFAULT_HOME / "memory.db")
    log_dir: Path = field(default_factory=lambda: DEFAULT_HOME / "logs")
    db_timeout: float = 10.0
    init_retries: int = 5
    init_retry_delay: float = 3.0
    policy: RetentionPolicy = field(default_factory=RetentionPolicy)

    def __post_init__(self) -> None:
        """Validate config values."""
        if self.db_timeout <= 0:
            raise ValueError("db_timeout must be positive")
        if self.init_retries < 1:
            raise ValueError("init_retries must be at least 1")


def _parse_policy(data: dict[str, Any]) -> RetentionPolicy:
    """Parse the 'retention' section into a RetentionPolicy.

    Unknown keys are ignored; known keys override the defaults.
    """
    kwargs: dict[str, Any] = {}
    for name in _POLICY_FIELDS:
        if name in data:
            kwargs[name] = data[name]

    rates = data.get("decay_rates")
    if isinstance(rates, dict):
        decay_rates = dict(RetentionPolicy().decay_rates)
        for key, value in rates.items():
            try:
                decay_rates[MemoryType(key)] = float(value)
            except ValueError:
                logger.warning("Ignoring decay rate for unknown memory type %r", key)
        kwargs["decay_rates"] = decay_rates

    return RetentionPolicy(**kwargs)


def load_config(config_path: Path | None = None) -> MemhubConfig:
    """Build the configuration from the environment and the JSON file.

    Environment variables:
        MEMHUB_DB_PATH, MEMHUB_LOG_DIR, MEMHUB_DB_TIMEOUT, MEMHUB_CONFIG.

    The config file should have this structure:
    ```json
    {
      "retention": {
        "recency_window_days": 180,
        "delete_threshold": 0.1,
        "decay_rates": {"pattern": 0.005}
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses MEMHUB_CONFIG or
            DEFAULT_CONFIG_PATH if None.

    Returns:
        MemhubConfig instance with loaded values.

    Raises:
        ValueError: If a configured value is invalid.
    """
    path = config_path or Path(
        os.getenv("MEMHUB_CONFIG", str(DEFAULT_CONFIG_PATH))
    ).expanduser()

    policy = RetentionPolicy()
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
            data = {}
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)
            data = {}
        retention = data.get("retention", {}) if isinstance(data, dict) else {}
        if isinstance(retention, dict) and retention:
            policy = _parse_policy(retention)

    defaults = MemhubConfig(policy=policy)
    return MemhubConfig(
        db_path=Path(os.getenv("MEMHUB_DB_PATH", str(defaults.db_path))).expanduser(),
        log_dir=Path(os.getenv("MEMHUB_LOG_DIR", str(defaults.log_dir))).expanduser(),
        db_timeout=float(os.getenv("MEMHUB_DB_TIMEOUT", str(defaults.db_timeout))),
        policy=policy,
    )
