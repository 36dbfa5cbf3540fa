"""Configuration for automation-bridge.

Configuration is a JSON document with four sections (``timings``, ``engine``,
``websocket``, ``logging``) merged over the defaults below. Missing sections or
keys fall back to defaults; unknown keys are ignored with a warning.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".automation-bridge"
CONFIG_FILE = CONFIG_DIR / "config.json"

CONFIG_ENV_VAR = "AUTOMATION_BRIDGE_CONFIG"
HEADLESS_ENV_VAR = "AUTOMATION_BRIDGE_HEADLESS"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class TimingConfig:
    """Retry, timeout and animation timings in seconds."""

    retry_delay: float = 0.5
    max_retries: int = 10
    navigation_timeout: float = 15.0
    diagnostic_checks: List[float] = field(default_factory=lambda: [2.0, 5.0])
    correlation_timeout: float = 10.0
    transition_duration: float = 0.2
    fail_on_correlation_timeout: bool = True


@dataclass
class EngineConfig:
    """Browser engine settings."""

    browser: str = "chromium"
    headless: bool = False
    automation_user_agent: Optional[str] = None
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1280, "height": 800})


@dataclass
class WebSocketConfig:
    """Control server settings."""

    host: str = "localhost"
    start_port: int = 8875
    end_port: int = 8895


@dataclass
class LoggingConfig:
    """Logging settings applied by the CLI."""

    level: str = "INFO"
    format: str = LOG_FORMAT


@dataclass
class BridgeConfig:
    """Complete bridge configuration."""

    timings: TimingConfig = field(default_factory=TimingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "BridgeConfig":
        """Build a configuration from a (possibly partial) dictionary.

        Args:
            data: Configuration dictionary keyed by section name

        Returns:
            BridgeConfig with defaults filled in
        """
        data = data or {}
        sections = {f.name: f for f in fields(cls)}

        for key in data:
            if key not in sections:
                logger.warning(f"Ignoring unknown configuration section: {key}")

        kwargs = {}
        for name, section_field in sections.items():
            section_cls = section_field.default_factory
            kwargs[name] = _build_section(section_cls, name, data.get(name) or {})
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_section(section_cls, name: str, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    accepted = {}
    for key, value in values.items():
        if key in known:
            accepted[key] = value
        else:
            logger.warning(f"Ignoring unknown configuration key: {name}.{key}")
    return section_cls(**accepted)


def get_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve which configuration file to use.

    Args:
        path: Explicit path, takes precedence over the environment

    Returns:
        Path to the configuration file (may not exist)
    """
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return CONFIG_FILE


def load_config(path: Optional[Union[str, Path]] = None) -> BridgeConfig:
    """Load configuration from disk and apply environment overrides.

    Args:
        path: Optional configuration file path

    Returns:
        Effective BridgeConfig

    Raises:
        ValueError: If the configuration file is not valid JSON
    """
    config_path = get_config_path(path)
    data: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid configuration file {config_path}: {e}") from e
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"No configuration file at {config_path}, using defaults")

    config = BridgeConfig.from_dict(data)

    headless = os.environ.get(HEADLESS_ENV_VAR)
    if headless is not None:
        config.engine.headless = headless.strip().lower() in ("1", "true", "yes")

    return config


def create_default_config(path: Optional[Union[str, Path]] = None) -> Path:
    """Write the default configuration file.

    Args:
        path: Destination path (defaults to the user configuration file)

    Returns:
        Path that was written
    """
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump(BridgeConfig().to_dict(), f, indent=2)
    return config_path
