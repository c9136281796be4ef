from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger("slashbot.core.config")

CONFIG_FILENAME = "slashbot.yml"
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_DELETED_MESSAGE_RETENTION_SECONDS = 24 * 60 * 60
DEFAULT_LOG_FILE = ".slashbot/slashbot.log"
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(Exception):
    """Raised when the bot configuration cannot be loaded."""


@dataclass(frozen=True)
class ProvidersConfig:
    timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    user_agent: str = "slashbot"


@dataclass(frozen=True)
class SchedulerConfig:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    deleted_message_retention_seconds: int = DEFAULT_DELETED_MESSAGE_RETENTION_SECONDS


@dataclass(frozen=True)
class LoggingConfig:
    file: Optional[Path] = None
    level: str = DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class BotConfig:
    root: Path
    raw: Dict[str, Any]
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def section(self, name: str) -> Dict[str, Any]:
        value = self.raw.get(name)
        return value if isinstance(value, dict) else {}


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def _positive_float(value: Any, *, default: float, key: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be > 0")
    return parsed


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def parse_config(root: Path, raw: Dict[str, Any]) -> BotConfig:
    providers_raw = _section(raw, "providers")
    scheduler_raw = _section(raw, "scheduler")
    logging_raw = _section(raw, "logging")

    providers = ProvidersConfig(
        timeout_seconds=_positive_float(
            providers_raw.get("timeout_seconds"),
            default=DEFAULT_PROVIDER_TIMEOUT_SECONDS,
            key="providers.timeout_seconds",
        ),
        user_agent=str(providers_raw.get("user_agent") or "slashbot"),
    )
    scheduler = SchedulerConfig(
        poll_interval_seconds=_positive_float(
            scheduler_raw.get("poll_interval_seconds"),
            default=DEFAULT_POLL_INTERVAL_SECONDS,
            key="scheduler.poll_interval_seconds",
        ),
        deleted_message_retention_seconds=int(
            _positive_float(
                scheduler_raw.get("deleted_message_retention_seconds"),
                default=DEFAULT_DELETED_MESSAGE_RETENTION_SECONDS,
                key="scheduler.deleted_message_retention_seconds",
            )
        ),
    )

    log_file_value = logging_raw.get("file", DEFAULT_LOG_FILE)
    if log_file_value is not None and not isinstance(log_file_value, str):
        raise ConfigError("logging.file must be a string path or null")
    level = str(logging_raw.get("level") or DEFAULT_LOG_LEVEL).strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigError(f"logging.level is not a valid level: {level!r}")
    log_config = LoggingConfig(
        file=(root / log_file_value).resolve() if log_file_value else None,
        level=level,
    )

    return BotConfig(
        root=root,
        raw=raw,
        providers=providers,
        scheduler=scheduler,
        logging=log_config,
    )


def load_config(path: Optional[Path] = None) -> BotConfig:
    """Load ``slashbot.yml`` (and a sibling ``.env``) into a ``BotConfig``.

    ``path`` may point at the YAML file itself or at the directory holding it.
    A missing file yields defaults; tokens are read from the environment later.
    """
    target = (path or Path.cwd()).expanduser()
    if target.is_dir():
        root = target.resolve()
        config_path = root / CONFIG_FILENAME
    else:
        config_path = target.resolve()
        root = config_path.parent

    dotenv_path = root / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path, override=False)

    raw = _load_yaml_dict(config_path)
    if not raw:
        logger.info("No config found at %s; using defaults", config_path)
    return parse_config(root, raw)
