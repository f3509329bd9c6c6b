"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from .extractor.context import DEFAULT_BODY_MAX_LENGTH, DEFAULT_SUBJECT_MAX_LENGTH
from .types import DEFAULT_REVIEW_CATEGORY, EligibilityWindow

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AIMAILMAN_CONFIG"
CLIENT_SECRET_ENV_VAR = "AIMAILMAN_GRAPH_CLIENT_SECRET"
LLM_API_KEY_ENV_VARS = ("AIMAILMAN_LLM_API_KEY", "OPENAI_API_KEY")

DEFAULT_CONFIG_PATH = Path("~/.config/aimailman/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/aimailman")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_SOURCE_FOLDER = "Inbox"
DEFAULT_POLLING_INTERVAL = 300
FALLBACK_POLLING_INTERVAL = 60
DEFAULT_MAX_EMAILS_PER_RUN = 20
DEFAULT_MIN_EMAIL_AGE = timedelta(minutes=5)
DEFAULT_MAX_EMAIL_AGE = timedelta(days=7)
DEFAULT_AUTHORITY = "https://login.microsoftonline.com/"
DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_LLM_SERVICE = "openai"
DEFAULT_AZURE_API_VERSION = "2024-06-01"
LLM_SERVICES = ("openai", "azure")

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_UNIT_DURATION = re.compile(r"(\d+)\s*([smhd])")
_CLOCK_DURATION = re.compile(r"^(?:(\d+)\.)?(\d{1,2}):(\d{2}):(\d{2})$")


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class MailboxConfig:
    """Which mailbox is triaged and how processed mail is marked."""

    owner_id: str
    source_folder: str = DEFAULT_SOURCE_FOLDER
    review_category: str = DEFAULT_REVIEW_CATEGORY


@dataclass(frozen=True)
class ProcessingConfig:
    """Cycle scheduling, eligibility, and classification settings."""

    polling_interval_seconds: int = DEFAULT_POLLING_INTERVAL
    max_emails_per_run: int = DEFAULT_MAX_EMAILS_PER_RUN
    min_email_age: timedelta = DEFAULT_MIN_EMAIL_AGE
    max_email_age: timedelta = DEFAULT_MAX_EMAIL_AGE
    subject_max_length: int = DEFAULT_SUBJECT_MAX_LENGTH
    body_max_length: int = DEFAULT_BODY_MAX_LENGTH
    target_folders: dict[str, str] = field(default_factory=dict)
    prompt_file: Path | None = None
    system_prompt: str | None = None

    @property
    def window(self) -> EligibilityWindow:
        return EligibilityWindow(min_age=self.min_email_age, max_age=self.max_email_age)


@dataclass(frozen=True)
class GraphConfig:
    """Microsoft Graph application credentials."""

    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)
    authority: str = DEFAULT_AUTHORITY
    base_url: str = DEFAULT_GRAPH_BASE_URL
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class LlmConfig:
    """Chat model used by the classification gateway."""

    model: str
    api_key: str = field(repr=False)
    service: str = DEFAULT_LLM_SERVICE
    endpoint: str | None = None
    api_version: str = DEFAULT_AZURE_API_VERSION
    organization: str | None = None
    max_tool_rounds: int = 5
    temperature: float | None = None
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    mailbox: MailboxConfig
    processing: ProcessingConfig
    graph: GraphConfig
    llm: LlmConfig
    logging: LoggingConfig


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw, base_dir=config_path.parent)


def resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def parse_duration(value: Any, field_name: str) -> timedelta:
    """Parse seconds, ``5m``/``7d``/``1h30m`` strings, or ``[d.]hh:mm:ss``."""

    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a duration.")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"{field_name} cannot be negative.")
        return timedelta(seconds=value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} must be a duration.")

    text = value.strip().lower()
    if text.isdigit():
        return timedelta(seconds=int(text))

    clock = _CLOCK_DURATION.match(text)
    if clock:
        days, hours, minutes, seconds = (int(part or 0) for part in clock.groups())
        return timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)

    matches = _UNIT_DURATION.findall(text)
    if not matches or _UNIT_DURATION.sub("", text).strip():
        raise ConfigError(f"{field_name} has an unrecognised duration: {value!r}")
    total = sum(int(amount) * _DURATION_UNITS[unit] for amount, unit in matches)
    return timedelta(seconds=total)


def _parse_config(raw: dict[str, Any], *, base_dir: Path) -> Config:
    root_dir = Path(raw.get("rootdir") or raw.get("root_dir") or DEFAULT_ROOT_DIR).expanduser()
    return Config(
        root_dir=root_dir,
        mailbox=_parse_mailbox(raw.get("mailbox")),
        processing=_parse_processing(raw.get("processing"), base_dir=base_dir),
        graph=_parse_graph(raw.get("graph")),
        llm=_parse_llm(raw.get("llm")),
        logging=_parse_logging(raw.get("logging")),
    )


def _section(value: Any, name: str, *, required: bool = False) -> dict[str, Any]:
    if value is None:
        if required:
            raise ConfigError(f"{name} section is required.")
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping.")
    return value


def _required_str(section: dict[str, Any], key: str, field_name: str) -> str:
    value = section.get(key)
    if value is None or not str(value).strip():
        raise ConfigError(f"{field_name} is required.")
    return str(value).strip()


def _optional_str(section: dict[str, Any], key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{field_name} must be an integer.")
    if value <= 0:
        raise ConfigError(f"{field_name} must be positive.")
    return value


def _parse_mailbox(value: Any) -> MailboxConfig:
    section = _section(value, "mailbox", required=True)
    owner_id = _required_str(section, "owner_id", "mailbox.owner_id")
    source_folder = _optional_str(section, "source_folder") or DEFAULT_SOURCE_FOLDER
    review_category = _optional_str(section, "review_category") or DEFAULT_REVIEW_CATEGORY
    return MailboxConfig(
        owner_id=owner_id,
        source_folder=source_folder,
        review_category=review_category,
    )


def _parse_processing(value: Any, *, base_dir: Path) -> ProcessingConfig:
    section = _section(value, "processing")

    interval = section.get("polling_interval_seconds", DEFAULT_POLLING_INTERVAL)
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ConfigError("processing.polling_interval_seconds must be an integer.")
    if interval <= 0:
        LOGGER.warning(
            "processing.polling_interval_seconds is %ss; using %ss instead.",
            interval,
            FALLBACK_POLLING_INTERVAL,
        )
        interval = FALLBACK_POLLING_INTERVAL

    min_age = DEFAULT_MIN_EMAIL_AGE
    if section.get("min_email_age") is not None:
        min_age = parse_duration(section["min_email_age"], "processing.min_email_age")
    max_age = DEFAULT_MAX_EMAIL_AGE
    if section.get("max_email_age") is not None:
        max_age = parse_duration(section["max_email_age"], "processing.max_email_age")
    if min_age >= max_age:
        LOGGER.warning(
            "processing.min_email_age (%s) is not below max_email_age (%s); "
            "no messages will be eligible.",
            min_age,
            max_age,
        )

    prompt_file = None
    raw_prompt_file = _optional_str(section, "prompt_file")
    if raw_prompt_file:
        prompt_file = Path(raw_prompt_file).expanduser()
        if not prompt_file.is_absolute():
            prompt_file = base_dir / prompt_file
        if not prompt_file.is_file():
            raise ConfigError(f"processing.prompt_file does not exist: {prompt_file}")

    system_prompt = section.get("system_prompt")
    if system_prompt is not None and (
        not isinstance(system_prompt, str) or not system_prompt.strip()
    ):
        raise ConfigError("processing.system_prompt must be a non-empty string.")

    return ProcessingConfig(
        polling_interval_seconds=interval,
        max_emails_per_run=_positive_int(
            section.get("max_emails_per_run", DEFAULT_MAX_EMAILS_PER_RUN),
            "processing.max_emails_per_run",
        ),
        min_email_age=min_age,
        max_email_age=max_age,
        subject_max_length=_positive_int(
            section.get("subject_max_length", DEFAULT_SUBJECT_MAX_LENGTH),
            "processing.subject_max_length",
        ),
        body_max_length=_positive_int(
            section.get("body_max_length", DEFAULT_BODY_MAX_LENGTH),
            "processing.body_max_length",
        ),
        target_folders=_parse_target_folders(section.get("target_folders")),
        prompt_file=prompt_file,
        system_prompt=system_prompt,
    )


def _parse_target_folders(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("processing.target_folders must be a mapping of name to folder path.")
    folders: dict[str, str] = {}
    for name, path in value.items():
        if not isinstance(path, str) or not path.strip():
            raise ConfigError(f"processing.target_folders.{name} must be a folder path.")
        folders[str(name)] = path.strip()
    if not folders:
        LOGGER.warning("No target folders configured; the classifier can only take no action.")
    return folders


def _parse_graph(value: Any) -> GraphConfig:
    section = _section(value, "graph", required=True)
    secret = _optional_str(section, "client_secret") or os.environ.get(CLIENT_SECRET_ENV_VAR)
    if not secret:
        raise ConfigError(f"graph.client_secret is required (or set ${CLIENT_SECRET_ENV_VAR}).")
    timeout = section.get("timeout_seconds", 30.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError("graph.timeout_seconds must be a positive number.")
    authority = _optional_str(section, "authority") or DEFAULT_AUTHORITY
    if not authority.endswith("/"):
        authority += "/"
    return GraphConfig(
        tenant_id=_required_str(section, "tenant_id", "graph.tenant_id"),
        client_id=_required_str(section, "client_id", "graph.client_id"),
        client_secret=secret,
        authority=authority,
        base_url=(_optional_str(section, "base_url") or DEFAULT_GRAPH_BASE_URL).rstrip("/"),
        timeout_seconds=float(timeout),
    )


def _parse_llm(value: Any) -> LlmConfig:
    section = _section(value, "llm", required=True)
    service = (_optional_str(section, "service") or DEFAULT_LLM_SERVICE).lower()
    if service not in LLM_SERVICES:
        raise ConfigError(f"llm.service must be one of: {', '.join(LLM_SERVICES)}.")

    api_key = _optional_str(section, "api_key")
    if not api_key:
        api_key = next(
            (os.environ[name] for name in LLM_API_KEY_ENV_VARS if os.environ.get(name)), None
        )
    if not api_key:
        raise ConfigError(f"llm.api_key is required (or set ${LLM_API_KEY_ENV_VARS[0]}).")

    endpoint = _optional_str(section, "endpoint")
    if service == "azure" and not endpoint:
        raise ConfigError("llm.endpoint is required when llm.service is 'azure'.")

    temperature = section.get("temperature")
    if temperature is not None and (
        isinstance(temperature, bool) or not isinstance(temperature, (int, float))
    ):
        raise ConfigError("llm.temperature must be a number.")

    timeout = section.get("timeout_seconds", 60.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError("llm.timeout_seconds must be a positive number.")

    return LlmConfig(
        model=_required_str(section, "model", "llm.model"),
        api_key=api_key,
        service=service,
        endpoint=endpoint,
        api_version=_optional_str(section, "api_version") or DEFAULT_AZURE_API_VERSION,
        organization=_optional_str(section, "organization"),
        max_tool_rounds=_positive_int(section.get("max_tool_rounds", 5), "llm.max_tool_rounds"),
        temperature=float(temperature) if temperature is not None else None,
        timeout_seconds=float(timeout),
    )


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "Config",
    "ConfigError",
    "GraphConfig",
    "LlmConfig",
    "LoggingConfig",
    "MailboxConfig",
    "ProcessingConfig",
    "load_config",
    "parse_duration",
    "resolve_config_path",
]
