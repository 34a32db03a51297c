"""
Application configuration for the HN digest mailer.

Settings are read from YAML once at startup and frozen into an AppConfig
tree that is handed to each component explicitly.
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Union, get_args, get_origin

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent / "settings.yaml"

# ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass(frozen=True)
class EmailConfig:
    """SMTP submission settings."""
    domain: str = "localhost"
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""
    timeout: float = 30.0
    max_reconnects: int = 1

    @property
    def from_address(self) -> str:
        return self.sender or self.user


@dataclass(frozen=True)
class StorageConfig:
    type: str = "sqlite"
    path: str = "./newsletter.sqlite"


@dataclass(frozen=True)
class SourceConfig:
    """Story ranking API settings."""
    type: str = "hacker_news"
    topstories_url: str = "https://hacker-news.firebaseio.com/v0/topstories.json"
    item_url: str = "https://hacker-news.firebaseio.com/v0/item/{id}.json"
    item_page_url: str = "https://news.ycombinator.com/item?id={id}"
    max_concurrency: int = 8
    timeout: float = 10.0


@dataclass(frozen=True)
class DigestConfig:
    template_path: str = "./message.html"
    unsubscribe_url: str = "localhost/unsubscribe/?email="
    subject: str = "Your Hacker News digest"
    story_line: Optional[str] = None
    send_empty: bool = False


@dataclass(frozen=True)
class AppConfig:
    email: EmailConfig = field(default_factory=EmailConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    digest: DigestConfig = field(default_factory=DigestConfig)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AppConfig":
        """
        Build a config tree from the parsed YAML mapping.

        Unknown keys are rejected and values are converted to the declared
        field types, so typos and bad environment values surface at startup
        rather than as silently ignored settings.
        """
        data = _expand_env(data or {})
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        sections = {
            "email": EmailConfig,
            "storage": StorageConfig,
            "source": SourceConfig,
            "digest": DigestConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

        built = {}
        for name, section_cls in sections.items():
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigError(f"Section '{name}' must be a mapping")
            known = {f.name: f.type for f in fields(section_cls)}
            unknown_keys = set(section) - set(known)
            if unknown_keys:
                raise ConfigError(
                    f"Unknown keys in section '{name}': {sorted(map(str, unknown_keys))}"
                )
            built[name] = section_cls(**{
                key: _coerce(name, key, known[key], value)
                for key, value in section.items()
            })

        config = cls(**built)
        config.validate()
        return config

    def validate(self):
        """Check value ranges that the dataclasses cannot express."""
        if not 0 < self.email.port < 65536:
            raise ConfigError(f"email.port out of range: {self.email.port}")
        if self.email.max_reconnects < 0:
            raise ConfigError("email.max_reconnects must not be negative")
        if self.source.max_concurrency < 1:
            raise ConfigError("source.max_concurrency must be at least 1")
        if "{id}" not in self.source.item_url:
            raise ConfigError("source.item_url must contain an {id} placeholder")


_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0", ""})


def _coerce(section: str, name: str, field_type, value):
    """Convert a YAML or env-expanded value to the field's declared type."""
    where = f"{section}.{name}"
    if get_origin(field_type) is Union:
        if value is None:
            return None
        field_type = next(t for t in get_args(field_type) if t is not type(None))
    elif value is None:
        if field_type is str:
            return ""
        raise ConfigError(f"{where} must not be empty")

    if field_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS:
            return True
        if isinstance(value, str) and value.strip().lower() in _FALSE_STRINGS:
            return False
        raise ConfigError(f"{where} must be true or false, got {value!r}")

    if field_type in (int, float):
        if isinstance(value, bool):
            raise ConfigError(f"{where} must be a number, got {value!r}")
        if field_type is int and isinstance(value, float):
            raise ConfigError(f"{where} must be a whole number, got {value!r}")
        try:
            return field_type(value.strip() if isinstance(value, str) else value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{where} must be a number, got {value!r}") from e

    if isinstance(value, (dict, list)):
        raise ConfigError(f"{where} must be a single value")
    return str(value)


def _expand_env(value):
    """Recursively expand ${VAR:-default} references in string values."""
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    if isinstance(value, str):
        def replace(match):
            var_name, default = match.groups()
            return os.environ.get(var_name, default if default is not None else "")
        return _ENV_PATTERN.sub(replace, value)
    return value


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from a YAML file."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    return AppConfig.from_dict(data)
