"""Firebase input configuration from YAML file.

Loads the ``firebase:`` section of a YAML file:
- Database connection settings (url, secret, timeouts)
- Named references to retrieve (refs)
- Optional schedule (pull mode) or none (stream mode)
- Event shaping (target, metadata_target, tags, add_field)

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.auth import DEFAULT_AUTH_TTL_SECONDS
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.yaml")
DEFAULT_METADATA_TARGET = "@metadata"


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


@dataclass
class FirebaseInputConfig:
    """Firebase input configuration.

    Configuration structure:
        firebase:
          url: https://my-app.firebaseio.com
          secret: ${FIREBASE_SECRET}
          refs:
            users: {path: users, orderBy: "$key", limitToFirst: 10}
            config: {path: app/config}
          schedule: {every: "30s"}     # omit for stream mode
          target: data
          metadata_target: "@metadata"
          tags: [firebase]
          add_field: {source: "%{[@metadata][query_name]}"}

    Without ``schedule`` the input subscribes to every ref as a stream.
    """

    url: str = ""
    secret: Optional[str] = None
    refs: Dict[str, Any] = field(default_factory=dict)
    target: Optional[str] = None
    schedule: Optional[Dict[str, Any]] = None
    metadata_target: Optional[str] = DEFAULT_METADATA_TARGET

    timeout_seconds: float = 10
    max_retries: int = 3
    auth_ttl_seconds: float = DEFAULT_AUTH_TTL_SECONDS
    stream_retry_seconds: float = 1.0
    enqueue_timeout_seconds: float = 5.0

    tags: List[str] = field(default_factory=list)
    add_field: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirebaseInputConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"firebase section must be a mapping, got {type(data).__name__}"
            )

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown firebase configuration keys: {', '.join(unknown)}",
                context={"unknown_keys": unknown},
            )

        values = dict(data)
        # An explicit null or empty value disables the metadata envelope
        if "metadata_target" in values and not values["metadata_target"]:
            values["metadata_target"] = None
        if values.get("tags") is None:
            values.pop("tags", None)
        if values.get("add_field") is None:
            values.pop("add_field", None)

        config = cls(**values)
        config.validate()
        return config

    @property
    def mode(self) -> str:
        return "schedule" if self.schedule is not None else "stream"

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, shapes, and numeric ranges. Query specs and
        schedule expressions are validated by the components that own them.
        """
        context = "firebase"

        if not self.url or not isinstance(self.url, str):
            raise ConfigurationError("url is required in firebase section")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"{context}: url must start with http:// or https://, got '{self.url}'"
            )

        if self.secret is not None and not isinstance(self.secret, str):
            raise ConfigurationError(f"{context}: secret must be a string")

        if not isinstance(self.refs, dict) or not self.refs:
            raise ConfigurationError(f"{context}: refs must be a non-empty mapping")

        if self.schedule is not None and not isinstance(self.schedule, dict):
            raise ConfigurationError(
                "schedule hash must contain exactly one of the following keys "
                "- cron, at, every or in"
            )

        for key in ("target", "metadata_target"):
            value = getattr(self, key)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{context}: {key} must be a string")

        if not isinstance(self.tags, list) or not all(isinstance(t, str) for t in self.tags):
            raise ConfigurationError(f"{context}: tags must be a list of strings")
        if not isinstance(self.add_field, dict):
            raise ConfigurationError(f"{context}: add_field must be a mapping")

        settings = {
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "auth_ttl_seconds": self.auth_ttl_seconds,
            "stream_retry_seconds": self.stream_retry_seconds,
            "enqueue_timeout_seconds": self.enqueue_timeout_seconds,
        }
        for key, value in settings.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{context}: {key} must be a number, got {value!r}")

        self._validate_min(settings, "timeout_seconds", 0, inclusive=False, context=context)
        self._validate_min(settings, "max_retries", 0, inclusive=True, context=context)
        self._validate_min(settings, "auth_ttl_seconds", 0, inclusive=False, context=context)
        self._validate_min(settings, "stream_retry_seconds", 0, inclusive=True, context=context)
        self._validate_min(settings, "enqueue_timeout_seconds", 0, inclusive=False, context=context)

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ConfigurationError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ConfigurationError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    def describe(self) -> Dict[str, Any]:
        """Loggable summary of the config with the secret left out."""
        return {
            "url": self.url,
            "mode": self.mode,
            "refs": list(self.refs),
            "schedule": self.schedule,
            "auth": "configured" if self.secret else "none",
        }


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> FirebaseInputConfig:
    """Load Firebase input configuration from a YAML file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info("Loading configuration from file: %s", config_path)
    try:
        yaml_data = load_yaml(config_path)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", cause=e) from e
    yaml_data = _expand_env_vars(yaml_data)

    if not isinstance(yaml_data, dict) or "firebase" not in yaml_data:
        raise ConfigurationError(
            "Invalid config file: missing 'firebase:' section\n"
            "See config.yaml.example for correct structure"
        )

    firebase_config = yaml_data["firebase"]

    if overrides:
        logger.debug("Applying overrides: %s", list(overrides.keys()))
        firebase_config = _deep_merge(firebase_config or {}, overrides)

    config = FirebaseInputConfig.from_dict(firebase_config)

    logger.debug("Configuration loaded successfully", extra=config.describe())
    return config
