"""Configuration loading for the Firebase input.

Configuration is read from the ``firebase:`` section of a YAML file.

Usage Examples
--------------

    >>> from config import load_config
    >>> config = load_config(Path("config.yaml"))
    >>> config.mode
    'schedule'

Configuration Priority
---------------------

1. ``overrides`` passed to load_config() (deep-merged)
2. YAML configuration file, with ${VAR} / ${VAR:-default} expansion
3. Dataclass defaults
"""

from config.config import (
    DEFAULT_METADATA_TARGET,
    FirebaseInputConfig,
    load_config,
)

__all__ = [
    "load_config",
    "FirebaseInputConfig",
    "DEFAULT_METADATA_TARGET",
]
