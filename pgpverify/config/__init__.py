"""pgpverify configuration module.

Configuration is stored in ~/.pgpverify/config.yaml under the 'pgpverify' key.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from pgpverify.config.models import (
    DEFAULT_KEY_SERVERS,
    FilterConfig,
    KeyServerConfig,
    KeysMapLocationConfig,
    ProxyConfig,
    VerifyConfig,
    split_servers,
)

CONFIG_SECTION = "pgpverify"

__all__ = [
    "CONFIG_SECTION", "DEFAULT_KEY_SERVERS",
    "ConfigError", "load_config", "config_from_dict",
    "FilterConfig", "KeyServerConfig", "KeysMapLocationConfig",
    "ProxyConfig", "VerifyConfig", "split_servers",
]


class ConfigError(ValueError):
    """Raised when the configuration file exists but is invalid."""


def config_from_dict(data: Dict[str, Any]) -> VerifyConfig:
    try:
        return VerifyConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid pgpverify configuration:\n{e}") from e


def load_config(config_path: Optional[Path] = None) -> VerifyConfig:
    """
    Load verification configuration from ~/.pgpverify/config.yaml.

    Falls back to defaults if the file is missing or the section is absent.

    Args:
        config_path: Override config file path (for testing)

    Returns:
        VerifyConfig with loaded or default values

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    if config_path is None:
        config_path = Path.home() / ".pgpverify" / "config.yaml"

    if not config_path.exists():
        return VerifyConfig()

    try:
        with open(config_path) as f:
            full_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e

    if not isinstance(full_config, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    section = full_config.get(CONFIG_SECTION) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{CONFIG_SECTION}' in {config_path} must be a mapping")

    return config_from_dict(section)
