"""
Application configuration.

Values are layered, later layers winning:
  1. DEFAULTS below
  2. a YAML file named by SIGNAGE_CONFIG (optional)
  3. environment variables (a .env file in the working directory is loaded first)
  4. overrides passed by the caller (tests, CLI flags)
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULTS: Dict[str, Any] = {
    "SECRET_KEY": "dev-secret-key-change-in-prod",
    "SQLALCHEMY_DATABASE_URI": f"sqlite:///{PROJECT_ROOT / 'signage.db'}",
    "LOG_LEVEL": "INFO",
    "LOG_DIR": str(PROJECT_ROOT / "logs"),
    "LOG_MAX_BYTES": 5 * 1024 * 1024,
    "LOG_BACKUP_COUNT": 5,
    "PAGE_SIZE": 10,
    "TIMEZONE_LABEL": "Local time",
}

# environment variable -> (config key, converter)
ENV_VARS = {
    "SECRET_KEY": ("SECRET_KEY", str),
    "DATABASE_URL": ("SQLALCHEMY_DATABASE_URI", str),
    "LOG_LEVEL": ("LOG_LEVEL", str),
    "LOG_DIR": ("LOG_DIR", str),
    "PAGE_SIZE": ("PAGE_SIZE", int),
}


class ConfigError(Exception):
    """Raised when the configuration file or environment holds an invalid value."""


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping of config keys. Keys are upper-cased."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping of settings")
    return {str(k).upper(): v for k, v in data.items()}


def load_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    load_dotenv()
    config = dict(DEFAULTS)

    config_path = os.environ.get("SIGNAGE_CONFIG")
    if config_path:
        config.update(load_config_file(Path(config_path)))

    for var, (key, convert) in ENV_VARS.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            config[key] = convert(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {var}: {raw!r}") from e

    if overrides:
        config.update(overrides)

    if int(config["PAGE_SIZE"]) < 1:
        raise ConfigError("PAGE_SIZE must be at least 1")
    config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    return config
