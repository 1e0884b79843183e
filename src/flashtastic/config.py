"""
Configuration loading for Flashtastic.

Settings come from an optional `flashtastic.yaml` in the platformdirs config
directory. The GitHub token is resolved here, once, and handed to the catalog
client explicitly; nothing else in the package reads the environment for it.
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import platformdirs
import yaml

from flashtastic.constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_API_URL,
    GITHUB_ORG,
    GITHUB_TOKEN_ENV_VAR,
    UF2_SETTLE_SECONDS,
    UF2_VOLUME_LABEL,
)
from flashtastic.exceptions import ConfigFileError, ConfigValidationError
from flashtastic.log_utils import logger


def get_config_dir() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME))


def get_config_file() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME


@dataclass(frozen=True)
class FlashtasticConfig:
    """Resolved runtime settings."""

    github_token: Optional[str] = None
    github_api_url: str = GITHUB_API_URL
    github_org: str = GITHUB_ORG
    download_dir: Path = Path(tempfile.gettempdir())
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    uf2_settle_seconds: float = UF2_SETTLE_SECONDS
    uf2_volume_label: str = UF2_VOLUME_LABEL
    log_level: Optional[str] = None
    log_file_dir: Optional[Path] = None


def _get_str(raw: Mapping[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    value = raw.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigValidationError(
            f"{key} must be a string", details=f"got {type(value).__name__}"
        )
    return value.strip() or default


def _get_positive_float(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        parsed = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"{key} must be a number", details=repr(value)) from e
    if parsed < 0:
        raise ConfigValidationError(f"{key} must not be negative", details=repr(value))
    return parsed


def resolve_github_token(
    config_token: Optional[str],
    allow_env_token: bool = True,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Determine the GitHub token to use, preferring the configured value over the environment.

    Parameters:
        config_token (Optional[str]): Token from the configuration file.
        allow_env_token (bool): If True, fall back to the `GITHUB_TOKEN` environment variable.
        environ (Optional[Mapping[str, str]]): Environment to read; defaults to os.environ.

    Returns:
        Optional[str]: The chosen token with surrounding whitespace removed, or `None`.
    """
    candidate = (config_token or "").strip()
    if candidate:
        return candidate
    if not allow_env_token:
        return None
    env = os.environ if environ is None else environ
    env_token = (env.get(GITHUB_TOKEN_ENV_VAR) or "").strip()
    if not env_token:
        logger.info(
            f"environment variable {GITHUB_TOKEN_ENV_VAR} is not set; "
            "using unauthenticated GitHub requests (lower rate limit)"
        )
        return None
    return env_token


def config_from_mapping(
    raw: Optional[Mapping[str, Any]],
    environ: Optional[Mapping[str, str]] = None,
) -> FlashtasticConfig:
    """
    Validate a raw configuration mapping and build a FlashtasticConfig.

    Raises:
        ConfigValidationError: If a value has the wrong type or range.
    """
    raw = raw or {}
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            "configuration must be a mapping", details=type(raw).__name__
        )

    allow_env_token = raw.get("ALLOW_ENV_TOKEN", True)
    if not isinstance(allow_env_token, bool):
        raise ConfigValidationError("ALLOW_ENV_TOKEN must be true or false")

    download_dir = _get_str(raw, "DOWNLOAD_DIR", None)
    log_file_dir = _get_str(raw, "LOG_FILE_DIR", None)

    return FlashtasticConfig(
        github_token=resolve_github_token(
            _get_str(raw, "GITHUB_TOKEN", None), allow_env_token, environ
        ),
        github_api_url=_get_str(raw, "GITHUB_API_URL", GITHUB_API_URL) or GITHUB_API_URL,
        github_org=_get_str(raw, "GITHUB_ORG", GITHUB_ORG) or GITHUB_ORG,
        download_dir=(
            Path(download_dir).expanduser()
            if download_dir
            else Path(tempfile.gettempdir())
        ),
        request_timeout=_get_positive_float(
            raw, "REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT
        ),
        uf2_settle_seconds=_get_positive_float(
            raw, "UF2_SETTLE_SECONDS", UF2_SETTLE_SECONDS
        ),
        uf2_volume_label=_get_str(raw, "UF2_VOLUME_LABEL", UF2_VOLUME_LABEL)
        or UF2_VOLUME_LABEL,
        log_level=_get_str(raw, "LOG_LEVEL", None),
        log_file_dir=Path(log_file_dir).expanduser() if log_file_dir else None,
    )


def read_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a YAML configuration file.

    Returns:
        Dict[str, Any]: Parsed mapping; empty if the file does not exist or is empty.

    Raises:
        ConfigFileError: If the file cannot be read or is not valid YAML.
    """
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ConfigFileError(f"could not load configuration {path}", str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(
            f"configuration {path} must contain a mapping", type(data).__name__
        )
    return data


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FlashtasticConfig:
    """
    Load settings from `path` (default: the platformdirs config file).

    A missing file yields the defaults.
    """
    config_path = Path(path) if path else get_config_file()
    raw = read_config_file(config_path)
    if raw:
        logger.debug(f"Loaded configuration from {config_path}")
    return config_from_mapping(raw, environ)
