"""User configuration: YAML settings file plus environment overrides.

The settings file lives at ``~/.config/commit-helper/config.yml`` (or the path
in COMMIT_HELPER_CONFIG)::

    github_token: ghp_...
    gitlab_token: glpat-...
    local_gitlab_token: ...
    gitee_token: ...
    host_tokens:
      git.example.com: ...
    max_issues: 50
    request_timeout: 8
    debug: false
"""

import logging
import os
import ssl
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ISSUES = 50
DEFAULT_REQUEST_TIMEOUT = 8.0

_TRUE_VALUES = ("1", "true", "yes", "on")


def get_config_path() -> Path:
    """Path of the settings file."""
    override = os.getenv("COMMIT_HELPER_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "commit-helper" / "config.yml"


def _load_config_file(path: Path) -> dict:
    """Load the YAML settings file.

    Returns:
        Parsed settings, or an empty dict if missing/unreadable/not a mapping.
    """
    if not path.exists():
        return {}

    try:
        with path.open(encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except (yaml.YAMLError, PermissionError, OSError) as e:
        logger.debug("Could not load config file %s: %s", path, e)
        return {}
    if not isinstance(result, dict):
        logger.debug("Ignoring config file %s: top level is not a mapping", path)
        return {}
    return result


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    """Resolve key against data, literal first, then through nested mappings.

    Segments may themselves contain dots (hostnames), so every split point is
    tried: ``host_tokens.git.example.com`` finds ``{"host_tokens":
    {"git.example.com": ...}}`` as well as ``{"host_tokens": {"git": {...}}}``.
    """
    if key in data:
        return data[key]
    parts = key.split(".")
    for i in range(1, len(parts)):
        head = ".".join(parts[:i])
        child = data.get(head)
        if isinstance(child, Mapping):
            value = _lookup(child, ".".join(parts[i:]))
            if value is not None:
                return value
    return None


def _env_number(name: str, cast: type, default: float | int) -> Any:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {raw!r} is not a number") from e


class Settings:
    """Read-only view of user settings.

    Environment variables take precedence over the settings file for the
    scalar options; token lookups are layered by the platforms themselves.
    """

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = dict(data or {})

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from the YAML file (missing file means defaults)."""
        return cls(_load_config_file(path or get_config_path()))

    def get(self, key: str) -> Any:
        """Value for a (possibly dotted) key, or None. Blank strings count as unset."""
        value = _lookup(self._data, key)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def get_str(self, key: str) -> str | None:
        """Scalar value as a string; mappings and lists count as unset."""
        value = self.get(key)
        if value is None or isinstance(value, (Mapping, list)):
            return None
        return str(value)

    @property
    def max_issues(self) -> int:
        default = self._number("max_issues", int, DEFAULT_MAX_ISSUES)
        return _env_number("COMMIT_HELPER_MAX_ISSUES", int, default)

    @property
    def request_timeout(self) -> float:
        default = self._number("request_timeout", float, DEFAULT_REQUEST_TIMEOUT)
        return _env_number("COMMIT_HELPER_TIMEOUT", float, default)

    @property
    def debug(self) -> bool:
        env = os.getenv("COMMIT_HELPER_DEBUG", "").strip()
        if env:
            return env.lower() in _TRUE_VALUES
        value = self.get("debug")
        if isinstance(value, str):
            return value.lower() in _TRUE_VALUES
        return bool(value)

    def _number(self, key: str, cast: type, default: float | int) -> Any:
        value = self.get(key)
        if value is None:
            return default
        try:
            return cast(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid {key} in settings: {value!r}") from e


def get_ssl_verify() -> bool | ssl.SSLContext:
    """Get TLS verification setting for self-hosted forges.

    Environment variables (checked in order):
    - COMMIT_HELPER_CA_BUNDLE: Path to custom CA certificate bundle
    - COMMIT_HELPER_INSECURE=1: Disable verification (not recommended)

    Returns:
        True for default verification, False to disable, or an SSL context
        trusting the custom bundle.
    """
    ca_bundle = os.getenv("COMMIT_HELPER_CA_BUNDLE", "").strip()
    if ca_bundle:
        try:
            return ssl.create_default_context(cafile=ca_bundle)
        except (OSError, ssl.SSLError) as e:
            raise ConfigError(f"Cannot load CA bundle {ca_bundle}: {e}") from e
    if os.getenv("COMMIT_HELPER_INSECURE", "").lower() in _TRUE_VALUES:
        logger.warning(
            "TLS verification disabled (COMMIT_HELPER_INSECURE=1). "
            "This is insecure and should only be used for trusted hosts."
        )
        return False
    return True
