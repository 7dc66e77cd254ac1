"""Configuration loader for the portracker router integration.

Loads settings from a YAML file with built-in defaults. Supports environment
variable overrides using the PORTRACKER_ prefix with double-underscore
nesting (e.g., PORTRACKER_ROUTER__RPC_TIMEOUT=20).
"""

from __future__ import annotations

import os
import pathlib
from typing import Any

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Config sub-models
# ---------------------------------------------------------------------------

class RouterSettings(BaseModel):
    ssh_port: int = 22
    ssh_timeout: float = 10.0
    rpc_path: str = "/cgi-bin/luci/rpc"
    rpc_timeout: float = 10.0
    rpc_scheme: str = "http"
    # "interactive", "rpc" or None to probe both
    transport: str | None = None


class EncryptionSettings(BaseModel):
    key: str | None = None


class LoggingSettings(BaseModel):
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseModel):
    router: RouterSettings = Field(default_factory=RouterSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Deep merge helper
# ---------------------------------------------------------------------------

def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into *base*, returning a new dict."""
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "PORTRACKER_"

# Name used by earlier deployments for the credential key.
_LEGACY_KEY_VAR = "ROUTER_ENCRYPTION_KEY"

# Values that must stay strings even when they look numeric.
_STRING_KEYS = {("encryption", "key")}


def _collect_env_overrides() -> dict[str, Any]:
    """Collect PORTRACKER_* env vars and build a nested dict.

    Double-underscore separates nesting levels.
    Example: PORTRACKER_ROUTER__SSH_PORT=2222
    becomes  {"router": {"ssh_port": 2222}}
    """
    overrides: dict[str, Any] = {}
    legacy_key = os.environ.get(_LEGACY_KEY_VAR)
    if legacy_key:
        overrides["encryption"] = {"key": legacy_key}

    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        parts = key[len(_ENV_PREFIX) :].lower().split("__")
        current = overrides
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        final_value: Any = value
        if tuple(parts) not in _STRING_KEYS:
            try:
                final_value = int(value)
            except ValueError:
                try:
                    final_value = float(value)
                except ValueError:
                    if value.lower() in ("true", "false"):
                        final_value = value.lower() == "true"
        current[parts[-1]] = final_value
    return overrides


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_BUILTIN_DEFAULTS_PATH = pathlib.Path(__file__).resolve().parents[3] / "config" / "defaults.yaml"


def load_settings(
    config_path: pathlib.Path | None = None,
) -> Settings:
    """Load settings with layered precedence: defaults < file < env vars.

    Parameters
    ----------
    config_path:
        Path to a YAML config file. If ``None`` or the file does not exist,
        built-in defaults are used.
    """
    base: dict[str, Any] = {}

    path = config_path if config_path is not None else _BUILTIN_DEFAULTS_PATH
    if path.exists():
        with open(path) as fh:
            file_data = yaml.safe_load(fh)
        if isinstance(file_data, dict):
            base = _deep_merge(base, file_data)

    env_overrides = _collect_env_overrides()
    if env_overrides:
        base = _deep_merge(base, env_overrides)

    return Settings(**base)
