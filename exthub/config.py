"""Runtime settings.

Settings come from an optional YAML file (``~/.exthub/config.yaml`` or the
path in ``EXTHUB_CONFIG``) and are overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml

from exthub.errors import ConfigError

DEFAULT_BASE_DIR = Path.home() / ".claude" / "extensions"
DEFAULT_CONFIG_FILE = Path.home() / ".exthub" / "config.yaml"

_ENV_OVERRIDES = {
    "EXTHUB_REGISTRY_PATH": "registry_path",
    "EXTHUB_EXTENSIONS_DIR": "extensions_dir",
    "EXTHUB_CACHE_PATH": "cache_path",
    "GITHUB_TOKEN": "github_token",
    "EXTHUB_REQUEST_TIMEOUT": "request_timeout",
    "EXTHUB_CACHE_TTL": "cache_ttl",
}

_PATH_FIELDS = {"registry_path", "extensions_dir", "cache_path"}
_FLOAT_FIELDS = {"request_timeout", "cache_ttl"}


def proxy_url_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the configured egress proxy URL, HTTPS taking precedence."""
    env = os.environ if environ is None else environ
    for name in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
        value = env.get(name, "")
        if value:
            return value
    return ""


@dataclass
class Settings:
    """Where the registry lives and how to talk to GitHub."""

    registry_path: Path = field(default_factory=lambda: DEFAULT_BASE_DIR / "registry.json")
    extensions_dir: Path = field(default_factory=lambda: DEFAULT_BASE_DIR / "installed")
    cache_path: Optional[Path] = None
    github_token: str = ""
    request_timeout: float = 30.0
    cache_ttl: float = 300.0
    proxy_url: str = ""

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_file: str | Path | None = None,
    ) -> "Settings":
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        if config_file is None:
            config_file = env.get("EXTHUB_CONFIG") or DEFAULT_CONFIG_FILE
        values.update(_read_config_file(Path(config_file)))

        for env_name, attr in _ENV_OVERRIDES.items():
            if env.get(env_name):
                values[attr] = env[env_name]

        proxy = proxy_url_from_env(env)
        if proxy:
            values["proxy_url"] = proxy

        return cls(**_coerce(values))


def _read_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    known = {f.name for f in fields(Settings)}
    return {k: v for k, v in data.items() if k in known}


def _coerce(values: dict[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for key, value in values.items():
        if value is None:
            continue
        if key in _PATH_FIELDS:
            out[key] = Path(str(value)).expanduser()
        elif key in _FLOAT_FIELDS:
            try:
                out[key] = float(value)  # type: ignore[arg-type]
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Setting '{key}' must be a number, got {value!r}") from e
        else:
            out[key] = str(value)
    return out
