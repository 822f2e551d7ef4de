"""
F3 Sidecar: Configuration Loader

Three-tier config loading with environment profile support:

  Tier 1: Base YAML (sidecar.yaml in the project root)
  Tier 2: Per-environment overlay files (config/{env}.yaml merged over base)
  Tier 3: Environment variable overrides (SIDECAR_* prefix)

CLI flags are applied last by the caller through `overrides`.
Active environment is set via SIDECAR_ENV (default: "dev").

Usage:
    from sidecar.config import load_config, SidecarConfig

    data = load_config(env="prod", project_root=".")
    cfg = SidecarConfig.from_dict(data, overrides={"f3.finality": 120})
    cfg.params.rpc_endpoint
    cfg.retry.max_retries
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from sidecar.engine import RunParams
from sidecar.errors import ConfigError
from sidecar.logging import DEFAULT_COMPONENT_LEVELS, DEFAULT_ENVIRONMENT, LoggingConfig
from sidecar.supervisor import RetryPolicy

logger = logging.getLogger("f3.sidecar.config")

BASE_FILE = "sidecar.yaml"


def load_config(env: str | None = None, project_root: str | None = None) -> dict[str, Any]:
    """
    Read and merge the config tiers; later tiers win.
    env/root default from SIDECAR_ENV / SIDECAR_PROJECT_ROOT.
    """
    env = env or os.environ.get("SIDECAR_ENV", "dev")
    root = Path(project_root or os.environ.get("SIDECAR_PROJECT_ROOT", "."))

    data: dict[str, Any] = {}
    read = []
    for path in (root / BASE_FILE, root / "config" / f"{env}.yaml"):
        if path.exists():
            data = _deep_merge(data, _read_yaml(path))
            read.append(path.name)

    env_overrides = _load_env_overrides()
    if env_overrides:
        data = _deep_merge(data, env_overrides)

    logger.info("Config loaded: env=%s files=%s env_vars=%d", env, read, len(env_overrides))
    return data


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at top level")
    return data


def _deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep merge overlay into base. Overlay values win.
    Dicts are merged recursively. Lists and scalars are replaced.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# ═══════════════════════════════════════════════════════════════════
# Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

_ENV_MAPPINGS: dict[str, str] = {
    "SIDECAR_RPC_ENDPOINT": "host.rpc_endpoint",
    "SIDECAR_JWT": "host.jwt",
    "SIDECAR_RPC_TIMEOUT": "host.timeout_seconds",
    "SIDECAR_F3_RPC_ENDPOINT": "f3.rpc_endpoint",
    "SIDECAR_INITIAL_POWER_TABLE": "f3.initial_power_table",
    "SIDECAR_BOOTSTRAP_EPOCH": "f3.bootstrap_epoch",
    "SIDECAR_FINALITY": "f3.finality",
    "SIDECAR_DB": "f3.db",
    "SIDECAR_ENGINE_FACTORY": "engine.factory",
    "SIDECAR_MAX_RETRIES": "supervisor.max_retries",
    "SIDECAR_BACKOFF_SECONDS": "supervisor.backoff_seconds",
    "SIDECAR_LOG_LEVEL": "logging.level",
    "SIDECAR_LOG_FORMAT": "logging.format",
    "SIDECAR_SERVER_ENABLED": "server.enabled",
}

# Values that must stay strings even when they look numeric
_STRING_PATHS = {
    "host.rpc_endpoint", "host.jwt", "f3.rpc_endpoint", "f3.initial_power_table",
    "f3.db", "engine.factory", "logging.level", "logging.format",
}


def _set_path(target: dict, dotted: str, value: Any) -> None:
    keys = dotted.split(".")
    current = target
    for k in keys[:-1]:
        current = current.setdefault(k, {})
    current[keys[-1]] = value


def _load_env_overrides() -> dict[str, Any]:
    """
    Load SIDECAR_* environment variables and map to config paths.
    Also supports arbitrary SIDECAR_CONFIG__a__b=value for unmapped keys.
    """
    result: dict[str, Any] = {}

    for env_key, config_path in _ENV_MAPPINGS.items():
        value = os.environ.get(env_key)
        if value is not None:
            if config_path not in _STRING_PATHS:
                value = _auto_convert(value)
            _set_path(result, config_path, value)

    # Double underscores map to dots in the config path
    for key, value in os.environ.items():
        if key.startswith("SIDECAR_CONFIG__"):
            config_path = key[len("SIDECAR_CONFIG__"):].lower().replace("__", ".")
            _set_path(result, config_path, _auto_convert(value))

    return result


def _auto_convert(value: str) -> Any:
    """Convert string values to ints, floats or booleans where they parse."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    return value


# ═══════════════════════════════════════════════════════════════════
# Typed settings
# ═══════════════════════════════════════════════════════════════════

def split_host_port(endpoint: str, default_port: int = 23456) -> tuple[str, int]:
    """Split "127.0.0.1:23456" or "http://host:port/rpc/v1" into (host, port)."""
    rest = endpoint.split("://", 1)[-1]
    rest = rest.split("/", 1)[0]
    host, sep, port = rest.rpartition(":")
    if not sep:
        return rest or "127.0.0.1", default_port
    try:
        return host or "127.0.0.1", int(port)
    except ValueError:
        raise ConfigError(f"Invalid port in endpoint {endpoint!r}") from None


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None


def _as_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None


@dataclass
class SidecarConfig:
    """Everything one sidecar process needs, resolved and validated."""
    params: RunParams
    retry: RetryPolicy
    logging: LoggingConfig
    engine_factory: str = ""
    rpc_timeout: float = 30.0
    server_enabled: bool = True

    @property
    def server_address(self) -> tuple[str, int]:
        return split_host_port(self.params.f3_rpc_endpoint)

    @classmethod
    def from_dict(
        cls,
        raw: dict[str, Any],
        overrides: dict[str, Any] | None = None,
    ) -> SidecarConfig:
        """
        Build typed settings from merged config data. `overrides` maps
        dotted keys to values (CLI flags); None values are ignored.
        """
        data = copy.deepcopy(raw)
        for key, value in (overrides or {}).items():
            if value is not None:
                _set_path(data, key, value)

        def get(dotted: str, default: Any = None) -> Any:
            current: Any = data
            for k in dotted.split("."):
                if isinstance(current, dict) and k in current:
                    current = current[k]
                else:
                    return default
            return current

        initial_pt = get("f3.initial_power_table") or None
        params = RunParams(
            rpc_endpoint=str(get("host.rpc_endpoint", "") or ""),
            jwt=str(get("host.jwt", "") or ""),
            f3_rpc_endpoint=str(get("f3.rpc_endpoint", "127.0.0.1:23456")),
            initial_power_table=str(initial_pt) if initial_pt else None,
            bootstrap_epoch=_as_int(get("f3.bootstrap_epoch", -1), "f3.bootstrap_epoch"),
            finality=_as_int(get("f3.finality", 900), "f3.finality"),
            db=str(get("f3.db", "") or ""),
        )
        errors = params.validate()
        if errors:
            raise ConfigError("; ".join(errors))

        retry = RetryPolicy(
            max_retries=_as_int(get("supervisor.max_retries", 5), "supervisor.max_retries"),
            backoff_seconds=_as_float(
                get("supervisor.backoff_seconds", 10.0), "supervisor.backoff_seconds"
            ),
        )

        components = dict(DEFAULT_COMPONENT_LEVELS)
        for component, level in (get("logging.components", {}) or {}).items():
            # YAML reads a bare `off` as False
            components[component] = "off" if level is False else str(level)
        environment = dict(DEFAULT_ENVIRONMENT)
        environment.update(get("logging.environment", {}) or {})
        log_cfg = LoggingConfig(
            level="off" if get("logging.level") is False else str(get("logging.level", "info")),
            format=str(get("logging.format", "json")),
            components=components,
            environment={k: str(v) for k, v in environment.items()},
        )
        errors = log_cfg.validate()
        if errors:
            raise ConfigError("; ".join(errors))

        return cls(
            params=params,
            retry=retry,
            logging=log_cfg,
            engine_factory=str(get("engine.factory", "") or ""),
            rpc_timeout=_as_float(get("host.timeout_seconds", 30.0), "host.timeout_seconds"),
            server_enabled=bool(get("server.enabled", True)),
        )
