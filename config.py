#!/usr/bin/env python3
"""
Central runtime configuration for the idle workload scaler.

Values come from a YAML file; a handful of environment variables provide
the file location and secrets so they never have to live in the file.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Config file location
DEFAULT_CONFIG_PATH = os.getenv("IDLE_SCALER_CONFIG", "./config.yaml")

# Secrets
CLICKHOUSE_PASSWORD_ENV = "DEEPFLOW_CLICKHOUSE_PASSWORD"

# ClickHouse HTTP interface
DEFAULT_CLICKHOUSE_HTTP_PORT = int(os.getenv("DEEPFLOW_CLICKHOUSE_HTTP_PORT", "8123"))


@dataclass
class IdleScalerConfig:
    prometheus_host: str = ""
    deepflow_host: str = ""
    deepflow_clickhouse_username: str = "default"
    deepflow_clickhouse_password: str = ""
    deepflow_check_days: int = 7
    ignore_namespaces: List[str] = field(default_factory=list)
    ignore_deployments: List[str] = field(default_factory=list)
    ignore_annotations: str = "idle-scaler/ignore"
    safe_scale: bool = True
    scale_enable: bool = False
    use_deepflow: bool = False
    load_namespace_prefix: str = "load-"
    reserved_node_pools: List[str] = field(default_factory=lambda: ["load", "staging"])
    idle_epsilon: float = 0.001
    rate_window: str = "3m"
    query_step_seconds: int = 60
    metrics_timeout_seconds: float = 10.0
    flow_timeout_seconds: float = 5.0
    max_workers: int = 4
    sweep_deadline_seconds: Optional[float] = 1800.0
    kubeconfig_path: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> "IdleScalerConfig":
        """Raise ConfigurationError for any unusable value."""
        if not self.prometheus_host:
            raise ConfigurationError("prometheus_host is required")
        if self.use_deepflow and not self.deepflow_host:
            raise ConfigurationError("deepflow_host is required when use_deepflow is enabled")
        if self.deepflow_check_days < 0:
            raise ConfigurationError(
                "deepflow_check_days must not be negative",
                context={"deepflow_check_days": self.deepflow_check_days},
            )
        if self.idle_epsilon <= 0:
            raise ConfigurationError("idle_epsilon must be positive", context={"idle_epsilon": self.idle_epsilon})
        if self.query_step_seconds <= 0:
            raise ConfigurationError("query_step_seconds must be positive")
        if self.metrics_timeout_seconds <= 0 or self.flow_timeout_seconds <= 0:
            raise ConfigurationError("query timeouts must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", context={"max_workers": self.max_workers})
        if self.sweep_deadline_seconds is not None and self.sweep_deadline_seconds <= 0:
            raise ConfigurationError("sweep_deadline_seconds must be positive or null")
        if not self.rate_window:
            raise ConfigurationError("rate_window must not be empty")
        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            raise ConfigurationError("unknown log_level", context={"log_level": self.log_level})
        return self

    def with_overrides(self, **overrides: Any) -> "IdleScalerConfig":
        """Return a copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in overrides.items():
            if key not in values:
                raise ConfigurationError(f"unknown config override: {key}")
            if value is not None:
                values[key] = value
        return IdleScalerConfig(**values).validate()


_LIST_FIELDS = {"ignore_namespaces", "ignore_deployments", "reserved_node_pools"}
_BOOL_FIELDS = {"safe_scale", "scale_enable", "use_deepflow"}
_INT_FIELDS = {"deepflow_check_days", "query_step_seconds", "max_workers"}
_FLOAT_FIELDS = {"idle_epsilon", "metrics_timeout_seconds", "flow_timeout_seconds"}
_OPTIONAL_FIELDS = {"sweep_deadline_seconds", "kubeconfig_path", "log_file"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        if name in _OPTIONAL_FIELDS:
            return None
        if name in _LIST_FIELDS:
            return []
        raise ConfigurationError(f"{name} must not be null")

    if name in _LIST_FIELDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigurationError(f"{name} must be a list of strings", context={name: value})
        return list(value)
    if name in _BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ConfigurationError(f"{name} must be a boolean", context={name: value})
        return value
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{name} must be an integer", context={name: value})
        return value
    if name in _FLOAT_FIELDS or name == "sweep_deadline_seconds":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{name} must be a number", context={name: value})
        return float(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"{name} must be a string", context={name: value})
    return value


def config_from_dict(raw: Dict[str, Any]) -> IdleScalerConfig:
    """Build a validated config from a parsed YAML mapping."""
    known = {f.name for f in fields(IdleScalerConfig)}
    values = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        values[key] = _coerce(key, value)

    password = os.getenv(CLICKHOUSE_PASSWORD_ENV)
    if password:
        values["deepflow_clickhouse_password"] = password

    return IdleScalerConfig(**values).validate()


def load_config(path: Optional[str] = None) -> IdleScalerConfig:
    """Load and validate the YAML config file."""
    path = path or DEFAULT_CONFIG_PATH
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}", cause=e)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}", cause=e)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    logger.info(f"Loaded config from: {path}")
    return config_from_dict(raw)
