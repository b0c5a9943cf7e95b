"""Load balancer configuration: JSON parsing, defaults and validation."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Callable, Dict, List, Optional

__all__ = [
    "ConfigError",
    "HealthCheckConfig",
    "CircuitBreakerConfig",
    "LoadBalancerConfig",
    "ServerConfig",
    "RouterConfig",
    "ServiceConfig",
    "DashboardAuth",
    "MiddlewareConfig",
    "TimeoutConfig",
    "TLSConfig",
    "EntryPointConfig",
    "CORSConfig",
    "Config",
    "load",
    "parse_config",
    "apply_defaults",
    "validate",
]


class ConfigError(ValueError):
    """Raised when configuration text is malformed or inconsistent."""


Parser = Callable[[Any, str], Any]


def _int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}: expected an integer, got {value!r}")
    return value


def _float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}: expected a number, got {value!r}")
    return float(value)


def _str(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{where}: expected a string, got {value!r}")
    return value


def _bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: expected a boolean, got {value!r}")
    return value


def _str_list(value: Any, where: str) -> List[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a list, got {value!r}")
    return [_str(item, f"{where}[{pos}]") for pos, item in enumerate(value)]


def _raw(value: Any, where: str) -> Any:
    """Keep type-specific settings as an independent copy for later parsing."""
    return copy.deepcopy(value)


def _nested(cls: type) -> Parser:
    return lambda value, where: _build(cls, value, where)


def _list_of(cls: type) -> Parser:
    def parse(value: Any, where: str) -> list:
        if not isinstance(value, list):
            raise ConfigError(f"{where}: expected a list, got {value!r}")
        return [_build(cls, item, f"{where}[{pos}]") for pos, item in enumerate(value)]

    return parse


def _map_of(cls: type) -> Parser:
    def parse(value: Any, where: str) -> dict:
        if not isinstance(value, dict):
            raise ConfigError(f"{where}: expected an object, got {value!r}")
        return {key: _build(cls, item, f"{where}.{key}") for key, item in value.items()}

    return parse


def _opt(
    name: str,
    parse: Parser,
    *,
    omitempty: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    meta = {"json": name, "parse": parse, "omitempty": omitempty}
    if default_factory is not MISSING:
        return field(default_factory=default_factory, metadata=meta)
    return field(default=default, metadata=meta)


def _build(cls: type, data: Any, where: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"{where or 'config'}: expected an object, got {data!r}")
    values = {}
    for spec in fields(cls):
        key = spec.metadata["json"]
        raw = data.get(key)
        if raw is not None:
            values[spec.name] = spec.metadata["parse"](raw, f"{where}.{key}" if where else key)
    return cls(**values)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if is_dataclass(value):
        return False
    if isinstance(value, (bool, int, float, str, list, dict)):
        return not value
    return False


def _encode(obj: Any) -> Any:
    if is_dataclass(obj):
        out = {}
        for spec in fields(obj):
            value = getattr(obj, spec.name)
            if spec.metadata.get("omitempty") and _is_empty(value):
                continue
            out[spec.metadata["json"]] = _encode(value)
        return out
    if isinstance(obj, list):
        return [_encode(item) for item in obj]
    if isinstance(obj, dict):
        return {key: _encode(item) for key, item in obj.items()}
    return obj


@dataclass
class HealthCheckConfig:
    """Health check settings for a server or service."""

    path: str = _opt("path", _str, omitempty=True, default="")
    interval_sec: int = _opt("interval_sec", _int, omitempty=True, default=0)
    timeout_sec: int = _opt("timeout_sec", _int, omitempty=True, default=0)
    expected_status: int = _opt("expected_status", _int, omitempty=True, default=0)


@dataclass
class CircuitBreakerConfig:
    """Per-service circuit breaker settings."""

    threshold: int = _opt("threshold", _int, default=0)
    recovery_timeout_sec: int = _opt("recovery_timeout_sec", _int, default=0)


@dataclass
class LoadBalancerConfig:
    """Per-service load balancing settings."""

    algorithm: str = _opt("algorithm", _str, omitempty=True, default="")
    sticky: bool = _opt("sticky", _bool, omitempty=True, default=False)


@dataclass
class ServerConfig:
    """A single backend server."""

    url: str = _opt("url", _str, default="")
    name: str = _opt("name", _str, default="")
    weight: int = _opt("weight", _int, default=0)
    delay_ms: int = _opt("delay_ms", _int, default=0)
    health_check: HealthCheckConfig = _opt(
        "health_check", _nested(HealthCheckConfig), omitempty=True,
        default_factory=HealthCheckConfig,
    )


@dataclass
class RouterConfig:
    """A rule-based router."""

    rule: str = _opt("rule", _str, default="")
    priority: int = _opt("priority", _int, default=0)
    middlewares: List[str] = _opt("middlewares", _str_list, omitempty=True, default_factory=list)
    service: str = _opt("service", _str, default="")


@dataclass
class ServiceConfig:
    """A named backend pool with its own balancing, health and breaker settings."""

    load_balancer: Optional[LoadBalancerConfig] = _opt(
        "load_balancer", _nested(LoadBalancerConfig), omitempty=True, default=None
    )
    health_check: Optional[HealthCheckConfig] = _opt(
        "health_check", _nested(HealthCheckConfig), omitempty=True, default=None
    )
    circuit_breaker: Optional[CircuitBreakerConfig] = _opt(
        "circuit_breaker", _nested(CircuitBreakerConfig), omitempty=True, default=None
    )
    canary: bool = _opt("canary", _bool, omitempty=True, default=False)
    servers: List[ServerConfig] = _opt("servers", _list_of(ServerConfig), default_factory=list)


@dataclass
class DashboardAuth:
    """Basic authentication credentials for the dashboard; empty disables it."""

    username: str = _opt("username", _str, omitempty=True, default="")
    password: str = _opt("password", _str, omitempty=True, default="")


@dataclass
class MiddlewareConfig:
    """A named middleware instance; ``config`` holds its type-specific settings."""

    type: str = _opt("type", _str, default="")
    config: Any = _opt("config", _raw, omitempty=True, default=None)


@dataclass
class TimeoutConfig:
    """Priority-aware request timeouts in seconds."""

    high_sec: int = _opt("high_sec", _int, omitempty=True, default=0)
    medium_sec: int = _opt("medium_sec", _int, omitempty=True, default=0)
    low_sec: int = _opt("low_sec", _int, omitempty=True, default=0)


@dataclass
class TLSConfig:
    """TLS settings; plain HTTP is served unless enabled."""

    enabled: bool = _opt("enabled", _bool, omitempty=True, default=False)
    cert_file: str = _opt("cert_file", _str, omitempty=True, default="")
    key_file: str = _opt("key_file", _str, omitempty=True, default="")
    auto_generate: bool = _opt("auto_generate", _bool, omitempty=True, default=False)


@dataclass
class EntryPointConfig:
    """A named listening address served independently."""

    address: str = _opt("address", _str, default="")
    protocol: str = _opt("protocol", _str, omitempty=True, default="")
    middlewares: List[str] = _opt("middlewares", _str_list, omitempty=True, default_factory=list)
    tls: Optional[TLSConfig] = _opt("tls", _nested(TLSConfig), omitempty=True, default=None)


@dataclass
class CORSConfig:
    """CORS middleware settings."""

    allowed_origins: List[str] = _opt("allowed_origins", _str_list, omitempty=True, default_factory=list)
    allowed_methods: List[str] = _opt("allowed_methods", _str_list, omitempty=True, default_factory=list)
    allowed_headers: List[str] = _opt("allowed_headers", _str_list, omitempty=True, default_factory=list)


@dataclass
class Config:
    """The whole load balancer configuration."""

    listen_port: int = _opt("listen_port", _int, default=0)
    dashboard_port: int = _opt("dashboard_port", _int, default=0)
    servers: List[ServerConfig] = _opt("servers", _list_of(ServerConfig), default_factory=list)
    algorithm: str = _opt("algorithm", _str, default="")
    health_interval: int = _opt("health_interval_sec", _int, default=0)
    breaker_threshold: int = _opt("breaker_threshold", _int, default=0)
    breaker_timeout_sec: int = _opt("breaker_timeout_sec", _int, default=0)
    metrics_interval_sec: int = _opt("metrics_interval_sec", _int, default=0)
    max_retries: int = _opt("max_retries", _int, default=0)
    shutdown_timeout_sec: int = _opt("shutdown_timeout_sec", _int, default=0)
    rate_limit_rps: float = _opt("rate_limit_rps", _float, default=0.0)
    rate_limit_burst: int = _opt("rate_limit_burst", _int, default=0)
    per_attempt_timeout_sec: int = _opt("per_attempt_timeout_sec", _int, default=0)
    retry_backoff_ms: int = _opt("retry_backoff_ms", _int, omitempty=True, default=0)
    retry_backoff_max_ms: int = _opt("retry_backoff_max_ms", _int, omitempty=True, default=0)
    access_log_path: str = _opt("access_log_path", _str, omitempty=True, default="")
    dashboard_auth: DashboardAuth = _opt(
        "dashboard_auth", _nested(DashboardAuth), omitempty=True, default_factory=DashboardAuth
    )
    tls: TLSConfig = _opt("tls", _nested(TLSConfig), omitempty=True, default_factory=TLSConfig)
    cors: CORSConfig = _opt("cors", _nested(CORSConfig), omitempty=True, default_factory=CORSConfig)
    hot_reload: bool = _opt("hot_reload", _bool, omitempty=True, default=False)
    middlewares: Dict[str, MiddlewareConfig] = _opt(
        "middlewares", _map_of(MiddlewareConfig), omitempty=True, default_factory=dict
    )
    timeouts: TimeoutConfig = _opt(
        "timeouts", _nested(TimeoutConfig), omitempty=True, default_factory=TimeoutConfig
    )
    entrypoints: Dict[str, EntryPointConfig] = _opt(
        "entrypoints", _map_of(EntryPointConfig), omitempty=True, default_factory=dict
    )
    routers: Dict[str, RouterConfig] = _opt(
        "routers", _map_of(RouterConfig), omitempty=True, default_factory=dict
    )
    services: Dict[str, ServiceConfig] = _opt(
        "services", _map_of(ServiceConfig), omitempty=True, default_factory=dict
    )

    def to_dict(self) -> Dict[str, Any]:
        """Return the configuration as JSON-ready data using the file's key names."""
        return _encode(self)


def load(path: str | os.PathLike) -> Config:
    """Read, parse, default and validate a JSON configuration file."""
    with open(path, "rb") as handle:
        data = handle.read()
    return parse_config(data)


def parse_config(data: str | bytes) -> Config:
    """Parse JSON configuration text, apply defaults and validate it."""
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"invalid JSON: {exc}") from exc
    cfg = _build(Config, raw, "")
    apply_defaults(cfg)
    validate(cfg)
    return cfg


def _default_health(check: HealthCheckConfig, parent: HealthCheckConfig) -> None:
    if not check.path:
        check.path = parent.path
    if check.interval_sec == 0:
        check.interval_sec = parent.interval_sec
    if check.timeout_sec == 0:
        check.timeout_sec = parent.timeout_sec
    if check.expected_status == 0:
        check.expected_status = parent.expected_status


def apply_defaults(cfg: Config) -> None:
    """Fill in every unset value of ``cfg`` in place."""
    if cfg.listen_port == 0:
        cfg.listen_port = 8080
    if cfg.dashboard_port == 0:
        cfg.dashboard_port = 8081
    if cfg.health_interval == 0:
        cfg.health_interval = 5
    if cfg.breaker_threshold == 0:
        cfg.breaker_threshold = 3
    if cfg.breaker_timeout_sec == 0:
        cfg.breaker_timeout_sec = 15
    if cfg.metrics_interval_sec == 0:
        cfg.metrics_interval_sec = 10
    if not cfg.algorithm:
        cfg.algorithm = "weighted"
    if cfg.max_retries == 0:
        cfg.max_retries = 3
    if cfg.shutdown_timeout_sec == 0:
        cfg.shutdown_timeout_sec = 15
    if cfg.rate_limit_rps == 0:
        cfg.rate_limit_rps = 100.0
    if cfg.rate_limit_burst == 0:
        cfg.rate_limit_burst = 200
    if cfg.per_attempt_timeout_sec == 0:
        cfg.per_attempt_timeout_sec = 5
    if cfg.retry_backoff_ms == 0:
        cfg.retry_backoff_ms = 100
    if cfg.retry_backoff_max_ms == 0:
        cfg.retry_backoff_max_ms = 5000
    if not cfg.access_log_path:
        cfg.access_log_path = "access.log"

    if cfg.timeouts.high_sec == 0:
        cfg.timeouts.high_sec = 5
    if cfg.timeouts.medium_sec == 0:
        cfg.timeouts.medium_sec = 10
    if cfg.timeouts.low_sec == 0:
        cfg.timeouts.low_sec = 20

    log_dir = os.path.dirname(cfg.access_log_path)
    if log_dir and log_dir != ".":
        try:
            os.makedirs(log_dir, mode=0o755, exist_ok=True)
        except OSError:
            pass

    global_health = HealthCheckConfig(
        path="/health", interval_sec=cfg.health_interval, timeout_sec=2, expected_status=200
    )
    for server in cfg.servers:
        _default_health(server.health_check, global_health)

    if not cfg.services and cfg.servers:
        # The default service shares the server list with the legacy field.
        cfg.services = {"default": ServiceConfig(servers=cfg.servers)}

    for svc in cfg.services.values():
        if svc.health_check is None:
            svc.health_check = HealthCheckConfig()
        _default_health(svc.health_check, global_health)

        if svc.circuit_breaker is None:
            svc.circuit_breaker = CircuitBreakerConfig()
        if svc.circuit_breaker.threshold == 0:
            svc.circuit_breaker.threshold = cfg.breaker_threshold
        if svc.circuit_breaker.recovery_timeout_sec == 0:
            svc.circuit_breaker.recovery_timeout_sec = cfg.breaker_timeout_sec

        if svc.load_balancer is None:
            svc.load_balancer = LoadBalancerConfig()
        if not svc.load_balancer.algorithm:
            svc.load_balancer.algorithm = cfg.algorithm

        for server in svc.servers:
            if server.weight == 0:
                server.weight = 1
            _default_health(server.health_check, svc.health_check)

    if not cfg.entrypoints:
        web = EntryPointConfig(address=f":{cfg.listen_port}", protocol="http")
        dashboard = EntryPointConfig(address=f":{cfg.dashboard_port}", protocol="http")
        if cfg.tls.enabled:
            web.protocol = "https"
            web.tls = cfg.tls
        cfg.entrypoints = {"web": web, "dashboard": dashboard}

    for entry in cfg.entrypoints.values():
        if not entry.protocol:
            entry.protocol = "http"


def validate(cfg: Config) -> None:
    """Raise ConfigError if a backend URL appears in more than one service."""
    seen: Dict[str, str] = {}
    for svc_name, svc in cfg.services.items():
        for server in svc.servers:
            existing = seen.get(server.url)
            if existing is not None:
                raise ConfigError(
                    f"backend URL {server.url!r} is configured in multiple services "
                    f"({existing!r} and {svc_name!r})"
                )
            seen[server.url] = svc_name