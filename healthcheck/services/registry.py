"""Service registry — loads healthcheck.yaml and provides typed models.

Single source of truth for service definitions and alerting defaults.
The supervisor, the API and the CLI all consume this. Parsing validates the
whole document up front so a bad configuration is rejected before anything
running is touched.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..health.engine import CHECK_TYPES, CertificateCheck, Check, HttpCheck, TcpPingCheck

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration document is malformed."""


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Defaults:
    """Process-wide scheduling and alerting defaults (intervals in ms)."""

    check_interval_success: int
    check_interval_fail: int
    notify_failures: int
    rereport: int


@dataclass(frozen=True)
class Overrides:
    """Optional per-service replacements for ``Defaults``."""

    check_interval_success: int | None = None
    check_interval_fail: int | None = None
    notify_failures: int | None = None
    rereport: int | None = None


@dataclass(frozen=True)
class Policy:
    """Defaults and overrides resolved for one service."""

    check_interval_success: int
    check_interval_fail: int
    notify_failures: int
    rereport: int


@dataclass(frozen=True)
class ServiceDefinition:
    """A monitored service as declared in the config file."""

    id: str
    name: str
    check: Check
    description: str = ""
    enabled: bool = True
    overrides: Overrides = field(default_factory=Overrides)


@dataclass(frozen=True)
class MonitorConfig:
    """The whole services file."""

    telegram_token: str
    telegram_chat_id: int
    defaults: Defaults
    services: dict[str, ServiceDefinition] = field(default_factory=dict)
    web_port: int | None = None

    def enabled_services(self) -> list[ServiceDefinition]:
        return [s for s in self.services.values() if s.enabled]


def resolve_policy(overrides: Overrides, defaults: Defaults) -> Policy:
    """Override value if present, else the process-wide default."""

    def pick(name: str) -> int:
        value = getattr(overrides, name)
        return value if value is not None else getattr(defaults, name)

    return Policy(
        check_interval_success=pick("check_interval_success"),
        check_interval_fail=pick("check_interval_fail"),
        notify_failures=pick("notify_failures"),
        rereport=pick("rereport"),
    )


# ── Loading / saving ─────────────────────────────────────────────────────────


def load_config(path: Path) -> MonitorConfig:
    """Read and validate a YAML services file."""
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    config = parse_config(raw)
    logger.info("Loaded %d services from %s", len(config.services), path)
    return config


def save_config(config: MonitorConfig, path: Path) -> None:
    """Write the configuration back as YAML."""
    Path(path).write_text(
        yaml.safe_dump(config_to_dict(config), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Configuration written to %s", path)


# ── Parsers ──────────────────────────────────────────────────────────────────


def parse_config(raw: Any) -> MonitorConfig:
    """Build a ``MonitorConfig`` from a decoded YAML/JSON document."""
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration must be a mapping")

    for key in ("telegram_token", "telegram_chat_id"):
        if key not in raw:
            raise ConfigError(f"Missing required key '{key}'")

    defaults = Defaults(
        check_interval_success=_positive_int(raw, "check_interval_success", required=True),
        check_interval_fail=_positive_int(raw, "check_interval_fail", required=True),
        notify_failures=_positive_int(raw, "notify_failures", required=True),
        rereport=_positive_int(raw, "rereport", required=True),
    )

    raw_services = raw.get("services") or {}
    services: dict[str, ServiceDefinition] = {}
    if isinstance(raw_services, Mapping):
        entries = [(str(sid), entry) for sid, entry in raw_services.items()]
    elif isinstance(raw_services, list):
        entries = [(_entry_id(entry), entry) for entry in raw_services]
    else:
        raise ConfigError("'services' must be a mapping of id -> service")

    for service_id, entry in entries:
        if service_id in services:
            raise ConfigError(f"Duplicate service id '{service_id}'")
        services[service_id] = _parse_service(service_id, entry)

    web_port = raw.get("web_port")
    if web_port is not None:
        web_port = _port(web_port, "web_port")

    try:
        chat_id = int(raw["telegram_chat_id"])
    except (TypeError, ValueError) as e:
        raise ConfigError("'telegram_chat_id' must be an integer") from e

    return MonitorConfig(
        telegram_token=str(raw["telegram_token"] or ""),
        telegram_chat_id=chat_id,
        defaults=defaults,
        services=services,
        web_port=web_port,
    )


def parse_check(raw: Any, where: str = "check") -> Check:
    """Parse ``{http: {...}}`` / ``{certificate: {...}}`` / ``{tcpPing: {...}}``."""
    if not isinstance(raw, Mapping) or len(raw) != 1:
        raise ConfigError(f"{where}: expected exactly one of {sorted(CHECK_TYPES)}")

    kind, params = next(iter(raw.items()))
    if kind not in CHECK_TYPES:
        raise ConfigError(f"{where}: unknown check type '{kind}'")
    if not isinstance(params, Mapping):
        raise ConfigError(f"{where}.{kind}: parameters must be a mapping")

    ctx = f"{where}.{kind}"
    if kind == HttpCheck.kind:
        url = params.get("url")
        if not url:
            raise ConfigError(f"{ctx}: 'url' is required")
        return HttpCheck(
            url=str(url),
            expected_status=_positive_int(params, "expected_status", ctx) or 200,
            timeout_ms=_positive_int(params, "timeout_ms", ctx) or 10_000,
        )

    host = params.get("host")
    if not host:
        raise ConfigError(f"{ctx}: 'host' is required")

    if kind == TcpPingCheck.kind:
        if params.get("port") is None:
            raise ConfigError(f"{ctx}: 'port' is required")
        return TcpPingCheck(
            host=str(host),
            port=_port(params["port"], f"{ctx}.port"),
            timeout_ms=_positive_int(params, "timeout_ms", ctx) or 1_000,
        )

    days = params.get("days_before_expiry")
    if days is not None and (not isinstance(days, int) or isinstance(days, bool) or days < 0):
        raise ConfigError(f"{ctx}: 'days_before_expiry' must be a non-negative integer")
    return CertificateCheck(
        host=str(host),
        port=_port(params.get("port", 443), f"{ctx}.port"),
        days_before_expiry=30 if days is None else days,
        timeout_ms=_positive_int(params, "timeout_ms", ctx) or 10_000,
    )


def _parse_service(service_id: str, raw: Any) -> ServiceDefinition:
    where = f"services.{service_id}"
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where}: must be a mapping")
    if "check" not in raw:
        raise ConfigError(f"{where}: 'check' is required")

    return ServiceDefinition(
        id=service_id,
        name=str(raw.get("name") or service_id),
        description=str(raw.get("description") or ""),
        enabled=_bool(raw, "enabled", where, default=True),
        check=parse_check(raw["check"], f"{where}.check"),
        overrides=Overrides(
            check_interval_success=_positive_int(raw, "check_interval_success", where),
            check_interval_fail=_positive_int(raw, "check_interval_fail", where),
            notify_failures=_positive_int(raw, "notify_failures", where),
            rereport=_positive_int(raw, "rereport", where),
        ),
    )


def _entry_id(entry: Any) -> str:
    if not isinstance(entry, Mapping) or not entry.get("id"):
        raise ConfigError("services: list entries need an 'id'")
    return str(entry["id"])


def _positive_int(
    raw: Mapping[str, Any], key: str, where: str = "", required: bool = False,
) -> int | None:
    value = raw.get(key)
    label = f"{where}.{key}" if where else key
    if value is None:
        if required:
            raise ConfigError(f"Missing required key '{label}'")
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"'{label}' must be a positive integer, got {value!r}")
    return value


def _bool(raw: Mapping[str, Any], key: str, where: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{where}.{key}' must be true or false, got {value!r}")
    return value


def _port(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 65536:
        raise ConfigError(f"'{label}' must be a TCP port, got {value!r}")
    return value


# ── Serializers ──────────────────────────────────────────────────────────────


def check_to_dict(check: Check) -> dict[str, Any]:
    if isinstance(check, HttpCheck):
        params: dict[str, Any] = {
            "url": check.url,
            "expected_status": check.expected_status,
            "timeout_ms": check.timeout_ms,
        }
    elif isinstance(check, TcpPingCheck):
        params = {"host": check.host, "port": check.port, "timeout_ms": check.timeout_ms}
    else:
        params = {
            "host": check.host,
            "port": check.port,
            "days_before_expiry": check.days_before_expiry,
            "timeout_ms": check.timeout_ms,
        }
    return {check.kind: params}


def _service_to_dict(s: ServiceDefinition) -> dict[str, Any]:
    data: dict[str, Any] = {
        "enabled": s.enabled,
        "name": s.name,
        "description": s.description,
    }
    for key in ("check_interval_success", "check_interval_fail", "notify_failures", "rereport"):
        value = getattr(s.overrides, key)
        if value is not None:
            data[key] = value
    data["check"] = check_to_dict(s.check)
    return data


def config_to_dict(config: MonitorConfig) -> dict[str, Any]:
    """Serialize the configuration for the API and for saving."""
    data: dict[str, Any] = {
        "telegram_token": config.telegram_token,
        "telegram_chat_id": config.telegram_chat_id,
        "check_interval_success": config.defaults.check_interval_success,
        "check_interval_fail": config.defaults.check_interval_fail,
        "notify_failures": config.defaults.notify_failures,
        "rereport": config.defaults.rereport,
        "services": {sid: _service_to_dict(s) for sid, s in config.services.items()},
    }
    if config.web_port is not None:
        data["web_port"] = config.web_port
    return data
