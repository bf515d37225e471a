from .registry import (
    ConfigError,
    Defaults,
    MonitorConfig,
    Overrides,
    Policy,
    ServiceDefinition,
    config_to_dict,
    load_config,
    parse_config,
    resolve_policy,
    save_config,
)

__all__ = [
    "ConfigError",
    "Defaults",
    "MonitorConfig",
    "Overrides",
    "Policy",
    "ServiceDefinition",
    "config_to_dict",
    "load_config",
    "parse_config",
    "resolve_policy",
    "save_config",
]
