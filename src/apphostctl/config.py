"""Configuration loader for apphostctl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/apphostctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``APPHOSTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export APPHOSTCTL_PHP__LISTEN_OWNER=nginx
    export APPHOSTCTL_SSH_KEYS=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally; PHP version keys are kept verbatim because ``8.10`` is not a
float. The resulting configuration is exposed as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from .runtime import RuntimeVersion

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - surfaced as a clear runtime error
    raise RuntimeError(
        "PyYAML is required to load apphostctl configuration. Install with "
        "`pip install apphostctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "APPHOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
VERBATIM_ENV_PATHS = {("php", "version"), ("php", "fallback_version")}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PhpConfig:
    """PHP-FPM locations and pool defaults."""

    conf_root: Path = Path("/etc/php")
    run_dir: Path = Path("/run/php")
    binary: str = "php"
    version: str | None = None
    fallback_version: str = "8.2"
    listen_owner: str = "www-data"
    listen_group: str = "www-data"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "conf_root": str(self.conf_root),
            "run_dir": str(self.run_dir),
            "binary": self.binary,
            "version": self.version,
            "fallback_version": self.fallback_version,
            "listen_owner": self.listen_owner,
            "listen_group": self.listen_group,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Nginx site directories and service name."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    log_dir: Path = Path("/var/log/nginx")
    service: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "log_dir": str(self.log_dir),
            "service": self.service,
        }


@dataclass(frozen=True)
class AccountsConfig:
    """Attributes of the per-application system account."""

    shell: str = "/bin/false"
    home_root: Path = Path("/home")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"shell": self.shell, "home_root": str(self.home_root)}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for apphostctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    www_root: Path
    sudo_bin: str
    vhost_mode: str
    ssh_keys: bool
    php: PhpConfig
    nginx: NginxConfig
    accounts: AccountsConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "www_root": str(self.www_root),
            "sudo_bin": self.sudo_bin,
            "vhost_mode": self.vhost_mode,
            "ssh_keys": self.ssh_keys,
            "php": self.php.to_dict(),
            "nginx": self.nginx.to_dict(),
            "accounts": self.accounts.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/apphostctl/config.yml",
    "logs_dir": "/var/log/apphostctl",
    "templates_dir": "/etc/apphostctl/templates",
    "www_root": "/var/www",
    "sudo_bin": "sudo",
    "vhost_mode": "front-controller",
    "ssh_keys": True,
    "php": {
        "conf_root": "/etc/php",
        "run_dir": "/run/php",
        "binary": "php",
        "version": None,
        "fallback_version": "8.2",
        "listen_owner": "www-data",
        "listen_group": "www-data",
    },
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "log_dir": "/var/log/nginx",
        "service": "nginx",
    },
    "accounts": {
        "shell": "/bin/false",
        "home_root": "/home",
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_VHOST_MODES = {"front-controller", "direct-root"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    vhost_mode = raw.get("vhost_mode")
    if vhost_mode is not None and str(vhost_mode) not in ALLOWED_VHOST_MODES:
        allowed_modes = ", ".join(sorted(ALLOWED_VHOST_MODES))
        raise ConfigError(f"Unsupported vhost_mode '{vhost_mode}'. Allowed: {allowed_modes}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    php_mapping = _as_dict(raw.get("php"), "php")
    php = PhpConfig(
        conf_root=_to_path(php_mapping.get("conf_root", "/etc/php")),
        run_dir=_to_path(php_mapping.get("run_dir", "/run/php")),
        binary=_expect_non_empty_str(php_mapping.get("binary", "php"), "php.binary"),
        version=_expect_version(php_mapping.get("version"), "php.version"),
        fallback_version=_expect_version(
            php_mapping.get("fallback_version", "8.2"), "php.fallback_version"
        )
        or "8.2",
        listen_owner=_expect_non_empty_str(
            php_mapping.get("listen_owner", "www-data"), "php.listen_owner"
        ),
        listen_group=_expect_non_empty_str(
            php_mapping.get("listen_group", "www-data"), "php.listen_group"
        ),
    )

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        log_dir=_to_path(nginx_mapping.get("log_dir", "/var/log/nginx")),
        service=_expect_non_empty_str(nginx_mapping.get("service", "nginx"), "nginx.service"),
    )

    accounts_mapping = _as_dict(raw.get("accounts"), "accounts")
    accounts = AccountsConfig(
        shell=_expect_non_empty_str(accounts_mapping.get("shell", "/bin/false"), "accounts.shell"),
        home_root=_to_path(accounts_mapping.get("home_root", "/home")),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        www_root=_to_path(raw.get("www_root")),
        sudo_bin=_expect_non_empty_str(raw.get("sudo_bin", "sudo"), "sudo_bin"),
        vhost_mode=str(raw.get("vhost_mode", "front-controller")),
        ssh_keys=_expect_bool(raw.get("ssh_keys", True), "ssh_keys"),
        php=php,
        nginx=nginx,
        accounts=accounts,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in VERBATIM_ENV_PATHS:
            _assign_nested(overrides, path_segments, value.strip())
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty_str(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text:
        raise ConfigError(f"{key} must be a non-empty string.")
    return text


def _expect_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {key} to be a boolean. Got {value!r}.")


def _expect_version(value: object, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        raise ConfigError(f"{key} must be a quoted string such as '8.2'. Got {value!r}.")
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"Expected {key} to be a version string. Got {value!r}.")
    text = str(value).strip()
    if not text:
        return None
    try:
        RuntimeVersion.parse(text)
    except ValueError as exc:
        raise ConfigError(f"{key} must look like '8.2'. Got {text!r}.") from exc
    return text


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AccountsConfig",
    "AppConfig",
    "ConfigError",
    "NginxConfig",
    "PhpConfig",
    "SystemdConfig",
    "load_config",
]
