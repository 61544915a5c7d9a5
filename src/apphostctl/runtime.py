"""PHP runtime version detection."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .executor import CommandExecutor

VERSION_PROBE_CODE = "echo PHP_MAJOR_VERSION . '.' . PHP_MINOR_VERSION;"
_VERSION_DIR_RE = re.compile(r"\d+\.\d+")


@dataclass(frozen=True, slots=True, order=True)
class RuntimeVersion:
    """Major/minor pair identifying the active PHP runtime."""

    major: int
    minor: int

    def __str__(self) -> str:
        """Return the ``major.minor`` form used in paths and service names."""
        return f"{self.major}.{self.minor}"

    @classmethod
    def parse(cls, value: str) -> RuntimeVersion:
        """Parse ``8.2`` or ``8.2.7`` into a :class:`RuntimeVersion`."""
        try:
            parsed = Version(value.strip())
        except InvalidVersion as exc:
            raise ValueError(f"Invalid PHP version: {value!r}.") from exc
        return cls(parsed.major, parsed.minor)


@dataclass(frozen=True, slots=True)
class RuntimeDetection:
    """Detected version and the source it was derived from."""

    version: RuntimeVersion
    source: str


def detect_runtime_version(
    executor: CommandExecutor,
    *,
    php_binary: str = "php",
    conf_root: Path = Path("/etc/php"),
    configured: str | None = None,
    fallback: str = "8.2",
) -> RuntimeDetection:
    """Resolve the PHP version once for a provisioning run.

    Resolution order: explicit configuration, the ``php`` CLI, the newest
    ``<major>.<minor>`` directory holding an FPM pool directory under
    *conf_root*, then *fallback*. This never raises for a missing runtime.
    """
    if configured:
        return RuntimeDetection(RuntimeVersion.parse(configured), "config")

    result = executor.probe([php_binary, "-r", VERSION_PROBE_CODE])
    if result.returncode == 0:
        try:
            return RuntimeDetection(RuntimeVersion.parse(result.stdout or ""), "php-cli")
        except ValueError:
            pass

    installed = installed_versions(conf_root)
    if installed:
        return RuntimeDetection(installed[-1], "conf-root")

    return RuntimeDetection(RuntimeVersion.parse(fallback), "fallback")


def installed_versions(conf_root: Path) -> list[RuntimeVersion]:
    """Return FPM-enabled versions found under *conf_root*, oldest first."""
    if not conf_root.is_dir():
        return []
    versions: list[RuntimeVersion] = []
    for child in conf_root.iterdir():
        if not _VERSION_DIR_RE.fullmatch(child.name):
            continue
        if not (child / "fpm" / "pool.d").is_dir():
            continue
        versions.append(RuntimeVersion.parse(child.name))
    return sorted(versions)


__all__ = [
    "RuntimeDetection",
    "RuntimeVersion",
    "VERSION_PROBE_CODE",
    "detect_runtime_version",
    "installed_versions",
]
