"""Systemd provider for signalling nginx and PHP-FPM."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..executor import CommandExecutor


@dataclass(slots=True)
class SystemdProvider:
    """Reload or restart host services through ``systemctl``."""

    executor: CommandExecutor
    systemctl_bin: str = "systemctl"

    def reload(self, service: str) -> subprocess.CompletedProcess[str]:
        """Ask *service* to reload its configuration without restarting."""
        return self._systemctl("reload", service)

    def restart(self, service: str) -> subprocess.CompletedProcess[str]:
        """Restart *service*."""
        return self._systemctl("restart", service)

    # ------------------------------------------------------------------
    def _systemctl(self, command: str, unit: str) -> subprocess.CompletedProcess[str]:
        return self.executor.run([self.systemctl_bin, command, unit])


__all__ = ["SystemdProvider"]
