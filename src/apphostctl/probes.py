"""Side-effect free host probes gating provisioning steps."""
from __future__ import annotations

import os
import pwd
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .executor import CommandExecutor
from .providers.nginx import NginxProvider


@dataclass(slots=True)
class HostProbes:
    """Answer "is this step already satisfied?" for the pipeline.

    Probes never raise for a negative answer and never mutate the host. They
    do not detect drift: an existing account with a different shell or home
    is accepted as-is.
    """

    executor: CommandExecutor
    nginx: NginxProvider
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    uid: int | None = None

    def user_exists(self, name: str) -> bool:
        """Return True when ``id -u <name>`` resolves the account."""
        result = self.executor.probe(["id", "-u", name])
        return result.returncode == 0

    def site_enabled(self, name: str) -> bool:
        """Return True when the sites-enabled entry for *name* exists."""
        return self.nginx.is_enabled(name)

    def invoking_user_home(self) -> Path | None:
        """Return the home directory of the operator who invoked the tool.

        Under ``sudo`` this is ``SUDO_USER``'s home rather than root's.
        """
        sudo_user = self.environ.get("SUDO_USER")
        try:
            if sudo_user:
                entry = pwd.getpwnam(sudo_user)
            else:
                entry = pwd.getpwuid(self.uid if self.uid is not None else os.getuid())
        except KeyError:
            return None
        if not entry.pw_dir:
            return None
        return Path(entry.pw_dir)


__all__ = ["HostProbes"]
