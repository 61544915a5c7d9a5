"""Provider interfaces for apphostctl."""
from __future__ import annotations

from .nginx import NginxError, NginxProvider, VhostContext, generate_vhost
from .systemd import SystemdProvider

__all__ = [
    "NginxError",
    "NginxProvider",
    "SystemdProvider",
    "VhostContext",
    "generate_vhost",
]
