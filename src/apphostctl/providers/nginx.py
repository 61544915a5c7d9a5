"""Nginx provider for generating and enabling per-application sites."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from pathlib import Path

from ..filesystem import HostFilesystem
from ..layout import AppLayout, VhostMode
from ..runtime import RuntimeVersion
from ..templates import TemplateEngine

_UNSAFE_DOMAIN_RE = re.compile(r"[\s;{}\"'#\\]")


class NginxError(RuntimeError):
    """Raised when an nginx site cannot be generated."""


@dataclass(frozen=True, slots=True)
class VhostContext:
    """Values interpolated into an nginx site template."""

    domain: str
    web_root: str
    socket_path: str
    error_log: str
    access_log: str


def validate_server_name(domain: str) -> str:
    """Return *domain* when it is safe to interpolate as one nginx token."""
    if not domain:
        raise NginxError("Domain must be a non-empty string.")
    if _UNSAFE_DOMAIN_RE.search(domain):
        raise NginxError(
            f"Domain {domain!r} must be a single token without whitespace, quotes, "
            "braces, '#', ';' or backslashes."
        )
    return domain


def template_name(mode: VhostMode) -> str:
    """Return the built-in template used for *mode*."""
    return f"nginx/{mode.value}.conf.j2"


def generate_vhost(
    app_name: str,
    version: RuntimeVersion,
    domain: str,
    *,
    mode: VhostMode = VhostMode.FRONT_CONTROLLER,
    layout: AppLayout | None = None,
    log_dir: Path = Path("/var/log/nginx"),
    templates: TemplateEngine | None = None,
) -> str:
    """Render the nginx server block for *app_name*.

    Deterministic for a given name, version, domain and mode. Paths default to
    the stock Debian layout unless *layout* is supplied.
    """
    layout = layout or AppLayout(name=app_name, version=version)
    templates = templates or TemplateEngine.with_overrides(None)
    context = VhostContext(
        domain=validate_server_name(domain),
        web_root=str(layout.web_root(mode)),
        socket_path=str(layout.socket_path),
        error_log=str(log_dir / f"{app_name}_error.log"),
        access_log=str(log_dir / f"{app_name}_access.log"),
    )
    return templates.render_to_string(template_name(mode), asdict(context))


@dataclass(slots=True)
class NginxProvider:
    """Write and enable nginx site configurations for applications."""

    templates: TemplateEngine
    filesystem: HostFilesystem
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    log_dir: Path = Path("/var/log/nginx")

    def site_path(self, app_name: str) -> Path:
        """Return the path to the site configuration in sites-available."""
        return self.sites_available / app_name

    def enabled_path(self, app_name: str) -> Path:
        """Return the path of the enabling symlink in sites-enabled."""
        return self.sites_enabled / app_name

    def generate(self, layout: AppLayout, domain: str, mode: VhostMode) -> str:
        """Render the site for the application described by *layout*."""
        return generate_vhost(
            layout.name,
            layout.version,
            domain,
            mode=mode,
            layout=layout,
            log_dir=self.log_dir,
            templates=self.templates,
        )

    def write_site(self, app_name: str, content: str) -> Path:
        """Write *content* to sites-available, replacing any previous site."""
        path = self.site_path(app_name)
        self.filesystem.write_text(path, content)
        return path

    def enable(self, app_name: str) -> Path:
        """Enable the site by linking it into sites-enabled."""
        target = self.enabled_path(app_name)
        self.filesystem.symlink(self.site_path(app_name), target)
        return target

    def is_enabled(self, app_name: str) -> bool:
        """Return True when the enabling symlink (or any file) already exists."""
        return self.filesystem.exists(self.enabled_path(app_name))


__all__ = [
    "NginxError",
    "NginxProvider",
    "VhostContext",
    "generate_vhost",
    "template_name",
    "validate_server_name",
]
