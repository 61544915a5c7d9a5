"""Path conventions for a provisioned application."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .runtime import RuntimeVersion

if TYPE_CHECKING:
    from .config import AppConfig


class VhostMode(str, Enum):
    """How the nginx site maps requests onto the application tree."""

    DIRECT_ROOT = "direct-root"
    FRONT_CONTROLLER = "front-controller"


@dataclass(frozen=True, slots=True)
class AppLayout:
    """Every host path derived from an application name and PHP version."""

    name: str
    version: RuntimeVersion
    www_root: Path = Path("/var/www")
    php_conf_root: Path = Path("/etc/php")
    php_run_dir: Path = Path("/run/php")
    home_root: Path = Path("/home")

    @classmethod
    def from_config(cls, config: AppConfig, name: str, version: RuntimeVersion) -> AppLayout:
        """Build the layout for *name* using the configured roots."""
        return cls(
            name=name,
            version=version,
            www_root=config.www_root,
            php_conf_root=config.php.conf_root,
            php_run_dir=config.php.run_dir,
            home_root=config.accounts.home_root,
        )

    @property
    def base_dir(self) -> Path:
        """Return ``/var/www/<name>``."""
        return self.www_root / self.name

    def web_root(self, mode: VhostMode) -> Path:
        """Return the document root served by nginx in *mode*."""
        if mode is VhostMode.FRONT_CONTROLLER:
            return self.base_dir / "current" / "public"
        return self.base_dir / "public"

    def provisioned_dir(self, mode: VhostMode) -> Path:
        """Return the directory the pipeline creates.

        In front-controller mode ``current`` is owned by the deployment tool,
        so only the base directory is created.
        """
        if mode is VhostMode.FRONT_CONTROLLER:
            return self.base_dir
        return self.web_root(mode)

    @property
    def pool_dir(self) -> Path:
        """Return ``/etc/php/<v>/fpm/pool.d``."""
        return self.php_conf_root / str(self.version) / "fpm" / "pool.d"

    @property
    def pool_template(self) -> Path:
        """Return the default ``www.conf`` pool the application pool derives from."""
        return self.pool_dir / "www.conf"

    @property
    def pool_config(self) -> Path:
        """Return ``/etc/php/<v>/fpm/pool.d/<name>.conf``."""
        return self.pool_dir / f"{self.name}.conf"

    @property
    def socket_path(self) -> Path:
        """Return ``/run/php/php<v>-fpm-<name>.sock``."""
        return self.php_run_dir / f"php{self.version}-fpm-{self.name}.sock"

    @property
    def fpm_service(self) -> str:
        """Return the systemd service name of the PHP-FPM master."""
        return f"php{self.version}-fpm"

    @property
    def home_dir(self) -> Path:
        """Return the account home created by ``useradd -m``."""
        return self.home_root / self.name

    @property
    def ssh_dir(self) -> Path:
        """Return the account's ``.ssh`` directory."""
        return self.home_dir / ".ssh"

    @property
    def authorized_keys(self) -> Path:
        """Return the account's ``authorized_keys`` file."""
        return self.ssh_dir / "authorized_keys"


__all__ = ["AppLayout", "VhostMode"]
