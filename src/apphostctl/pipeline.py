"""Idempotent provisioning pipeline for one PHP application.

The pipeline is a fixed, linear list of :class:`ProvisioningStep` objects.
Each step may carry a precondition that reports a skip reason when the host
already satisfies it; otherwise its effect runs. The first exception aborts
the run. Nothing is rolled back, and re-running is safe because the gated
steps skip while the configuration writers simply regenerate their files.
"""
from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Literal

from jinja2 import TemplateError

from .config import AppConfig
from .executor import CommandError, CommandExecutor
from .filesystem import HostFilesystem
from .layout import AppLayout, VhostMode
from .pool import derive_pool_config
from .probes import HostProbes
from .providers.nginx import NginxError, NginxProvider, validate_server_name
from .providers.systemd import SystemdProvider
from .runtime import RuntimeDetection, RuntimeVersion, detect_runtime_version
from .templates import TemplateEngine

ACCOUNT_NAME_RE = re.compile(r"[a-z_][a-z0-9_-]*")
MAX_ACCOUNT_NAME_LENGTH = 32


class ProvisioningError(RuntimeError):
    """Base class for fatal provisioning failures."""


class ValidationError(ProvisioningError):
    """Raised when the application name or domain is unusable."""


class PreconditionError(ProvisioningError):
    """Raised before any mutation when required host input is missing."""


def validate_app_name(name: str) -> str:
    """Return *name* when it is a valid system account name."""
    if not name:
        raise ValidationError("Application name must be a non-empty string.")
    if len(name) > MAX_ACCOUNT_NAME_LENGTH:
        raise ValidationError(
            f"Application name must be {MAX_ACCOUNT_NAME_LENGTH} characters or fewer."
        )
    if not ACCOUNT_NAME_RE.fullmatch(name):
        raise ValidationError(
            "Application name must start with a lowercase letter or underscore and "
            "contain only lowercase letters, digits, '-' and '_'."
        )
    return name


@dataclass(frozen=True, slots=True)
class ApplicationIdentity:
    """Application being provisioned; ``domain`` is only used for the nginx site."""

    name: str
    domain: str | None = None

    def __post_init__(self) -> None:
        """Reject names and domains that cannot be used safely."""
        validate_app_name(self.name)
        if self.domain is not None:
            try:
                validate_server_name(self.domain)
            except NginxError as exc:
                raise ValidationError(str(exc)) from exc


StepStatus = Literal["success", "skipped", "warning", "failed"]


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one executed step."""

    name: str
    description: str
    status: StepStatus
    detail: str = ""


@dataclass(frozen=True, slots=True)
class Advisory:
    """Non-fatal condition a step effect reports instead of plain success."""

    detail: str
    status: StepStatus = "warning"


StepEffect = Callable[[], str | Advisory | None]
StepPrecondition = Callable[[], str | None]
StepObserver = Callable[[StepOutcome], None]


@dataclass(slots=True)
class ProvisioningStep:
    """Named unit of work with an optional idempotency precondition."""

    name: str
    description: str
    effect: StepEffect
    precondition: StepPrecondition | None = None

    def execute(self) -> StepOutcome:
        """Run the step, skipping it when the precondition reports a reason."""
        if self.precondition is not None:
            reason = self.precondition()
            if reason is not None:
                return StepOutcome(self.name, self.description, "skipped", reason)
        result = self.effect()
        if isinstance(result, Advisory):
            return StepOutcome(self.name, self.description, result.status, result.detail)
        return StepOutcome(self.name, self.description, "success", result or "")


@dataclass(frozen=True, slots=True)
class PipelineOptions:
    """Optional steps and site mode for a run."""

    nginx_site: bool = True
    ssh_keys: bool = True
    vhost_mode: VhostMode = VhostMode.FRONT_CONTROLLER

    @classmethod
    def from_config(cls, config: AppConfig) -> PipelineOptions:
        """Return the extended variant configured for this host."""
        return cls(
            nginx_site=True,
            ssh_keys=config.ssh_keys,
            vhost_mode=VhostMode(config.vhost_mode),
        )

    @classmethod
    def reduced(cls) -> PipelineOptions:
        """Return the worker-pool-only variant used when no domain is given."""
        return cls(nginx_site=False, ssh_keys=False, vhost_mode=VhostMode.DIRECT_ROOT)


@dataclass(slots=True)
class RunState:
    """Values shared by the steps of one run."""

    identity: ApplicationIdentity
    options: PipelineOptions
    detection: RuntimeDetection
    layout: AppLayout
    pool_template: str | None = None


@dataclass(slots=True)
class PipelineResult:
    """Outcome of a completed run."""

    identity: ApplicationIdentity
    version: RuntimeVersion
    layout: AppLayout
    options: PipelineOptions
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Number of steps that ran to success."""
        return sum(1 for outcome in self.outcomes if outcome.status == "success")

    @property
    def warnings(self) -> list[str]:
        """Details of steps that completed with a warning."""
        return [outcome.detail for outcome in self.outcomes if outcome.status == "warning"]

    @property
    def web_root(self) -> str:
        """Document root the application is served from."""
        return str(self.layout.web_root(self.options.vhost_mode))


@dataclass(slots=True)
class ProvisioningPipeline:
    """Provision the account, directories, PHP-FPM pool and nginx site for an app."""

    config: AppConfig
    executor: CommandExecutor
    filesystem: HostFilesystem
    probes: HostProbes
    nginx: NginxProvider
    systemd: SystemdProvider
    options: PipelineOptions = field(default_factory=PipelineOptions)
    observer: StepObserver | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        executor: CommandExecutor,
        *,
        templates: TemplateEngine | None = None,
        environ: Mapping[str, str] | None = None,
        options: PipelineOptions | None = None,
        observer: StepObserver | None = None,
    ) -> ProvisioningPipeline:
        """Wire the providers for *config* around *executor*."""
        filesystem = HostFilesystem(executor)
        nginx = NginxProvider(
            templates=templates or TemplateEngine.with_overrides(config.templates_dir),
            filesystem=filesystem,
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            log_dir=config.nginx.log_dir,
        )
        probes = HostProbes(
            executor=executor,
            nginx=nginx,
            environ=dict(os.environ if environ is None else environ),
        )
        return cls(
            config=config,
            executor=executor,
            filesystem=filesystem,
            probes=probes,
            nginx=nginx,
            systemd=SystemdProvider(executor, systemctl_bin=config.systemd.systemctl_bin),
            options=options or PipelineOptions.from_config(config),
            observer=observer,
        )

    def create_application(self, name: str, domain: str | None = None) -> PipelineResult:
        """Provision *name*; without *domain* only the worker-pool steps run."""
        identity = ApplicationIdentity(name=name, domain=domain)
        options = self.options if domain is not None else PipelineOptions.reduced()
        return self.run(identity, options)

    def run(
        self,
        identity: ApplicationIdentity,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        """Execute every step in order, stopping at the first failure."""
        options = options or self.options
        if options.nginx_site and identity.domain is None:
            raise ValidationError("A domain is required when the nginx site is managed.")

        php = self.config.php
        detection = detect_runtime_version(
            self.executor,
            php_binary=php.binary,
            conf_root=php.conf_root,
            configured=php.version,
            fallback=php.fallback_version,
        )
        layout = AppLayout.from_config(self.config, identity.name, detection.version)
        state = RunState(identity=identity, options=options, detection=detection, layout=layout)
        result = PipelineResult(
            identity=identity,
            version=detection.version,
            layout=layout,
            options=options,
        )

        for step in self.build_steps(state):
            try:
                outcome = step.execute()
            except (CommandError, ProvisioningError, OSError, TemplateError) as exc:
                self._notify(
                    StepOutcome(step.name, step.description, "failed", str(exc).partition("\n")[0])
                )
                raise
            result.outcomes.append(outcome)
            self._notify(outcome)
        return result

    def build_steps(self, state: RunState) -> list[ProvisioningStep]:
        """Return the ordered steps for *state*'s options."""
        name = state.identity.name
        layout = state.layout
        steps = [
            ProvisioningStep(
                "detect-runtime",
                f"Detected PHP version {state.detection.version} ({state.detection.source})",
                partial(self._report_runtime, state),
            ),
            ProvisioningStep(
                "load-pool-template",
                f"Reading pool template {layout.pool_template}",
                partial(self._load_pool_template, state),
            ),
            ProvisioningStep(
                "ensure-user",
                f"Creating system user '{name}'",
                partial(self._create_user, state),
                precondition=partial(self._user_present, state),
            ),
        ]
        if state.options.ssh_keys:
            steps.append(
                ProvisioningStep(
                    "ensure-ssh-access",
                    "Copying SSH authorized keys",
                    partial(self._install_ssh_keys, state),
                )
            )
        steps.extend(
            [
                ProvisioningStep(
                    "ensure-directories",
                    f"Creating directory {layout.provisioned_dir(state.options.vhost_mode)}",
                    partial(self._ensure_directories, state),
                ),
                ProvisioningStep(
                    "apply-ownership",
                    "Setting directory ownership",
                    partial(self._apply_ownership, state),
                ),
                ProvisioningStep(
                    "apply-permissions",
                    "Setting directory permissions",
                    partial(self._apply_permissions, state),
                ),
                ProvisioningStep(
                    "write-pool-config",
                    f"Creating PHP-FPM pool {layout.pool_config}",
                    partial(self._write_pool_config, state),
                ),
            ]
        )
        if state.options.nginx_site:
            steps.extend(
                [
                    ProvisioningStep(
                        "write-virtual-host",
                        f"Creating nginx site {self.nginx.site_path(name)}",
                        partial(self._write_virtual_host, state),
                    ),
                    ProvisioningStep(
                        "enable-site",
                        "Enabling nginx site",
                        partial(self._enable_site, state),
                        precondition=partial(self._site_already_enabled, state),
                    ),
                    ProvisioningStep(
                        "reload-proxy",
                        "Reloading nginx",
                        self._reload_proxy,
                    ),
                ]
            )
        steps.append(
            ProvisioningStep(
                "restart-worker-pool",
                f"Restarting {layout.fpm_service}",
                partial(self._restart_worker_pool, state),
            )
        )
        return steps

    # ------------------------------------------------------------------
    def _notify(self, outcome: StepOutcome) -> None:
        if self.observer is not None:
            self.observer(outcome)

    def _report_runtime(self, state: RunState) -> str:
        return f"PHP {state.detection.version} ({state.detection.source})"

    def _load_pool_template(self, state: RunState) -> str:
        path = state.layout.pool_template
        if not self.filesystem.exists(path):
            raise PreconditionError(f"Default pool template '{path}' not found.")
        try:
            state.pool_template = self.filesystem.read_text(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise PreconditionError(f"Could not read template file '{path}': {exc}") from exc
        return str(path)

    def _user_present(self, state: RunState) -> str | None:
        name = state.identity.name
        if self.probes.user_exists(name):
            return f"User '{name}' already exists."
        return None

    def _create_user(self, state: RunState) -> str:
        name = state.identity.name
        self.executor.run(["useradd", "-m", "-s", self.config.accounts.shell, name])
        return name

    def _install_ssh_keys(self, state: RunState) -> str | Advisory:
        home = self.probes.invoking_user_home()
        if home is None:
            return Advisory("Could not determine home directory of invoking user.")
        source = home / ".ssh" / "authorized_keys"
        if not self.filesystem.exists(source):
            return Advisory(f"No SSH authorized keys found at '{source}'.")
        try:
            keys = self.filesystem.read_text(source)
        except (OSError, UnicodeDecodeError) as exc:
            return Advisory(f"Could not read authorized keys from '{source}': {exc}")

        name = state.identity.name
        layout = state.layout
        self.filesystem.make_dirs(layout.ssh_dir)
        self.filesystem.write_text(layout.authorized_keys, keys)
        self.filesystem.chmod(layout.ssh_dir, "700")
        self.filesystem.chmod(layout.authorized_keys, "600")
        self.filesystem.chown(layout.ssh_dir, name, name, recursive=True)
        return str(layout.authorized_keys)

    def _ensure_directories(self, state: RunState) -> str:
        path = state.layout.provisioned_dir(state.options.vhost_mode)
        self.filesystem.make_dirs(path)
        return str(path)

    def _apply_ownership(self, state: RunState) -> str:
        name = state.identity.name
        self.filesystem.chown(state.layout.base_dir, name, name, recursive=True)
        return f"{name}:{name} {state.layout.base_dir}"

    def _apply_permissions(self, state: RunState) -> str:
        self.filesystem.chmod(state.layout.base_dir, "755", recursive=True)
        return f"755 {state.layout.base_dir}"

    def _write_pool_config(self, state: RunState) -> str | Advisory:
        if state.pool_template is None:
            raise PreconditionError("Pool template was not loaded.")
        layout = state.layout
        rewrite = derive_pool_config(
            state.pool_template,
            state.identity.name,
            str(layout.socket_path),
            listen_owner=self.config.php.listen_owner,
            listen_group=self.config.php.listen_group,
        )
        self.filesystem.write_text(layout.pool_config, rewrite.text)
        if rewrite.unmatched:
            missing = ", ".join(rewrite.unmatched)
            return Advisory(f"{layout.pool_config} written; template lacked: {missing}")
        return str(layout.pool_config)

    def _write_virtual_host(self, state: RunState) -> str:
        domain = state.identity.domain
        if domain is None:
            raise ValidationError("A domain is required to generate the nginx site.")
        content = self.nginx.generate(state.layout, domain, state.options.vhost_mode)
        return str(self.nginx.write_site(state.identity.name, content))

    def _site_already_enabled(self, state: RunState) -> str | None:
        name = state.identity.name
        if self.probes.site_enabled(name):
            return f"Nginx site '{name}' is already enabled."
        return None

    def _enable_site(self, state: RunState) -> str:
        return str(self.nginx.enable(state.identity.name))

    def _reload_proxy(self) -> str:
        service = self.config.nginx.service
        self.systemd.reload(service)
        return service

    def _restart_worker_pool(self, state: RunState) -> str:
        service = state.layout.fpm_service
        self.systemd.restart(service)
        return service


__all__ = [
    "Advisory",
    "ApplicationIdentity",
    "PipelineOptions",
    "PipelineResult",
    "PreconditionError",
    "ProvisioningError",
    "ProvisioningPipeline",
    "ProvisioningStep",
    "RunState",
    "StepOutcome",
    "ValidationError",
    "validate_app_name",
]
