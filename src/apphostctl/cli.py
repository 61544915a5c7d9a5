"""Typer-powered command line for ``apphostctl``.

``apphostctl create NAME DOMAIN`` provisions a system account, web directory,
PHP-FPM pool and nginx site for one application. Omitting ``DOMAIN`` runs the
reduced variant that only prepares the account, directories and worker pool.
"""
from __future__ import annotations

import json
import shlex
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import NoReturn

import typer
from jinja2 import TemplateError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .executor import CommandError, CommandExecutor, detect_privileged
from .exit_codes import ExitCode
from .layout import VhostMode
from .logging import OperationScope, StructuredLogger
from .pipeline import (
    PipelineOptions,
    PipelineResult,
    PreconditionError,
    ProvisioningPipeline,
    StepOutcome,
    ValidationError,
)
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to apphostctl's YAML config file.",
)

MODE_OPTION = typer.Option(
    None,
    "--mode",
    case_sensitive=False,
    help="nginx site layout (defaults to the configured vhost_mode).",
)

SSH_KEYS_OPTION = typer.Option(
    None,
    "--ssh-keys/--no-ssh-keys",
    help="Copy the invoking operator's authorized_keys to the new account.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Print the privileged commands instead of running them.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision isolated PHP application hosting on a shared Linux host.

        Each application gets its own system account, web directory, PHP-FPM
        pool bound to a dedicated socket and, when a domain is supplied, an
        nginx site wired to that socket.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the apphostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"apphostctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _render_step(outcome: StepOutcome) -> None:
    description = escape(outcome.description)
    detail = escape(outcome.detail)
    if outcome.status == "success":
        console.print(f"{description}... [green]OK[/green]")
    elif outcome.status == "skipped":
        console.print(f"[yellow]{detail} Skipping.[/yellow]")
    elif outcome.status == "warning":
        console.print(f"[yellow]Warning:[/yellow] {description}: {detail}")
    else:
        console.print(f"{description}... [red]FAILED[/red]")


def _resolve_options(
    config: AppConfig,
    mode: VhostMode | None,
    ssh_keys: bool | None,
) -> PipelineOptions:
    options = PipelineOptions.from_config(config)
    if mode is not None:
        options = replace(options, vhost_mode=mode)
    if ssh_keys is not None:
        options = replace(options, ssh_keys=ssh_keys)
    return options


def _report_dry_run(executor: CommandExecutor) -> None:
    console.print(
        f"[yellow]Dry run[/yellow]: {len(executor.history)} command(s) would be executed:"
    )
    for command in executor.history:
        console.print(f"  {escape(shlex.join(command))}")


def _report_completion(result: PipelineResult) -> None:
    target = result.identity.domain or result.identity.name
    console.print(f"[green]Application setup complete for {escape(target)}.[/green]")
    if result.options.nginx_site and result.options.vhost_mode is VhostMode.FRONT_CONTROLLER:
        console.print(
            f"Note: nginx serves from '{result.web_root}'. Your deployment tool is "
            "responsible for managing the 'current' symlink."
        )


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the application and its system account."),
    domain: str | None = typer.Argument(
        None,
        help="Domain served by the nginx site; omit to provision only the PHP-FPM pool.",
    ),
    mode: VhostMode | None = MODE_OPTION,
    ssh_keys: bool | None = SSH_KEYS_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Create the account, directories, PHP-FPM pool and nginx site for an application."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    options = _resolve_options(config, mode, ssh_keys)
    privileged = detect_privileged()

    with runtime.logger.operation(
        "create",
        args={
            "name": name,
            "domain": domain,
            "mode": options.vhost_mode.value,
            "ssh_keys": options.ssh_keys,
            "dry_run": dry_run,
            "privileged": privileged,
        },
        target={"kind": "application", "name": name},
    ) as op:

        def _observe(outcome: StepOutcome) -> None:
            _render_step(outcome)
            op.add_step(outcome.name, status=outcome.status, detail=outcome.detail)

        executor = CommandExecutor(
            privileged=privileged,
            escalation_bin=config.sudo_bin,
            dry_run=dry_run,
        )
        pipeline = ProvisioningPipeline.from_config(
            config,
            executor,
            templates=runtime.templates,
            options=options,
            observer=_observe,
        )

        try:
            result = pipeline.create_application(name, domain)
        except ValidationError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except PreconditionError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        except CommandError as exc:
            _command_error(
                op,
                str(exc),
                rc=ExitCode.PROVIDER,
                errors=[exc.command_line, exc.stderr.strip() or f"exit {exc.returncode}"],
            )
        except OSError as exc:
            _command_error(
                op,
                f"Filesystem error provisioning '{name}': {exc}",
                rc=ExitCode.ENVIRONMENT,
            )
        except TemplateError as exc:
            _command_error(
                op,
                f"Template error provisioning '{name}': {exc}",
                rc=ExitCode.ENVIRONMENT,
            )

        if dry_run:
            _report_dry_run(executor)
        else:
            _report_completion(result)

        context = {
            "php_version": str(result.version),
            "pool_config": str(result.layout.pool_config),
            "socket": str(result.layout.socket_path),
            "web_root": result.web_root,
        }
        if result.warnings:
            op.warning(
                "Application provisioned with warnings.",
                warnings=result.warnings,
                changed=result.changed,
                context=context,
            )
        else:
            op.success("Application provisioned.", changed=result.changed, context=context)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
