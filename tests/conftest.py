"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from types import SimpleNamespace

import pytest

from apphostctl import probes
from apphostctl.config import AppConfig, load_config
from apphostctl.executor import CommandExecutor

POOL_TEMPLATE = """\
; Start a new pool named 'www'.
[www]

; Unix user/group of processes
user = www-data
group = www-data

; The address on which to accept FastCGI requests.
listen = /run/php/php8.2-fpm.sock

; Set permissions for unix socket, if one is used.
;listen.owner = www-data
;listen.group = www-data
;listen.mode = 0660

pm = dynamic
pm.max_children = 5
"""


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeHost:
    """Emulate the external commands issued by the pipeline against ``tmp_path``.

    ``useradd``/``id`` operate on an in-memory account set, file commands act on
    the real temporary filesystem, and service commands are recorded only.
    """

    def __init__(
        self,
        *,
        users: Sequence[str] = (),
        php_version: str | None = "8.2",
        fail_on: Sequence[str] | None = None,
    ) -> None:
        """Initialise the fake host state."""
        self.users = set(users)
        self.php_version = php_version
        self.fail_on = tuple(fail_on) if fail_on else None
        self.calls: list[list[str]] = []
        self.inputs: dict[str, str] = {}

    def __call__(
        self,
        command: list[str],
        input_text: str | None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *command* against the emulated host."""
        self.calls.append(list(command))
        argv = command[1:] if command[0] == "sudo" else command
        if self.fail_on and tuple(argv[: len(self.fail_on)]) == self.fail_on:
            return self._result(command, 1, stderr="simulated failure")

        program, *args = argv
        if program == "id":
            if args[-1] in self.users:
                return self._result(command, 0, stdout="1001\n")
            return self._result(command, 1, stderr=f"id: '{args[-1]}': no such user")
        if program == "php":
            if self.php_version is None:
                return self._result(command, 127, stderr="php: not found")
            return self._result(command, 0, stdout=self.php_version)
        if program == "useradd":
            if args[-1] in self.users:
                return self._result(command, 9, stderr=f"useradd: user '{args[-1]}' already exists")
            self.users.add(args[-1])
        elif program == "mkdir":
            Path(args[-1]).mkdir(parents=True, exist_ok=True)
        elif program == "tee":
            Path(args[-1]).write_text(input_text or "", encoding="utf-8")
            self.inputs[args[-1]] = input_text or ""
        elif program == "mv":
            Path(args[-2]).replace(args[-1])
        elif program == "rm":
            Path(args[-1]).unlink(missing_ok=True)
        elif program == "ln":
            link = Path(args[-1])
            if link.exists() or link.is_symlink():
                return self._result(command, 1, stderr=f"ln: failed to create symbolic link '{link}': File exists")
            link.symlink_to(args[-2])
        return self._result(command, 0)

    def programs(self) -> list[str]:
        """Return the program name of every call, ignoring ``sudo``."""
        return [call[1] if call[0] == "sudo" else call[0] for call in self.calls]

    def mutations(self) -> list[list[str]]:
        """Return calls other than the read-only ``id``/``php`` probes."""
        return [
            call
            for call in self.calls
            if (call[1] if call[0] == "sudo" else call[0]) not in {"id", "php"}
        ]

    @staticmethod
    def _result(
        command: list[str],
        returncode: int,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def fake_host(monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Route every executor subprocess call through a :class:`FakeHost`."""
    host = FakeHost()

    def fake_execute(
        self: CommandExecutor,
        command: list[str],
        input_text: str | None,
    ) -> subprocess.CompletedProcess[str]:
        return host(command, input_text)

    monkeypatch.setattr(CommandExecutor, "_execute", fake_execute)
    return host


def make_config(tmp_path: Path, **overrides: object) -> AppConfig:
    """Return a config whose host roots all live under *tmp_path*."""
    base: dict[str, object] = {
        "logs_dir": str(tmp_path / "log" / "apphostctl"),
        "templates_dir": str(tmp_path / "etc" / "apphostctl" / "templates"),
        "www_root": str(tmp_path / "var" / "www"),
        "php": {"conf_root": str(tmp_path / "etc" / "php")},
        "nginx": {
            "sites_available": str(tmp_path / "etc" / "nginx" / "sites-available"),
            "sites_enabled": str(tmp_path / "etc" / "nginx" / "sites-enabled"),
        },
        "accounts": {"home_root": str(tmp_path / "home")},
    }
    base.update(overrides)
    return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=base)


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    """Create the directories a stock PHP-FPM + nginx host ships with."""
    pool_dir = tmp_path / "etc" / "php" / "8.2" / "fpm" / "pool.d"
    pool_dir.mkdir(parents=True)
    (pool_dir / "www.conf").write_text(POOL_TEMPLATE, encoding="utf-8")
    (tmp_path / "etc" / "nginx" / "sites-available").mkdir(parents=True)
    (tmp_path / "etc" / "nginx" / "sites-enabled").mkdir(parents=True)
    (tmp_path / "home").mkdir()
    return tmp_path


@pytest.fixture
def config(host_root: Path) -> AppConfig:
    """Return a config rooted at the prepared fake host."""
    return make_config(host_root)


@pytest.fixture
def operator_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Provide an operator account with authorized keys visible via ``pwd``."""
    home = tmp_path / "operator"
    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(parents=True)
    (ssh_dir / "authorized_keys").write_text("ssh-ed25519 AAAAC3Nz operator@laptop\n")
    entry = SimpleNamespace(pw_name="operator", pw_dir=str(home))
    monkeypatch.setattr(probes.pwd, "getpwnam", lambda name: entry)
    monkeypatch.setattr(probes.pwd, "getpwuid", lambda uid: entry)
    return home
