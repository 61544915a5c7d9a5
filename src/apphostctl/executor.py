"""Command execution with an optional privilege-escalation prefix."""
from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path


class CommandError(RuntimeError):
    """Raised when an external command exits with a nonzero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "") -> None:
        """Capture the failing argv, its exit status and diagnostic output."""
        self.command = [str(part) for part in command]
        self.returncode = returncode
        self.stderr = stderr
        message = f"Error executing: '{self.command_line}'"
        detail = stderr.strip()
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)

    @property
    def command_line(self) -> str:
        """Return the failing command as a shell-quoted string."""
        return shlex.join(self.command)


def detect_privileged() -> bool:
    """Return ``True`` when the current process runs with root privileges."""
    return os.geteuid() == 0


@dataclass(slots=True)
class CommandExecutor:
    """Run argv vectors, escalating through ``sudo`` when not already root.

    The privilege mode is fixed at construction. Every mutating command goes
    through :meth:`run`, which prefixes the escalation binary uniformly when
    ``privileged`` is false. Read-only lookups use :meth:`probe` and are never
    escalated or skipped by ``dry_run``.
    """

    privileged: bool
    escalation_bin: str = "sudo"
    dry_run: bool = False
    history: list[list[str]] = field(default_factory=list)

    def wrap(self, argv: Sequence[str | Path]) -> list[str]:
        """Return *argv* as strings with the escalation prefix when required."""
        command = [str(part) for part in argv]
        if self.privileged:
            return command
        return [self.escalation_bin, *command]

    def run(
        self,
        argv: Sequence[str | Path],
        *,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *argv*, raising :class:`CommandError` on a nonzero exit."""
        command = self.wrap(argv)
        self.history.append(command)
        if self.dry_run:
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        try:
            result = self._execute(command, input_text)
        except FileNotFoundError as exc:
            raise CommandError(command, 127, str(exc)) from exc
        if result.returncode != 0:
            stderr = getattr(result, "stderr", "") or ""
            stdout = getattr(result, "stdout", "") or ""
            raise CommandError(command, result.returncode, stderr or stdout)
        return result

    def probe(self, argv: Sequence[str | Path]) -> subprocess.CompletedProcess[str]:
        """Run a side-effect free lookup and return its result without raising."""
        command = [str(part) for part in argv]
        try:
            return self._execute(command, None)
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(command, returncode=127, stdout="", stderr=str(exc))

    # ------------------------------------------------------------------
    def _execute(
        self,
        command: list[str],
        input_text: str | None,
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603
            command,
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
        )


__all__ = ["CommandError", "CommandExecutor", "detect_privileged"]
