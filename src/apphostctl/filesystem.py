"""Filesystem accessor routing privileged writes through the executor."""
from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from .executor import CommandError, CommandExecutor

STAGING_SUFFIX = ".apphostctl-tmp"


@dataclass(slots=True)
class HostFilesystem:
    """Read the host filesystem directly and mutate it via privileged commands."""

    executor: CommandExecutor
    staging_suffix: str = STAGING_SUFFIX

    def exists(self, path: Path) -> bool:
        """Return True when *path* exists or is a (possibly dangling) symlink."""
        return path.exists() or path.is_symlink()

    def read_text(self, path: Path) -> str:
        """Return the UTF-8 contents of *path*."""
        return path.read_text(encoding="utf-8")

    def make_dirs(self, path: Path) -> None:
        """Create *path* and its parents; an existing directory is not an error."""
        self.executor.run(["mkdir", "-p", path])

    def write_text(self, path: Path, content: str) -> None:
        """Replace *path* with *content* in one rename.

        Content is piped into a staging sibling with ``tee`` and moved over the
        destination, so readers never observe a half-written file. A failed move
        removes the staging file before the error propagates.
        """
        staging = path.with_name(f"{path.name}{self.staging_suffix}")
        self.executor.run(["tee", staging], input_text=content)
        try:
            self.executor.run(["mv", "-f", staging, path])
        except CommandError:
            with suppress(CommandError):
                self.executor.run(["rm", "-f", staging])
            raise

    def symlink(self, source: Path, link: Path) -> None:
        """Create *link* pointing at *source*."""
        self.executor.run(["ln", "-s", source, link])

    def chown(self, path: Path, owner: str, group: str, *, recursive: bool = False) -> None:
        """Change ownership of *path* to ``owner:group``."""
        args: list[str | Path] = ["chown"]
        if recursive:
            args.append("-R")
        args.extend([f"{owner}:{group}", path])
        self.executor.run(args)

    def chmod(self, path: Path, mode: str, *, recursive: bool = False) -> None:
        """Apply the octal *mode* string to *path*."""
        args: list[str | Path] = ["chmod"]
        if recursive:
            args.append("-R")
        args.extend([mode, path])
        self.executor.run(args)


__all__ = ["HostFilesystem", "STAGING_SUFFIX"]
