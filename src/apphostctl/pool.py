"""Derive per-application PHP-FPM pool configuration from the default pool.

The default ``www.conf`` shipped by distribution packages is rewritten with a
fixed, ordered list of single-shot substitutions. Each substitution touches
only the first matching line so commented examples or repeated directives
further down the file are left untouched.
"""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

DEFAULT_LISTEN_OWNER = "www-data"
DEFAULT_LISTEN_GROUP = "www-data"


@dataclass(frozen=True, slots=True)
class Substitution:
    """Replacement applied to the first line matching ``pattern``."""

    name: str
    pattern: re.Pattern[str]
    replacement: str

    def apply(self, text: str) -> tuple[str, bool]:
        """Return the rewritten text and whether the pattern matched."""
        # A callable keeps backslashes in the replacement literal.
        rewritten, count = self.pattern.subn(lambda _match: self.replacement, text, count=1)
        return rewritten, count > 0


@dataclass(frozen=True, slots=True)
class PoolRewrite:
    """Rewritten pool configuration plus the substitutions that found nothing."""

    text: str
    unmatched: tuple[str, ...] = ()


def pool_substitutions(app_name: str, socket_path: str) -> list[Substitution]:
    """Return the ordered substitutions turning ``[www]`` into *app_name*'s pool."""
    return [
        Substitution(
            "pool-header",
            re.compile(r"^\[www\]", re.MULTILINE),
            f"[{app_name}]",
        ),
        Substitution(
            "user",
            re.compile(r"^user\s*=\s*www-data", re.MULTILINE),
            f"user = {app_name}",
        ),
        Substitution(
            "group",
            re.compile(r"^group\s*=\s*www-data", re.MULTILINE),
            f"group = {app_name}",
        ),
        Substitution(
            "listen",
            re.compile(r"^listen\s*=.+$", re.MULTILINE),
            f"listen = {socket_path}",
        ),
    ]


_LISTEN_OWNER_RE = re.compile(r"^[ \t]*listen\.owner\s*=", re.MULTILINE)
_LISTEN_GROUP_RE = re.compile(r"^[ \t]*listen\.group\s*=", re.MULTILINE)


def ensure_listen_ownership(
    text: str,
    *,
    owner: str = DEFAULT_LISTEN_OWNER,
    group: str = DEFAULT_LISTEN_GROUP,
) -> str:
    """Append ``listen.owner``/``listen.group`` when no active directive exists."""
    additions: list[str] = []
    if _LISTEN_OWNER_RE.search(text) is None:
        additions.append(f"listen.owner = {owner}")
    if _LISTEN_GROUP_RE.search(text) is None:
        additions.append(f"listen.group = {group}")
    if not additions:
        return text
    if text and not text.endswith("\n"):
        text += "\n"
    return text + "\n".join(additions) + "\n"


def apply_substitutions(
    text: str,
    substitutions: Sequence[Substitution],
) -> PoolRewrite:
    """Apply *substitutions* in order, each at most once."""
    unmatched: list[str] = []
    for substitution in substitutions:
        text, matched = substitution.apply(text)
        if not matched:
            unmatched.append(substitution.name)
    return PoolRewrite(text=text, unmatched=tuple(unmatched))


def derive_pool_config(
    template: str,
    app_name: str,
    socket_path: str,
    *,
    listen_owner: str = DEFAULT_LISTEN_OWNER,
    listen_group: str = DEFAULT_LISTEN_GROUP,
) -> PoolRewrite:
    """Rewrite *template* for *app_name* and report unmatched substitutions."""
    rewrite = apply_substitutions(template, pool_substitutions(app_name, socket_path))
    text = ensure_listen_ownership(rewrite.text, owner=listen_owner, group=listen_group)
    return PoolRewrite(text=text, unmatched=rewrite.unmatched)


def rewrite_pool_config(
    template: str,
    app_name: str,
    socket_path: str,
    *,
    listen_owner: str = DEFAULT_LISTEN_OWNER,
    listen_group: str = DEFAULT_LISTEN_GROUP,
) -> str:
    """Return the pool configuration for *app_name* derived from *template*."""
    return derive_pool_config(
        template,
        app_name,
        socket_path,
        listen_owner=listen_owner,
        listen_group=listen_group,
    ).text


__all__ = [
    "DEFAULT_LISTEN_GROUP",
    "DEFAULT_LISTEN_OWNER",
    "PoolRewrite",
    "Substitution",
    "apply_substitutions",
    "derive_pool_config",
    "ensure_listen_ownership",
    "pool_substitutions",
    "rewrite_pool_config",
]
