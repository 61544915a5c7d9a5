"""Tests for the PHP-FPM pool template rewriter."""
from __future__ import annotations

import re

from apphostctl.pool import (
    apply_substitutions,
    derive_pool_config,
    ensure_listen_ownership,
    pool_substitutions,
    rewrite_pool_config,
)
from conftest import POOL_TEMPLATE

SOCKET = "/run/php/php8.2-fpm-acme.sock"


def _lines(text: str) -> list[str]:
    return text.splitlines()


def test_rewrite_produces_application_pool() -> None:
    """The stock pool is renamed, rebound to the app socket and owned by the app."""
    result = rewrite_pool_config(POOL_TEMPLATE, "acme", SOCKET)
    lines = _lines(result)

    assert "[acme]" in lines
    assert "[www]" not in lines
    assert "user = acme" in lines
    assert "group = acme" in lines
    assert f"listen = {SOCKET}" in lines
    assert lines.count("listen.owner = www-data") == 1
    assert lines.count("listen.group = www-data") == 1
    assert result.endswith("\n")


def test_rewrite_keeps_commented_examples() -> None:
    """Commented directives are neither rewritten nor counted as present."""
    result = rewrite_pool_config(POOL_TEMPLATE, "acme", SOCKET)

    assert ";listen.owner = www-data" in _lines(result)
    assert ";listen.mode = 0660" in _lines(result)


def test_only_first_matching_line_is_rewritten() -> None:
    """Repeated directives after the first match are left untouched."""
    template = "[www]\nuser = www-data\nlisten = /a.sock\nlisten = /b.sock\n[www]\n"
    result = rewrite_pool_config(template, "acme", SOCKET)

    assert _lines(result)[:5] == [
        "[acme]",
        "user = acme",
        f"listen = {SOCKET}",
        "listen = /b.sock",
        "[www]",
    ]


def test_existing_listen_ownership_is_not_duplicated() -> None:
    """An active ``listen.owner``/``listen.group`` pair suppresses the append."""
    template = POOL_TEMPLATE + "listen.owner = nginx\n  listen.group = nginx\n"
    result = rewrite_pool_config(template, "acme", SOCKET)

    assert "listen.owner = www-data" not in result
    assert "listen.group = www-data" not in result
    assert len(re.findall(r"^\s*listen\.owner", result, re.MULTILINE)) == 1


def test_ensure_listen_ownership_adds_missing_half_only() -> None:
    """Only the absent directive is appended, after a terminating newline."""
    result = ensure_listen_ownership("listen.owner = nginx", owner="web", group="web")

    assert result == "listen.owner = nginx\nlisten.group = web\n"


def test_ensure_listen_ownership_is_idempotent() -> None:
    """Applying the post-pass twice yields the same text."""
    once = ensure_listen_ownership(POOL_TEMPLATE)

    assert ensure_listen_ownership(once) == once


def test_unmatched_substitutions_are_reported() -> None:
    """A template lacking directives is still rewritten but names what was missing."""
    rewrite = derive_pool_config("[www]\npm = dynamic\n", "acme", SOCKET)

    assert rewrite.unmatched == ("user", "group", "listen")
    assert rewrite.text.startswith("[acme]\n")
    assert rewrite.text.endswith("listen.owner = www-data\nlisten.group = www-data\n")


def test_custom_listen_owner_and_group() -> None:
    """The socket owner and group appended to the pool are configurable."""
    rewrite = derive_pool_config(
        POOL_TEMPLATE,
        "acme",
        SOCKET,
        listen_owner="nginx",
        listen_group="nginx",
    )

    assert rewrite.unmatched == ()
    assert "listen.owner = nginx" in _lines(rewrite.text)
    assert "listen.group = nginx" in _lines(rewrite.text)


def test_replacement_backslashes_are_literal() -> None:
    """Replacement text is inserted verbatim, not interpreted as a regex template."""
    rewrite = apply_substitutions(
        "listen = 127.0.0.1:9000\n",
        pool_substitutions("acme", r"C:\sockets\1.sock"),
    )

    assert rewrite.text == "listen = C:\\sockets\\1.sock\n"


def test_substitution_order_is_fixed() -> None:
    """Substitutions run header first, then user, group and listen."""
    names = [item.name for item in pool_substitutions("acme", SOCKET)]

    assert names == ["pool-header", "user", "group", "listen"]
