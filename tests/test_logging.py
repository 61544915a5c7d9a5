"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from apphostctl.logging import StructuredLogger


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger.enabled is False

    with logger.operation("create", args={"name": "acme"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log_path

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("create") as op:
        op.success("done", changed=0)

    assert logger.enabled is False

    with logger.operation("config show") as op:
        op.success("done", changed=0)


def test_operation_records_steps_and_context(tmp_path: Path) -> None:
    """Steps and JSON-safe context values are persisted in order."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation(
        "create",
        args={"name": "acme", "root": Path("/var/www")},
        target={"kind": "application", "name": "acme"},
    ) as op:
        op.add_step("ensure-user", status="skipped", detail="User 'acme' already exists.")
        op.add_step("write-pool-config", status="success")
        op.warning(
            "warned",
            warnings=("template lacked: listen",),
            changed=1,
            context={"pool_config": Path("/etc/php/8.2/fpm/pool.d/acme.conf"), "obj": Custom()},
        )

    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    assert record["command"] == "create"
    assert record["args"] == {"name": "acme", "root": "/var/www"}
    assert record["target"] == {"kind": "application", "name": "acme"}
    assert record["steps"] == [
        {"name": "ensure-user", "status": "skipped", "detail": "User 'acme' already exists."},
        {"name": "write-pool-config", "status": "success"},
    ]
    result = record["result"]
    assert result["status"] == "warning"
    assert result["changed"] == 1
    assert result["warnings"] == ["template lacked: listen"]
    assert result["context"] == {
        "pool_config": "/etc/php/8.2/fpm/pool.d/acme.conf",
        "obj": "<custom>",
    }


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("create") as op:
        op.error("boom", errors=None, rc=4, context={"value": (1, 2)})

    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 4
    assert result["context"] == {"value": [1, 2]}


def test_unhandled_exception_is_recorded(tmp_path: Path) -> None:
    """Exceptions escaping the scope are logged as errors and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError), logger.operation("create"):
        raise ValueError("bad")

    record = json.loads(logger.operations_log_path.read_text(encoding="utf-8"))
    assert record["result"]["status"] == "error"
    assert record["result"]["message"] == "Unhandled error: ValueError('bad')"


def test_scope_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Operations that set no result are recorded as completed."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("config show"):
        pass

    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["result"]["message"] == "Completed."
