"""
Tests for the deployment audit log.
"""

import json
from unittest.mock import patch

import pytest

from bluegreen_manager.audit import AuditLog
from bluegreen_manager.errors import AuditWriteFailedError, InvalidConfigError
from bluegreen_manager.models import DeploymentAttempt, DeploymentOutcome, SlotId


def make_attempt(attempt_id, started_at, outcome=DeploymentOutcome.SUCCESS, version="1.0.0"):
    return DeploymentAttempt(
        attempt_id=attempt_id,
        version=version,
        target_slot=SlotId.B,
        previous_slot=SlotId.A,
        started_at=started_at,
        finished_at=started_at,
        outcome=outcome,
        reason="test",
        health_attempts=1,
    )


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_append_writes_jsonl(self, audit_log):
        await audit_log.append(make_attempt("a1", "2026-01-01T10:00:00+00:00"))
        await audit_log.append(make_attempt("a2", "2026-01-01T11:00:00+00:00"))

        lines = audit_log.path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["attempt_id"] == "a1"
        assert json.loads(lines[1])["outcome"] == "success"

    @pytest.mark.asyncio
    async def test_history_newest_first(self, audit_log):
        await audit_log.append(make_attempt("old", "2026-01-01T10:00:00+00:00"))
        await audit_log.append(make_attempt("new", "2026-01-02T10:00:00+00:00"))
        await audit_log.append(make_attempt("mid", "2026-01-01T12:00:00+00:00"))

        history = await audit_log.history()

        assert [a.attempt_id for a in history] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_history_limit(self, audit_log):
        for i in range(5):
            await audit_log.append(make_attempt(f"a{i}", f"2026-01-0{i + 1}T00:00:00+00:00"))

        history = await audit_log.history(limit=2)

        assert [a.attempt_id for a in history] == ["a4", "a3"]

    @pytest.mark.asyncio
    async def test_history_invalid_limit(self, audit_log):
        with pytest.raises(InvalidConfigError):
            await audit_log.history(limit=0)

    @pytest.mark.asyncio
    async def test_history_missing_file(self, tmp_path):
        assert await AuditLog(tmp_path / "none.jsonl").history() == []

    @pytest.mark.asyncio
    async def test_corrupt_lines_skipped(self, audit_log):
        await audit_log.append(make_attempt("good", "2026-01-01T10:00:00+00:00"))
        with open(audit_log.path, "a") as f:
            f.write("{truncated\n")
            f.write('{"attempt_id": "missing-fields"}\n')

        history = await audit_log.history()

        assert [a.attempt_id for a in history] == ["good"]

    @pytest.mark.asyncio
    async def test_last(self, audit_log):
        assert await audit_log.last() is None

        await audit_log.append(
            make_attempt("failed", "2026-01-01T10:00:00+00:00", DeploymentOutcome.ABORTED)
        )

        last = await audit_log.last()
        assert last.attempt_id == "failed"
        assert last.outcome == DeploymentOutcome.ABORTED

    @pytest.mark.asyncio
    async def test_append_failure_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        audit_log = AuditLog(blocker / "audit.jsonl")

        with pytest.raises(AuditWriteFailedError):
            await audit_log.append(make_attempt("a1", "2026-01-01T10:00:00+00:00"))

    @pytest.mark.asyncio
    async def test_fsync_failure_raises(self, audit_log):
        with patch("bluegreen_manager.audit.os.fsync", side_effect=OSError("I/O error")) as fsync:
            with pytest.raises(AuditWriteFailedError, match="I/O error"):
                await audit_log.append(make_attempt("a1", "2026-01-01T10:00:00+00:00"))

        fsync.assert_called_once()

    def test_default_path(self):
        assert str(AuditLog().path) == "/var/lib/bluegreen-manager/audit.jsonl"
