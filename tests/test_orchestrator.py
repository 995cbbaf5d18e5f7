"""Tests for cross-adapter rename/copy composition."""

from __future__ import annotations

import pytest

from mountgate.exceptions import (
    MountpointNotFoundError,
    MountpointReadOnlyError,
    PermissionDeniedError,
    StorageError,
)
from mountgate.orchestrator import CrossAdapterOrchestrator, collect
from mountgate.protocol import Caller
from mountgate.resolver import MountResolver


@pytest.fixture
def orchestrator(config) -> CrossAdapterOrchestrator:
    return CrossAdapterOrchestrator(MountResolver(config.mounts, config.adapters))


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestPlan:
    def test_not_a_transfer(self, orchestrator):
        assert orchestrator.plan("writefile", {"path": "a:/x"}, Caller()) is None

    def test_same_adapter_is_not_planned(self, orchestrator):
        fields = {"from": "a:/x.txt", "to": "a2:/y.txt"}
        assert orchestrator.plan("rename", fields, Caller()) is None
        assert orchestrator.plan("copy", fields, Caller()) is None

    def test_cross_adapter_is_planned(self, orchestrator, local, cloud):
        plan = orchestrator.plan("copy", {"from": "a:/x.txt", "to": "b:/y.txt"}, Caller())
        assert plan is not None
        assert plan.source.adapter is local
        assert plan.destination.adapter is cloud
        assert plan.src_path == "a:/x.txt"
        assert plan.dest_path == "b:/y.txt"

    def test_destination_read_only(self, orchestrator):
        with pytest.raises(MountpointReadOnlyError):
            orchestrator.plan("copy", {"from": "a:/x", "to": "rocloud:/y"}, Caller())

    def test_destination_read_only_same_adapter(self, orchestrator):
        with pytest.raises(MountpointReadOnlyError):
            orchestrator.plan("copy", {"from": "a:/x", "to": "ro:/y"}, Caller())

    def test_copy_from_read_only_source(self, orchestrator):
        plan = orchestrator.plan("copy", {"from": "ro:/x", "to": "b:/y"}, Caller())
        assert plan is not None

    def test_rename_from_read_only_source(self, orchestrator):
        with pytest.raises(MountpointReadOnlyError):
            orchestrator.plan("rename", {"from": "ro:/x", "to": "b:/y"}, Caller())

    def test_rename_from_read_only_source_same_adapter(self, orchestrator):
        with pytest.raises(MountpointReadOnlyError, match="'ro' is read-only"):
            orchestrator.plan("rename", {"from": "ro:/x", "to": "a:/y"}, Caller())

    def test_copy_from_read_only_source_same_adapter(self, orchestrator):
        assert orchestrator.plan("copy", {"from": "ro:/x", "to": "a:/y"}, Caller()) is None

    def test_destination_write_permission(self, orchestrator):
        with pytest.raises(PermissionDeniedError):
            orchestrator.plan("copy", {"from": "b:/x", "to": "edit:/y"}, Caller())
        editor = Caller(groups=("editors",))
        plan = orchestrator.plan("copy", {"from": "b:/x", "to": "edit:/y"}, editor)
        assert plan is not None

    def test_missing_destination(self, orchestrator):
        with pytest.raises(MountpointNotFoundError):
            orchestrator.plan("rename", {"from": "a:/x"}, Caller())


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecute:
    async def test_rename_sequence(self, orchestrator, local, cloud, log):
        local.files["a:/x.txt"] = b"hello"
        plan = orchestrator.plan("rename", {"from": "a:/x.txt", "to": "b:/y.txt"}, Caller())

        assert await orchestrator.execute(plan) is True
        assert log == [
            ("readfile", "local", "a:/x.txt"),
            ("writefile", "cloud", "b:/y.txt"),
            ("unlink", "local", "a:/x.txt"),
        ]
        assert cloud.files == {"b:/y.txt": b"hello"}
        assert local.files == {}

    async def test_copy_sequence(self, orchestrator, local, cloud, log):
        local.files["a:/x.txt"] = b"data"
        plan = orchestrator.plan("copy", {"from": "a:/x.txt", "to": "b:/y.txt"}, Caller())

        assert await orchestrator.execute(plan) is True
        assert [entry[0] for entry in log] == ["readfile", "writefile"]
        assert local.files == {"a:/x.txt": b"data"}
        assert cloud.files == {"b:/y.txt": b"data"}

    async def test_read_failure_stops_pipeline(self, orchestrator, log):
        plan = orchestrator.plan("rename", {"from": "a:/missing", "to": "b:/y"}, Caller())
        with pytest.raises(StorageError) as exc:
            await orchestrator.execute(plan)
        assert exc.value.code == "ENOENT"
        assert log == [("readfile", "local", "a:/missing")]

    async def test_write_failure_skips_unlink(self, orchestrator, local, cloud, log):
        local.files["a:/x"] = b"keep"
        cloud.fail_on.add("writefile")
        plan = orchestrator.plan("rename", {"from": "a:/x", "to": "b:/y"}, Caller())

        with pytest.raises(StorageError, match="writefile failed"):
            await orchestrator.execute(plan)
        assert [entry[0] for entry in log] == ["readfile", "writefile"]
        assert local.files == {"a:/x": b"keep"}

    async def test_unlink_failure_leaves_duplicate(self, orchestrator, local, cloud):
        local.files["a:/x"] = b"both"
        local.fail_on.add("unlink")
        plan = orchestrator.plan("rename", {"from": "a:/x", "to": "b:/y"}, Caller())

        with pytest.raises(StorageError, match="unlink failed"):
            await orchestrator.execute(plan)
        # No rollback: the content now exists in both places
        assert local.files == {"a:/x": b"both"}
        assert cloud.files == {"b:/y": b"both"}


class TestCollect:
    async def test_bytes(self):
        assert await collect(b"abc") == b"abc"

    async def test_async_iterable(self):
        async def chunks():
            yield b"a"
            yield b"bc"

        assert await collect(chunks()) == b"abc"

    async def test_sync_iterable(self):
        assert await collect([b"a", b"b"]) == b"ab"
