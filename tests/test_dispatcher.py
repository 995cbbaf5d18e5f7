"""Tests for VFSDispatcher: routing, sanitization and HTTP responses."""

from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient

from mountgate.app import create_app
from mountgate.dispatcher import sanitize_fields, session_caller, to_jsonable
from mountgate.exceptions import (
    FieldError,
    MountpointNotFoundError,
    MountpointReadOnlyError,
    PermissionDeniedError,
    StorageError,
    UnsupportedEndpointError,
)
from mountgate.permissions import WRITES
from mountgate.protocol import Caller
from mountgate.types import FileStat


def header_caller(request) -> Caller:
    """Identify callers from test headers instead of a session."""
    groups = request.headers.get("x-groups", "")
    return Caller(
        username=request.headers.get("x-user", ""),
        groups=tuple(g for g in groups.split(",") if g),
    )


class TrackedUpload:
    """Upload handle that remembers whether it was closed."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.closed = False

    async def read(self) -> bytes:
        return self.data

    async def close(self) -> None:
        self.closed = True


def stub_upload(monkeypatch, path: str) -> TrackedUpload:
    """Make every request parse as a writefile of one tracked upload to *path*."""
    upload = TrackedUpload(b"payload")

    async def parse(request):
        return {"path": path}, {"upload": upload}

    monkeypatch.setattr("mountgate.dispatcher.parse_fields", parse)
    return upload


@pytest.fixture
def client(config):
    app = create_app(config, identify=header_caller)
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_sanitize_fields(self):
        fields = sanitize_fields(
            {"path": "a:/../x", "from": "a://y", "to": "b:/z/..", "root": "c:/", "other": "../k"}
        )
        assert fields == {
            "path": "a:/x",
            "from": "a:/y",
            "to": "b:/z/",
            "root": "c:/",
            "other": "../k",
        }

    def test_to_jsonable(self):
        stat = FileStat(path="a:/x", filename="x", is_directory=False, size=3)
        assert to_jsonable([stat])[0]["isFile"] is True
        assert to_jsonable({"k": stat})["k"]["size"] == 3
        assert to_jsonable(True) is True

    def test_session_caller_without_session(self):
        class FakeRequest:
            scope: dict = {}

        assert session_caller(FakeRequest()) == Caller()

    def test_session_caller_with_user(self):
        class FakeRequest:
            scope = {"session": {"user": {"username": "ada", "groups": ["admin"]}}}

        assert session_caller(FakeRequest()) == Caller(username="ada", groups=("admin",))

    def test_error_response_logs_vfs_error_as_warning(self, dispatcher, caplog):
        with caplog.at_level(logging.WARNING, logger="mountgate.dispatcher"):
            response = dispatcher.error_response(
                "stat", StorageError("File not found: a:/x", "ENOENT")
            )
        assert response.status_code == 404
        assert json.loads(response.body) == {"error": "File not found: a:/x"}
        [record] = caplog.records
        assert record.name == "mountgate.dispatcher"
        assert record.levelno == logging.WARNING
        assert record.exc_info is None
        assert "stat" in record.getMessage()

    def test_error_response_logs_unexpected_error_with_traceback(self, dispatcher, caplog):
        with caplog.at_level(logging.WARNING, logger="mountgate.dispatcher"):
            response = dispatcher.error_response("stat", RuntimeError("boom"))
        assert response.status_code == 400
        assert json.loads(response.body) == {"error": "boom"}
        [record] = caplog.records
        assert record.levelno == logging.ERROR
        assert record.exc_info is not None
        assert record.exc_info[0] is RuntimeError


# ---------------------------------------------------------------------------
# dispatch()
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_single_adapter(self, dispatcher, local, log):
        local.files["a:/x.txt"] = b"x"
        assert await dispatcher.dispatch("exists", {"path": "a:/x.txt"}) is True
        assert log == [("exists", "local", "a:/x.txt")]

    async def test_paths_are_sanitized_before_adapter(self, dispatcher, log):
        await dispatcher.dispatch(
            "writefile", {"path": "a:/../../etc/passwd"}, {"upload": b"x"}, read_only=WRITES
        )
        assert log == [("writefile", "local", "a:/etc/passwd")]

    async def test_traversal_cannot_change_mountpoint(self, dispatcher, log):
        with pytest.raises(MountpointNotFoundError):
            await dispatcher.dispatch("readdir", {"path": "../a:/"})
        assert log == []

    async def test_unknown_operation(self, dispatcher):
        with pytest.raises(UnsupportedEndpointError):
            await dispatcher.dispatch("chmod", {"path": "a:/x"})

    async def test_missing_upload(self, dispatcher):
        with pytest.raises(FieldError):
            await dispatcher.dispatch("writefile", {"path": "a:/x"}, read_only=WRITES)

    async def test_missing_search_pattern(self, dispatcher):
        with pytest.raises(FieldError, match="pattern"):
            await dispatcher.dispatch("search", {"root": "a:/"})

    async def test_same_adapter_rename_is_native(self, dispatcher, local, log):
        local.files["a:/x.txt"] = b"x"
        result = await dispatcher.dispatch(
            "rename", {"from": "a:/x.txt", "to": "a2:/y.txt"}, read_only=WRITES
        )
        assert result is True
        assert log == [("rename", "local", "a:/x.txt", "a2:/y.txt")]

    async def test_cross_adapter_rename_is_composed(self, dispatcher, local, log):
        local.files["a:/x.txt"] = b"x"
        result = await dispatcher.dispatch(
            "rename", {"from": "a:/x.txt", "to": "b:/y.txt"}, read_only=WRITES
        )
        assert result is True
        assert [entry[0] for entry in log] == ["readfile", "writefile", "unlink"]

    async def test_same_adapter_rename_from_read_only(self, dispatcher, log):
        with pytest.raises(MountpointReadOnlyError):
            await dispatcher.dispatch("rename", {"from": "ro:/x", "to": "a:/y"}, read_only=WRITES)
        assert log == []

    async def test_stray_path_does_not_authorize_rename(self, dispatcher, local, log):
        local.files["ro:/secret"] = b"keep"
        with pytest.raises(MountpointReadOnlyError):
            await dispatcher.dispatch(
                "rename",
                {"path": "a:/decoy", "from": "ro:/secret", "to": "a:/stolen"},
                read_only=True,
            )
        assert local.files == {"ro:/secret": b"keep"}
        assert log == []

    async def test_stray_path_does_not_authorize_search(self, dispatcher, log):
        with pytest.raises(PermissionDeniedError):
            await dispatcher.dispatch(
                "search",
                {"path": "a:/", "root": "staff:/", "pattern": "x"},
                caller=Caller(groups=()),
            )
        assert log == []

    async def test_search_resolves_on_root(self, dispatcher, log):
        await dispatcher.dispatch(
            "search",
            {"path": "staff:/", "root": "a:/", "pattern": "x"},
            caller=Caller(groups=()),
        )
        assert log == [("search", "local", "a:/", "x")]

    async def test_write_permission(self, dispatcher):
        with pytest.raises(PermissionDeniedError):
            await dispatcher.dispatch(
                "writefile", {"path": "edit:/x"}, {"upload": b"x"}, read_only=WRITES
            )
        result = await dispatcher.dispatch(
            "writefile",
            {"path": "edit:/x"},
            {"upload": b"abc"},
            caller=Caller(groups=("editors",)),
            read_only=WRITES,
        )
        assert result == 3


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------


class TestHTTP:
    def test_readfile_streams_content(self, client, local):
        local.files["a:/hello.txt"] = b"hello world"
        response = client.get("/vfs/readfile", params={"path": "a:/hello.txt"})
        assert response.status_code == 200
        assert response.content == b"hello world"
        assert response.headers["content-type"].startswith("text/plain")

    def test_readdir_json(self, client, local):
        local.files["a:/one.txt"] = b"1"
        response = client.get("/vfs/readdir", params={"path": "a:/"})
        assert response.status_code == 200
        body = response.json()
        assert body[0]["path"] == "a:/one.txt"
        assert body[0]["isFile"] is True

    def test_writefile_upload(self, client, local):
        response = client.post(
            "/vfs/writefile",
            data={"path": "a:/up.txt"},
            files={"upload": ("up.txt", b"uploaded", "text/plain")},
        )
        assert response.status_code == 200
        assert response.json() == 8
        assert local.files["a:/up.txt"] == b"uploaded"

    def test_mountpoint_not_found(self, client):
        response = client.get("/vfs/readfile", params={"path": "ghost:/x.txt"})
        assert response.status_code == 403
        assert "Mountpoint not found" in response.json()["error"]

    def test_permission_denied(self, client):
        response = client.post(
            "/vfs/writefile",
            data={"path": "edit:/x.txt"},
            files={"upload": ("x.txt", b"x", "text/plain")},
        )
        assert response.status_code == 403
        assert "Permission was denied" in response.json()["error"]

    def test_permission_granted_by_group(self, client):
        response = client.post(
            "/vfs/writefile",
            data={"path": "edit:/x.txt"},
            files={"upload": ("x.txt", b"x", "text/plain")},
            headers={"x-groups": "editors"},
        )
        assert response.status_code == 200

    def test_read_only_mountpoint(self, client):
        response = client.post("/vfs/mkdir", data={"path": "ro:/dir"})
        assert response.status_code == 403
        assert "read-only" in response.json()["error"]

    def test_copy_out_of_read_only(self, client, local, cloud):
        local.files["ro:/x"] = b"ro"
        response = client.post("/vfs/copy", data={"from": "ro:/x", "to": "b:/x"})
        assert response.status_code == 200
        assert response.json() is True
        assert cloud.files["b:/x"] == b"ro"

    def test_copy_into_read_only(self, client, cloud):
        cloud.files["b:/x"] = b"x"
        response = client.post("/vfs/copy", data={"from": "b:/x", "to": "ro:/x"})
        assert response.status_code == 403

    def test_unsupported_endpoint(self, client):
        response = client.get("/vfs/readfile", params={"path": "listonly:/x"})
        assert response.status_code == 401
        assert "was not valid for this mountpoint" in response.json()["error"]

    def test_storage_not_found(self, client):
        response = client.get("/vfs/stat", params={"path": "a:/missing"})
        assert response.status_code == 404
        assert "File not found" in response.json()["error"]

    def test_unknown_storage_code(self, client, local):
        local.fail_on.add("mkdir")
        response = client.post("/vfs/mkdir", data={"path": "a:/d"})
        assert response.status_code == 400

    def test_rename_without_destination_is_not_found(self, client):
        response = client.post("/vfs/rename", data={"from": "a:/x"})
        assert response.status_code == 403
        assert "Mountpoint not found" in response.json()["error"]

    def test_missing_upload_field(self, client, local):
        response = client.post("/vfs/writefile", data={"path": "a:/x"})
        assert response.status_code == 400
        assert "Missing file 'upload'" in response.json()["error"]
        assert "a:/x" not in local.files

    def test_missing_search_pattern(self, client):
        response = client.get("/vfs/search", params={"root": "a:/"})
        assert response.status_code == 400
        assert "Missing field 'pattern'" in response.json()["error"]

    def test_upload_closed_after_success(self, client, local, monkeypatch):
        upload = stub_upload(monkeypatch, "a:/up.txt")
        response = client.post("/vfs/writefile")
        assert response.status_code == 200
        assert local.files["a:/up.txt"] == b"payload"
        assert upload.closed is True

    def test_upload_closed_after_failure(self, client, local, monkeypatch):
        upload = stub_upload(monkeypatch, "edit:/up.txt")
        response = client.post("/vfs/writefile")
        assert response.status_code == 403
        assert "edit:/up.txt" not in local.files
        assert upload.closed is True

    def test_cross_adapter_rename(self, client, local, cloud, log):
        local.files["a:/x.txt"] = b"move me"
        response = client.post("/vfs/rename", data={"from": "a:/x.txt", "to": "b:/y.txt"})
        assert response.status_code == 200
        assert response.json() is True
        assert log == [
            ("readfile", "local", "a:/x.txt"),
            ("writefile", "cloud", "b:/y.txt"),
            ("unlink", "local", "a:/x.txt"),
        ]

    def test_wrong_method(self, client):
        response = client.get("/vfs/writefile", params={"path": "a:/x"})
        assert response.status_code == 405

    def test_mountpoints_listing(self, client):
        response = client.get("/vfs/mountpoints")
        names = [m["name"] for m in response.json()]
        assert "a" in names
        assert "staff" not in names

        response = client.get("/vfs/mountpoints", headers={"x-groups": "staff"})
        assert "staff" in [m["name"] for m in response.json()]
