import errno
import os
import socket
from datetime import timedelta
from pathlib import Path

import pytest

from nativert.core import (
    DirEntry,
    DirOp,
    DirOpKind,
    Error,
    Location,
    Metadata,
    OpenOptions,
    Shutdown,
    State,
    Subject,
    from_os_error,
    io_error,
)


def test_error_fields_and_raise():
    err = Error(501, Subject.BACKEND, State.UNSUPPORTED, Location.FILESYSTEM)
    assert err.code == 501
    assert err.subject is Subject.BACKEND
    assert err.state is State.UNSUPPORTED
    assert err.location is Location.FILESYSTEM
    with pytest.raises(Error) as info:
        raise err
    assert info.value == Error(501, Subject.BACKEND, State.UNSUPPORTED, Location.FILESYSTEM)


def test_error_equality():
    a = Error(None, Subject.PATH, State.NOT_FOUND, Location.FILESYSTEM)
    b = Error(None, Subject.PATH, State.NOT_FOUND, Location.FILESYSTEM)
    c = Error(None, Subject.PATH, State.INVALID, Location.FILESYSTEM)
    assert a == b
    assert not (a == c)


def test_error_str_mentions_parts():
    text = str(Error(501, Subject.BACKEND, State.UNSUPPORTED, Location.FILESYSTEM))
    assert "501" in text
    assert "backend" in text


@pytest.mark.parametrize(
    "code, state",
    [
        (errno.ENOENT, State.NOT_FOUND),
        (errno.EEXIST, State.ALREADY_EXISTS),
        (errno.EACCES, State.PERMISSION_DENIED),
        (errno.EPIPE, State.BROKEN_PIPE),
        (errno.ECONNREFUSED, State.CONNECTION_REFUSED),
        (errno.ENOTEMPTY, State.DIRECTORY_NOT_EMPTY),
    ],
)
def test_from_os_error_maps_errno(code, state):
    err = from_os_error(OSError(code, os.strerror(code)))
    assert err.state is state
    assert err.subject is Subject.IO


def test_from_os_error_real_failure(tmp_path):
    with pytest.raises(OSError) as info:
        os.stat(tmp_path / "missing")
    assert from_os_error(info.value).state is State.NOT_FOUND


def test_from_os_error_unknown():
    assert from_os_error(OSError("no errno")).state is State.OTHER


def test_io_error_keeps_state():
    err = io_error(State.EXHAUSTED)
    assert err.state is State.EXHAUSTED
    assert err.subject is Subject.IO


def test_shutdown_maps_to_socket_constants():
    assert Shutdown.READ.socket_how == socket.SHUT_RD
    assert Shutdown.WRITE.socket_how == socket.SHUT_WR
    assert Shutdown.BOTH.socket_how == socket.SHUT_RDWR
    left, right = socket.socketpair()
    with left, right:
        left.shutdown(Shutdown.WRITE.socket_how)
        assert right.recv(1) == b""
        with pytest.raises(OSError) as info:
            left.send(b"x")
        assert from_os_error(info.value).state is State.BROKEN_PIPE


def test_open_options_defaults_and_builders():
    base = OpenOptions()
    assert (base.read, base.write, base.create, base.create_new, base.truncate) == (
        False,
        False,
        False,
        False,
        False,
    )
    opts = base.with_read(True).with_write(True).with_create(True).with_truncate(True)
    assert opts.read and opts.write and opts.create and opts.truncate
    assert not opts.create_new
    assert base.read is False
    assert base.with_create_new(True).create_new is True


def test_metadata_from_real_file(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"Test test 42")
    result = os.stat(path)
    meta = Metadata.from_stat(result)
    assert meta.len == len(b"Test test 42")
    assert meta.permissions == result.st_mode & 0o7777
    assert meta.modified is not None
    assert abs(meta.modified.total_seconds() - result.st_mtime) < 1


def test_metadata_negative_time_is_none():
    result = os.stat_result(
        (0o100644, 1, 2, 1, 0, 0, 42, 0, 0, 0, -5.0, 100.0, 200.0)
    )
    meta = Metadata.from_stat(result)
    assert meta.len == 42
    assert meta.permissions == 0o644
    assert meta.accessed is None
    assert meta.modified == timedelta(seconds=100)
    assert meta.created is None
    assert meta.readonly is False


def test_dir_entry_fields():
    entry = DirEntry("name", is_dir=True)
    assert entry.name == "name"
    assert entry.is_dir and not entry.is_file


def test_dir_op_single_path():
    op = DirOp.create_dir_all("a/b")
    assert op.kind is DirOpKind.CREATE_DIR_ALL
    assert op.path == Path("a/b")
    assert op.target is None


@pytest.mark.parametrize(
    "factory, kind",
    [
        (DirOp.rename, DirOpKind.RENAME),
        (DirOp.copy, DirOpKind.COPY),
        (DirOp.hard_link, DirOpKind.HARD_LINK),
    ],
)
def test_dir_op_pairs(factory, kind):
    op = factory("src", Path("dst"))
    assert op.kind is kind
    assert op.path == Path("src")
    assert op.target == Path("dst")


def test_dir_op_set_permissions_and_removes():
    op = DirOp.set_permissions("f", 0o600)
    assert op.kind is DirOpKind.SET_PERMISSIONS
    assert op.mode == 0o600
    assert DirOp.remove_file("f").kind is DirOpKind.REMOVE_FILE
    assert DirOp.remove_dir("d").kind is DirOpKind.REMOVE_DIR
    assert DirOp.remove_dir_all("d").kind is DirOpKind.REMOVE_DIR_ALL
    assert DirOp.create_dir("d").kind is DirOpKind.CREATE_DIR