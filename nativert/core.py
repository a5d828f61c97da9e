"""Shared types: errors, open options, metadata, directory entries and operations."""

from __future__ import annotations

import errno
import os
import socket
import stat
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, "os.PathLike[str]"]


class State(Enum):
    """What went wrong."""

    UNSUPPORTED = "unsupported"
    UNAVAILABLE = "unavailable"
    INVALID = "invalid"
    NOT_FOUND = "not found"
    ALREADY_EXISTS = "already exists"
    PERMISSION_DENIED = "permission denied"
    BROKEN_PIPE = "broken pipe"
    WOULD_BLOCK = "would block"
    INTERRUPTED = "interrupted"
    TIMED_OUT = "timed out"
    CONNECTION_REFUSED = "connection refused"
    CONNECTION_RESET = "connection reset"
    CONNECTION_ABORTED = "connection aborted"
    NOT_CONNECTED = "not connected"
    ADDR_IN_USE = "address in use"
    ADDR_NOT_AVAILABLE = "address not available"
    NOT_A_DIRECTORY = "not a directory"
    IS_A_DIRECTORY = "is a directory"
    DIRECTORY_NOT_EMPTY = "directory not empty"
    NOP = "no operation"
    EXHAUSTED = "exhausted"
    OTHER = "other"


class Subject(Enum):
    """What the failure concerns."""

    BACKEND = "backend"
    DIRECTORY = "directory"
    PATH = "path"
    OUTPUT = "output"
    IO = "io"
    OTHER = "other"


class Location(Enum):
    """Where the failure happened."""

    FILESYSTEM = "filesystem"
    NETWORK = "network"
    BACKEND = "backend"
    OTHER = "other"


class Error(Exception):
    """Runtime error carrying an optional HTTP-like code, a subject, a state and a location."""

    def __init__(
        self,
        code: Optional[int],
        subject: Subject,
        state: State,
        location: Location,
    ) -> None:
        super().__init__(code, subject, state, location)
        self.code = code
        self.subject = subject
        self.state = state
        self.location = location

    def __str__(self) -> str:
        prefix = f"[{self.code}] " if self.code is not None else ""
        return f"{prefix}{self.subject.value}: {self.state.value} ({self.location.value})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Error):
            return NotImplemented
        return (self.code, self.subject, self.state, self.location) == (
            other.code,
            other.subject,
            other.state,
            other.location,
        )

    def __hash__(self) -> int:
        return hash((self.code, self.subject, self.state, self.location))


def _errno_table() -> dict[int, State]:
    pairs = [
        ("ENOENT", State.NOT_FOUND),
        ("EEXIST", State.ALREADY_EXISTS),
        ("EACCES", State.PERMISSION_DENIED),
        ("EPERM", State.PERMISSION_DENIED),
        ("EPIPE", State.BROKEN_PIPE),
        ("EAGAIN", State.WOULD_BLOCK),
        ("EWOULDBLOCK", State.WOULD_BLOCK),
        ("EINPROGRESS", State.WOULD_BLOCK),
        ("EINTR", State.INTERRUPTED),
        ("ETIMEDOUT", State.TIMED_OUT),
        ("ECONNREFUSED", State.CONNECTION_REFUSED),
        ("ECONNRESET", State.CONNECTION_RESET),
        ("ECONNABORTED", State.CONNECTION_ABORTED),
        ("ENOTCONN", State.NOT_CONNECTED),
        ("EADDRINUSE", State.ADDR_IN_USE),
        ("EADDRNOTAVAIL", State.ADDR_NOT_AVAILABLE),
        ("ENOTDIR", State.NOT_A_DIRECTORY),
        ("EISDIR", State.IS_A_DIRECTORY),
        ("ENOTEMPTY", State.DIRECTORY_NOT_EMPTY),
        ("EINVAL", State.INVALID),
        ("ENOTSUP", State.UNSUPPORTED),
        ("EOPNOTSUPP", State.UNSUPPORTED),
        ("ENOSYS", State.UNSUPPORTED),
    ]
    table: dict[int, State] = {}
    for name, state in pairs:
        value = getattr(errno, name, None)
        if value is not None:
            table.setdefault(value, state)
    return table


_ERRNO_STATES = _errno_table()


def from_os_error(exc: BaseException) -> Error:
    """Convert an operating-system exception into an :class:`Error`."""
    state = State.OTHER
    code = getattr(exc, "errno", None)
    if isinstance(code, int):
        state = _ERRNO_STATES.get(code, State.OTHER)
    elif isinstance(exc, (TimeoutError, socket.timeout)):
        state = State.TIMED_OUT
    elif isinstance(exc, FileNotFoundError):
        state = State.NOT_FOUND
    elif isinstance(exc, FileExistsError):
        state = State.ALREADY_EXISTS
    elif isinstance(exc, PermissionError):
        state = State.PERMISSION_DENIED
    elif isinstance(exc, BrokenPipeError):
        state = State.BROKEN_PIPE
    elif isinstance(exc, InterruptedError):
        state = State.INTERRUPTED
    return Error(None, Subject.IO, state, Location.OTHER)


def io_error(state: State) -> Error:
    """Build a plain I/O error with the given state."""
    return Error(None, Subject.IO, state, Location.OTHER)


class Shutdown(Enum):
    """Which half of a TCP connection to shut down."""

    READ = "read"
    WRITE = "write"
    BOTH = "both"

    @property
    def socket_how(self) -> int:
        """The matching ``socket.SHUT_*`` constant."""
        return {
            Shutdown.READ: socket.SHUT_RD,
            Shutdown.WRITE: socket.SHUT_WR,
            Shutdown.BOTH: socket.SHUT_RDWR,
        }[self]


@dataclass(frozen=True)
class OpenOptions:
    """How a file is to be opened."""

    read: bool = False
    write: bool = False
    create: bool = False
    create_new: bool = False
    truncate: bool = False

    def with_read(self, value: bool) -> "OpenOptions":
        return replace(self, read=value)

    def with_write(self, value: bool) -> "OpenOptions":
        return replace(self, write=value)

    def with_create(self, value: bool) -> "OpenOptions":
        return replace(self, create=value)

    def with_create_new(self, value: bool) -> "OpenOptions":
        return replace(self, create_new=value)

    def with_truncate(self, value: bool) -> "OpenOptions":
        return replace(self, truncate=value)


def _since_epoch(result: os.stat_result, name: str) -> Optional[timedelta]:
    nanos = getattr(result, f"st_{name}_ns", None)
    if nanos is not None:
        if nanos < 0:
            return None
        seconds, rest = divmod(nanos, 1_000_000_000)
        return timedelta(seconds=seconds, microseconds=rest // 1000)
    value = getattr(result, f"st_{name}", None)
    if value is None or value < 0:
        return None
    return timedelta(seconds=value)


@dataclass(frozen=True)
class Metadata:
    """File metadata; times are durations since the Unix epoch, or None when unknown."""

    permissions: int
    len: int
    modified: Optional[timedelta]
    accessed: Optional[timedelta]
    created: Optional[timedelta]

    @property
    def readonly(self) -> bool:
        return not self.permissions & (stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH)

    @classmethod
    def from_stat(cls, result: os.stat_result) -> "Metadata":
        return cls(
            permissions=stat.S_IMODE(result.st_mode),
            len=result.st_size,
            modified=_since_epoch(result, "mtime"),
            accessed=_since_epoch(result, "atime"),
            created=_since_epoch(result, "birthtime"),
        )


@dataclass(frozen=True)
class DirEntry:
    """One entry of a directory listing."""

    name: str
    is_dir: bool = False
    is_file: bool = False
    is_symlink: bool = False


class DirOpKind(Enum):
    SET_PERMISSIONS = "set_permissions"
    REMOVE_DIR = "remove_dir"
    REMOVE_DIR_ALL = "remove_dir_all"
    CREATE_DIR = "create_dir"
    CREATE_DIR_ALL = "create_dir_all"
    REMOVE_FILE = "remove_file"
    RENAME = "rename"
    COPY = "copy"
    HARD_LINK = "hard_link"


@dataclass(frozen=True)
class DirOp:
    """A filesystem operation; ``path`` is the source for two-path operations."""

    kind: DirOpKind
    path: Path
    target: Optional[Path] = None
    mode: Optional[int] = None

    @classmethod
    def _single(cls, kind: DirOpKind, path: PathLike) -> "DirOp":
        return cls(kind, Path(os.fspath(path)))

    @classmethod
    def _pair(cls, kind: DirOpKind, source: PathLike, target: PathLike) -> "DirOp":
        return cls(kind, Path(os.fspath(source)), Path(os.fspath(target)))

    @classmethod
    def remove_dir(cls, path: PathLike) -> "DirOp":
        return cls._single(DirOpKind.REMOVE_DIR, path)

    @classmethod
    def remove_dir_all(cls, path: PathLike) -> "DirOp":
        return cls._single(DirOpKind.REMOVE_DIR_ALL, path)

    @classmethod
    def create_dir(cls, path: PathLike) -> "DirOp":
        return cls._single(DirOpKind.CREATE_DIR, path)

    @classmethod
    def create_dir_all(cls, path: PathLike) -> "DirOp":
        return cls._single(DirOpKind.CREATE_DIR_ALL, path)

    @classmethod
    def remove_file(cls, path: PathLike) -> "DirOp":
        return cls._single(DirOpKind.REMOVE_FILE, path)

    @classmethod
    def rename(cls, source: PathLike, target: PathLike) -> "DirOp":
        return cls._pair(DirOpKind.RENAME, source, target)

    @classmethod
    def copy(cls, source: PathLike, target: PathLike) -> "DirOp":
        return cls._pair(DirOpKind.COPY, source, target)

    @classmethod
    def hard_link(cls, source: PathLike, target: PathLike) -> "DirOp":
        return cls._pair(DirOpKind.HARD_LINK, source, target)

    @classmethod
    def set_permissions(cls, path: PathLike, mode: int) -> "DirOp":
        return cls(DirOpKind.SET_PERMISSIONS, Path(os.fspath(path)), mode=mode)