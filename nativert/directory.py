"""Directory handles, background filesystem operations and seekable file handles."""

from __future__ import annotations

import asyncio
import logging
import os
import queue
import shutil
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Protocol, TypeVar

from .core import (
    DirEntry,
    DirOp,
    DirOpKind,
    Error,
    Location,
    Metadata,
    OpenOptions,
    PathLike,
    State,
    Subject,
    from_os_error,
    io_error,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

_QUEUE_DEPTH = 16
_READ_CHUNK = 64 * 1024


class FileBackend(Protocol):
    """A backend that can take ownership of open file descriptors."""

    def register_file(self, file: Any) -> Any: ...


def _broken_pipe() -> Error:
    return Error(None, Subject.OUTPUT, State.BROKEN_PIPE, Location.FILESYSTEM)


def _failed(exc: BaseException) -> Future:
    future: Future = Future()
    future.set_exception(exc)
    return future


async def _wait(future: "Future[T]") -> T:
    return await asyncio.wrap_future(future)


class SeekableFile:
    """A positional file handle that keeps its own cursor."""

    def __init__(self, handle: Any) -> None:
        self._handle = handle
        self._pos = 0

    @property
    def pos(self) -> int:
        """The current cursor position."""
        return self._pos

    def __enter__(self) -> "SeekableFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def seek(self, pos: int) -> int:
        """Move the cursor to an absolute position."""
        if pos < 0:
            raise io_error(State.INVALID)
        self._pos = pos
        return pos

    def rewind(self) -> None:
        """Move the cursor back to the start."""
        self._pos = 0

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes at the cursor; returns b"" at end of file."""
        if size <= 0:
            return b""
        try:
            data = await _wait(self._handle.read_at(self._pos, size))
        except Error as exc:
            if exc.state is State.NOP:
                return b""
            raise
        self._pos += len(data)
        return data

    async def write(self, data: bytes) -> int:
        """Write all of ``data`` at the cursor; returns the number of bytes written."""
        view = memoryview(bytes(data))
        total = 0
        while total < len(view):
            written = await _wait(self._handle.write_at(self._pos, bytes(view[total:])))
            total += written
            self._pos += written
        return total

    async def read_all(self, pos: int, size: int) -> bytes:
        """Read exactly ``size`` bytes at ``pos`` without moving the cursor."""
        buf = bytearray()
        while len(buf) < size:
            buf += await _wait(self._handle.read_at(pos + len(buf), size - len(buf)))
        return bytes(buf)

    async def read_to_end(self) -> bytes:
        """Read from the cursor to the end of the file."""
        buf = bytearray()
        while chunk := await self.read(_READ_CHUNK):
            buf += chunk
        return bytes(buf)

    def close(self) -> None:
        """Release the underlying handle."""
        self._handle.close()


def _open_flags(options: OpenOptions) -> int:
    if options.read and options.write:
        flags = os.O_RDWR
    elif options.write:
        flags = os.O_WRONLY
    elif options.read:
        flags = os.O_RDONLY
    else:
        raise io_error(State.INVALID)
    if not options.write and (options.truncate or options.create or options.create_new):
        raise io_error(State.INVALID)
    if options.create_new:
        flags |= os.O_CREAT | os.O_EXCL
    else:
        if options.create:
            flags |= os.O_CREAT
        if options.truncate:
            flags |= os.O_TRUNC
    return flags | getattr(os, "O_CLOEXEC", 0) | getattr(os, "O_BINARY", 0)


def _open(path: Path, options: OpenOptions) -> int:
    return os.open(path, _open_flags(options), 0o666)


def _copy(source: Path, target: Path) -> None:
    shutil.copyfile(source, target)
    shutil.copymode(source, target)


def _apply(operation: DirOp) -> None:
    kind = operation.kind
    if kind is DirOpKind.SET_PERMISSIONS:
        raise io_error(State.UNSUPPORTED)
    if kind is DirOpKind.REMOVE_DIR:
        os.rmdir(operation.path)
    elif kind is DirOpKind.REMOVE_DIR_ALL:
        shutil.rmtree(operation.path)
    elif kind is DirOpKind.CREATE_DIR:
        os.mkdir(operation.path)
    elif kind is DirOpKind.CREATE_DIR_ALL:
        os.makedirs(operation.path, exist_ok=True)
    elif kind is DirOpKind.REMOVE_FILE:
        os.remove(operation.path)
    elif kind is DirOpKind.RENAME:
        os.replace(operation.path, operation.target)
    elif kind is DirOpKind.COPY:
        _copy(operation.path, operation.target)
    elif kind is DirOpKind.HARD_LINK:
        os.link(operation.path, operation.target)
    else:
        raise io_error(State.UNSUPPORTED)


class BackgroundOps:
    """Runs blocking filesystem calls on a worker thread, returning futures."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Optional[tuple[Callable[[], Any], Future]]]" = queue.Queue(
            maxsize=_QUEUE_DEPTH
        )
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def __enter__(self) -> "BackgroundOps":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _serve(self) -> None:
        while (item := self._queue.get()) is not None:
            work, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = work()
            except Error as exc:
                future.set_exception(exc)
            except OSError as exc:
                future.set_exception(from_os_error(exc))
            except Exception as exc:  # delivered to the waiter
                future.set_exception(exc)
            else:
                future.set_result(result)

    def _submit(self, work: Callable[[], T]) -> "Future[T]":
        with self._lock:
            if self._closed:
                return _failed(_broken_pipe())
            future: Future[T] = Future()
            self._queue.put((work, future))
            return future

    def open_file(self, path: PathLike, options: OpenOptions) -> "Future[int]":
        """Open a file; the future yields a raw file descriptor."""
        target = Path(os.fspath(path))
        return self._submit(lambda: _open(target, options))

    def metadata(self, path: PathLike) -> "Future[Metadata]":
        """Stat a path, following symlinks."""
        target = Path(os.fspath(path))
        return self._submit(lambda: Metadata.from_stat(os.stat(target)))

    def dir_op(self, operation: DirOp) -> "Future[None]":
        """Perform a directory operation."""
        return self._submit(lambda: _apply(operation))

    def close(self) -> None:
        """Finish queued work and stop the worker thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        self._thread.join()


def _entry(entry: "os.DirEntry[str]") -> DirEntry:
    return DirEntry(
        name=entry.name,
        is_dir=entry.is_dir(follow_symlinks=False),
        is_file=entry.is_file(follow_symlinks=False),
        is_symlink=entry.is_symlink(),
    )


class _ReadDir:
    """Asynchronous iterator over a directory listing."""

    def __init__(self, scanner: Any) -> None:
        self._scanner = scanner

    def __aiter__(self) -> AsyncIterator[DirEntry]:
        return self

    async def __anext__(self) -> DirEntry:
        try:
            entry = next(self._scanner)
        except StopIteration:
            self._scanner.close()
            raise StopAsyncIteration from None
        except OSError as exc:
            raise from_os_error(exc) from exc
        return _entry(entry)

    def close(self) -> None:
        self._scanner.close()


def _identity(options: OpenOptions) -> OpenOptions:
    return options


class NativeRtDir:
    """A directory handle; relative paths resolve against it (or the process cwd)."""

    def __init__(
        self,
        instance: FileBackend,
        ops: BackgroundOps,
        directory: Optional[PathLike] = None,
        map_options: Callable[[OpenOptions], OpenOptions] = _identity,
    ) -> None:
        self.instance = instance
        self.ops = ops
        self.directory: Optional[Path] = (
            None if directory is None else Path(os.fspath(directory))
        )
        self.map_options = map_options

    def __repr__(self) -> str:
        return f"NativeRtDir(directory={self.directory!r})"

    def _get_path(self) -> Path:
        if self.directory is not None:
            return self.directory
        return Path.cwd()

    def _join_path(self, other: PathLike) -> Path:
        path = Path(os.fspath(other))
        if path.is_absolute():
            return path
        return self._get_path() / path

    async def path(self) -> Path:
        """The absolute path of this directory."""
        try:
            return self._get_path()
        except OSError as exc:
            raise from_os_error(exc) from exc

    async def read_dir(self) -> _ReadDir:
        """List this directory; returns an asynchronous iterator of entries."""
        try:
            return _ReadDir(os.scandir(self._get_path()))
        except OSError as exc:
            raise from_os_error(exc) from exc

    async def open_file(self, path: PathLike, options: OpenOptions) -> SeekableFile:
        """Open a file, relative to this directory if the path is relative."""
        try:
            target = self._join_path(path)
        except OSError:
            raise Error(None, Subject.DIRECTORY, State.UNAVAILABLE, Location.FILESYSTEM)
        fd = await _wait(self.ops.open_file(target, self.map_options(options)))
        return SeekableFile(self.instance.register_file(fd))

    async def open_dir(self, path: PathLike) -> "NativeRtDir":
        """Open a subdirectory handle."""
        try:
            target = self._join_path(path)
        except OSError as exc:
            raise from_os_error(exc) from exc
        if target.is_dir():
            return NativeRtDir(self.instance, self.ops, target, self.map_options)
        if target.exists():
            raise Error(None, Subject.PATH, State.INVALID, Location.FILESYSTEM)
        raise Error(None, Subject.PATH, State.NOT_FOUND, Location.FILESYSTEM)

    async def metadata(self, path: PathLike) -> Metadata:
        """Metadata of a path, relative to this directory if the path is relative."""
        try:
            target = self._join_path(path)
        except OSError:
            raise Error(None, Subject.DIRECTORY, State.UNAVAILABLE, Location.FILESYSTEM)
        return await _wait(self.ops.metadata(target))

    async def do_op(self, operation: DirOp) -> None:
        """Perform a :class:`DirOp`, resolving relative paths against this directory."""
        try:
            resolved = DirOp(
                operation.kind,
                self._join_path(operation.path),
                None if operation.target is None else self._join_path(operation.target),
                operation.mode,
            )
        except OSError:
            raise Error(None, Subject.DIRECTORY, State.UNAVAILABLE, Location.FILESYSTEM)
        await _wait(self.ops.dir_op(resolved))