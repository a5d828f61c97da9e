"""Blocking I/O handles served by dedicated reader and writer threads."""

from __future__ import annotations

import logging
import os
import queue
import socket
import threading
from concurrent.futures import Future
from typing import IO, Any, Optional, Protocol, Union

from .core import Error, State, from_os_error, io_error

log = logging.getLogger(__name__)

READ_JOIN_TIMEOUT = 5.0


class IoHandle(Protocol):
    """Something that can be read from and written to at a position."""

    def read_at(self, size: int, offset: Any) -> bytes: ...

    def write_at(self, data: bytes, offset: Any) -> int: ...

    def close(self) -> None: ...


class FileIo:
    """Positional reads and writes on a file; the file is closed by :meth:`close`."""

    def __init__(self, file: Union[int, IO[Any]]) -> None:
        self._file = file
        self._fd = file if isinstance(file, int) else file.fileno()
        self._lock = threading.RLock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise io_error(State.BROKEN_PIPE)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to ``size`` bytes starting at ``offset``."""
        with self._lock:
            self._check_open()
            try:
                if hasattr(os, "pread"):
                    return os.pread(self._fd, size, offset)
                os.lseek(self._fd, offset, os.SEEK_SET)
                return os.read(self._fd, size)
            except OSError as exc:
                raise from_os_error(exc) from exc

    def write_at(self, data: bytes, offset: int) -> int:
        """Write ``data`` at ``offset``; returns the number of bytes written."""
        with self._lock:
            self._check_open()
            try:
                if hasattr(os, "pwrite"):
                    return os.pwrite(self._fd, data, offset)
                os.lseek(self._fd, offset, os.SEEK_SET)
                return os.write(self._fd, data)
            except OSError as exc:
                raise from_os_error(exc) from exc

    def close(self) -> None:
        """Refuse further I/O and close the file."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                if isinstance(self._file, int):
                    os.close(self._file)
                else:
                    self._file.close()
            except OSError:
                log.debug("error closing file", exc_info=True)


class StreamIo:
    """Stream reads and writes on a connected socket; positions are ignored."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._closed = False

    @property
    def socket(self) -> socket.socket:
        return self._sock

    @property
    def closed(self) -> bool:
        return self._closed

    def read_at(self, size: int, offset: Any = None) -> bytes:
        """Read until ``size`` bytes arrive, the peer closes, or an error follows some data."""
        if self._closed:
            raise io_error(State.BROKEN_PIPE)
        buf = bytearray(size)
        view = memoryview(buf)
        total = 0
        while total < size:
            try:
                count = self._sock.recv_into(view[total:])
            except OSError as exc:
                if total:
                    break
                raise from_os_error(exc) from exc
            if count == 0:
                break
            total += count
        return bytes(buf[:total])

    def write_at(self, data: bytes, offset: Any = None) -> int:
        """Write until all of ``data`` is sent or an error follows some progress."""
        if self._closed:
            raise io_error(State.BROKEN_PIPE)
        view = memoryview(data)
        total = 0
        while total < len(view):
            try:
                count = self._sock.send(view[total:])
            except OSError as exc:
                if total:
                    break
                raise from_os_error(exc) from exc
            if count == 0:
                break
            total += count
        return total

    def close(self) -> None:
        """Refuse further I/O, shut the connection down both ways and close the socket."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()


class IoWorker:
    """Runs reads on one thread and writes on another, completing futures in order."""

    def __init__(self, handle: IoHandle) -> None:
        self._handle = handle
        self._reads: "queue.SimpleQueue[Optional[tuple[Any, int, Future[bytes]]]]" = (
            queue.SimpleQueue()
        )
        self._writes: "queue.SimpleQueue[Optional[tuple[Any, bytes, Future[int]]]]" = (
            queue.SimpleQueue()
        )
        self._lock = threading.Lock()
        self._closed = False
        self._read_thread = threading.Thread(target=self._serve_reads, daemon=True)
        self._write_thread = threading.Thread(target=self._serve_writes, daemon=True)
        self._read_thread.start()
        self._write_thread.start()

    @property
    def handle(self) -> IoHandle:
        return self._handle

    def __enter__(self) -> "IoWorker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit_read(self, pos: Any, size: int) -> "Future[bytes]":
        """Queue a read; the future yields the bytes read, which may be fewer than asked."""
        future: Future[bytes] = Future()
        with self._lock:
            if self._closed:
                raise io_error(State.BROKEN_PIPE)
            if size <= 0:
                future.set_result(b"")
                return future
            self._reads.put((pos, size, future))
        return future

    def submit_write(self, pos: Any, data: bytes) -> "Future[int]":
        """Queue a write; the future yields the number of bytes written."""
        future: Future[int] = Future()
        with self._lock:
            if self._closed:
                raise io_error(State.BROKEN_PIPE)
            self._writes.put((pos, bytes(data), future))
        return future

    def _serve_reads(self) -> None:
        while (item := self._reads.get()) is not None:
            pos, size, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                data = self._handle.read_at(size, pos)
            except Exception as exc:  # delivered to the waiter
                future.set_exception(exc)
                continue
            if not data:
                future.set_exception(io_error(State.NOP))
            else:
                future.set_result(data)

    def _serve_writes(self) -> None:
        while (item := self._writes.get()) is not None:
            pos, data, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                written = self._handle.write_at(data, pos)
            except Exception as exc:  # delivered to the waiter
                future.set_exception(exc)
                continue
            if written == 0 and data:
                future.set_exception(io_error(State.NOP))
            else:
                future.set_result(written)

    def close(self) -> None:
        """Finish queued writes, close the handle, then wait for the reader to drain."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._reads.put(None)
            self._writes.put(None)
        self._write_thread.join()
        self._handle.close()
        log.debug("handle closed")
        self._read_thread.join(READ_JOIN_TIMEOUT)
        if self._read_thread.is_alive():
            log.error(
                "Unable to join read thread in %s seconds! Leaving the thread detached.",
                READ_JOIN_TIMEOUT,
            )


__all__ = ["FileIo", "StreamIo", "IoWorker", "IoHandle", "Error"]