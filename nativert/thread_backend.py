"""Thread-pool backend: every handle gets its own reader and writer threads."""

from __future__ import annotations

import errno
import itertools
import logging
import os
import queue
import socket
import threading
import time
from concurrent.futures import Future
from typing import IO, Any, Generic, Iterator, Optional, TypeVar, Union

from .core import Error, OpenOptions, Shutdown, State, from_os_error, io_error
from .thread_io import FileIo, IoWorker, StreamIo

log = logging.getLogger(__name__)

_KICK_ROUNDS = 10
_KICK_ATTEMPTS = 16

H = TypeVar("H")


class _Store(Generic[H]):
    """Registry of live I/O workers, keyed by small integers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[int, IoWorker] = {}
        self._keys: Iterator[int] = itertools.count()
        self._cleared = False

    @property
    def cleared(self) -> bool:
        return self._cleared

    def insert(self, worker: IoWorker) -> int:
        with self._lock:
            key = next(self._keys)
            self._entries[key] = worker
            return key

    def worker(self, key: int) -> IoWorker:
        with self._lock:
            if self._cleared:
                raise io_error(State.BROKEN_PIPE)
            worker = self._entries.get(key)
        if worker is None:
            raise io_error(State.NOT_FOUND)
        return worker

    def remove(self, key: int) -> None:
        with self._lock:
            worker = self._entries.pop(key, None)
        if worker is not None:
            worker.close()

    def clear(self) -> None:
        with self._lock:
            workers = list(self._entries.values())
            self._entries.clear()
            self._cleared = True
        for worker in workers:
            worker.close()


def _failed(exc: BaseException) -> Future:
    future: Future = Future()
    future.set_exception(exc)
    return future


def _submit_read(store: _Store, key: int, pos: Any, size: int) -> "Future[bytes]":
    try:
        return store.worker(key).submit_read(pos, size)
    except Error as exc:
        return _failed(exc)


def _submit_write(store: _Store, key: int, pos: Any, data: bytes) -> "Future[int]":
    try:
        return store.worker(key).submit_write(pos, data)
    except Error as exc:
        return _failed(exc)


class FileWrapper:
    """A registered file; reads and writes are positional and return futures."""

    def __init__(self, key: int, store: _Store) -> None:
        self._key = key
        self._store = store
        self._closed = False

    def __enter__(self) -> "FileWrapper":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def read_at(self, pos: int, size: int) -> "Future[bytes]":
        """Read up to ``size`` bytes at ``pos``; a short read yields fewer bytes."""
        return _submit_read(self._store, self._key, pos, size)

    def write_at(self, pos: int, data: bytes) -> "Future[int]":
        """Write ``data`` at ``pos``; the future yields the number of bytes written."""
        return _submit_write(self._store, self._key, pos, data)

    def close(self) -> None:
        """Finish pending work, then release the file."""
        if self._closed:
            return
        self._closed = True
        self._store.remove(self._key)


class TcpStream:
    """A registered TCP stream; reads and writes return futures."""

    def __init__(self, key: int, store: _Store) -> None:
        self._key = key
        self._store = store
        self._closed = False

    @classmethod
    def _register(cls, sock: socket.socket, store: _Store) -> "TcpStream":
        sock.settimeout(None)
        return cls(store.insert(IoWorker(StreamIo(sock))), store)

    def __enter__(self) -> "TcpStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _socket(self) -> socket.socket:
        handle = self._store.worker(self._key).handle
        assert isinstance(handle, StreamIo)
        return handle.socket

    def read(self, size: int) -> "Future[bytes]":
        """Read up to ``size`` bytes; fails with ``State.NOP`` at end of stream."""
        return _submit_read(self._store, self._key, None, size)

    def write(self, data: bytes) -> "Future[int]":
        """Send ``data``; the future yields the number of bytes sent."""
        return _submit_write(self._store, self._key, None, data)

    def local_addr(self) -> Any:
        try:
            return self._socket().getsockname()
        except OSError as exc:
            raise from_os_error(exc) from exc

    def peer_addr(self) -> Any:
        try:
            return self._socket().getpeername()
        except OSError as exc:
            raise from_os_error(exc) from exc

    def shutdown(self, how: Shutdown) -> None:
        try:
            self._socket().shutdown(how.socket_how)
        except OSError as exc:
            raise from_os_error(exc) from exc

    def close(self) -> None:
        """Finish pending writes, shut the connection down and release it."""
        if self._closed:
            return
        self._closed = True
        log.debug("drop stream")
        self._store.remove(self._key)


class TcpListener:
    """A listening socket served by a background accept thread."""

    def __init__(self, sock: socket.socket, store: _Store) -> None:
        sock.settimeout(None)
        self._sock = sock
        self._store = store
        self._exit = threading.Event()
        self._incoming: "queue.SimpleQueue[Optional[tuple[socket.socket, Any]]]" = (
            queue.SimpleQueue()
        )
        self._closed = False
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def __enter__(self) -> "TcpListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[tuple[TcpStream, Any]]:
        while (item := self.accept()) is not None:
            yield item

    def _serve(self) -> None:
        while not self._exit.is_set():
            try:
                conn, addr = self._sock.accept()
            except ConnectionAbortedError:
                continue
            except OSError:
                break
            if self._exit.is_set():
                conn.close()
                break
            self._incoming.put((conn, addr))
        self._incoming.put(None)

    def local_addr(self) -> Any:
        try:
            return self._sock.getsockname()
        except OSError as exc:
            raise from_os_error(exc) from exc

    def accept(self) -> Optional[tuple[TcpStream, Any]]:
        """Wait for the next connection; returns None once the listener has stopped."""
        item = self._incoming.get()
        if item is None:
            self._incoming.put(None)
            return None
        conn, addr = item
        return TcpStream._register(conn, self._store), addr

    def _kick(self) -> None:
        try:
            addr = self._sock.getsockname()
        except OSError:
            log.error("Unable to get local address, listener thread may end up deadlocking...")
            return
        host = addr[0]
        if host in ("", "0.0.0.0"):
            host = "127.0.0.1"
        elif host == "::":
            host = "::1"
        target = (host, *addr[1:])
        for attempt in range(_KICK_ROUNDS):
            for _ in range(_KICK_ATTEMPTS):
                if not self._thread.is_alive():
                    return
                probe = socket.socket(self._sock.family, socket.SOCK_STREAM)
                try:
                    probe.settimeout(1.0)
                    probe.connect(target)
                    return
                except OSError as exc:
                    if exc.errno != errno.EADDRNOTAVAIL:
                        break
                    time.sleep((1 << attempt) / 1000)
                finally:
                    probe.close()
            else:
                continue
            break
        if self._thread.is_alive():
            log.error("Unable initiate socket shutdown. We may block forever.")

    def close(self) -> None:
        """Stop the accept thread and close the listening socket."""
        if self._closed:
            return
        self._closed = True
        self._exit.set()
        self._kick()
        self._thread.join()
        while True:
            try:
                item = self._incoming.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                item[0].close()
        self._incoming.put(None)
        self._sock.close()


class ThreadRuntime:
    """Backend that performs blocking I/O on dedicated threads."""

    def __init__(self) -> None:
        self._file_store: _Store = _Store()
        self._tcp_store: _Store = _Store()

    @classmethod
    def try_new(cls) -> "ThreadRuntime":
        return cls()

    def __enter__(self) -> "ThreadRuntime":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def register_file(self, file: Union[int, IO[Any]]) -> FileWrapper:
        """Take ownership of an open file (object or descriptor)."""
        return FileWrapper(self._file_store.insert(IoWorker(FileIo(file))), self._file_store)

    def register_stream(self, sock: socket.socket) -> TcpStream:
        """Take ownership of a connected socket."""
        return TcpStream._register(sock, self._tcp_store)

    def register_listener(self, sock: socket.socket) -> TcpListener:
        """Take ownership of a bound, listening socket."""
        return TcpListener(sock, self._tcp_store)

    def tcp_connect(self, address: tuple) -> "Future[TcpStream]":
        """Connect to ``(host, port)``, trying each resolved address in turn."""
        future: Future[TcpStream] = Future()
        try:
            infos = socket.getaddrinfo(address[0], address[1], type=socket.SOCK_STREAM)
        except (OSError, IndexError, TypeError):
            future.set_exception(io_error(State.NOP))
            return future

        def connect() -> None:
            last: Optional[OSError] = None
            for family, kind, proto, _, sockaddr in infos:
                sock = socket.socket(family, kind, proto)
                try:
                    sock.connect(sockaddr)
                except OSError as exc:
                    sock.close()
                    last = exc
                    continue
                future.set_result(self.register_stream(sock))
                return
            if last is None:
                future.set_exception(io_error(State.NOP))
            else:
                future.set_exception(from_os_error(last))

        threading.Thread(target=connect, daemon=True).start()
        return future

    def cancel_all_ops(self) -> None:
        """Invalidate every registered file and stream."""
        self._file_store.clear()
        self._tcp_store.clear()

    def close(self) -> None:
        self.cancel_all_ops()


def map_options(options: OpenOptions) -> OpenOptions:
    """This backend needs no special open flags."""
    return options