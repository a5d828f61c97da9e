"""The native runtime: backend selection, filesystem access and TCP networking."""

from __future__ import annotations

import asyncio
import os
import socket
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar, Union

from .core import (
    Error,
    Location,
    OpenOptions,
    PathLike,
    State,
    Subject,
    from_os_error,
    io_error,
)
from .directory import BackgroundOps, NativeRtDir, SeekableFile
from .thread_backend import TcpListener, TcpStream, ThreadRuntime, map_options

T = TypeVar("T")

ENV_VAR = "MFIO_FS_BACKENDS"
_LISTEN_BACKLOG = 128


def _unsupported() -> Error:
    return Error(501, Subject.BACKEND, State.UNSUPPORTED, Location.FILESYSTEM)


@dataclass(frozen=True)
class NativeRtBuilder:
    """Chooses which I/O backends to try; the order of backends is fixed: ``thread``."""

    use_thread: bool = False

    @classmethod
    def all_backends(cls) -> "NativeRtBuilder":
        """A builder with every backend enabled."""
        return cls(use_thread=True)

    @classmethod
    def env_backends(cls) -> "NativeRtBuilder":
        """Backends named, comma separated, in ``MFIO_FS_BACKENDS``; all of them if unset."""
        value = os.environ.get(ENV_VAR)
        if value is None:
            return cls.all_backends()
        names = value.split(",")
        return cls(use_thread="thread" in names)

    def enable_all(self) -> "NativeRtBuilder":
        return type(self).all_backends()

    def thread(self, enabled: bool) -> "NativeRtBuilder":
        """Enable or disable the thread backend."""
        return replace(self, use_thread=enabled)

    def build(self) -> "NativeRt":
        """Build a runtime from the first enabled backend that starts."""
        if self.use_thread:
            return NativeRt(ThreadRuntime.try_new(), map_options)
        raise _unsupported()

    def build_each(self) -> "list[tuple[str, Union[NativeRt, Error]]]":
        """Try every enabled backend; each pair holds the runtime or the error it failed with."""
        results: list[tuple[str, Union[NativeRt, Error]]] = []
        if self.use_thread:
            try:
                results.append(("thread", NativeRt(ThreadRuntime.try_new(), map_options)))
            except Error as exc:
                results.append(("thread", exc))
        return results


def _bind(address: tuple) -> socket.socket:
    infos = socket.getaddrinfo(
        address[0], address[1], type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )
    last: Union[OSError, None] = None
    for family, kind, proto, _, sockaddr in infos:
        sock = socket.socket(family, kind, proto)
        try:
            if os.name == "posix":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(_LISTEN_BACKLOG)
        except OSError as exc:
            sock.close()
            last = exc
            continue
        return sock
    if last is not None:
        raise last
    raise io_error(State.INVALID)


class NativeRt:
    """Runtime backed by the operating system's files and sockets."""

    def __init__(
        self,
        instance: ThreadRuntime,
        options_mapper: Callable[[OpenOptions], OpenOptions] = map_options,
    ) -> None:
        self._instance = instance
        self._cwd = NativeRtDir(instance, BackgroundOps(), None, options_mapper)
        self._closed = False

    @classmethod
    def builder(cls) -> NativeRtBuilder:
        """A builder with no backends enabled."""
        return NativeRtBuilder()

    @classmethod
    def default(cls) -> "NativeRt":
        """A runtime from the backends named by the environment."""
        return NativeRtBuilder.env_backends().build()

    def __repr__(self) -> str:
        return f"NativeRt(cwd={self._cwd!r})"

    def __enter__(self) -> "NativeRt":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def instance(self) -> ThreadRuntime:
        return self._instance

    def current_dir(self) -> NativeRtDir:
        """The directory handle relative paths are resolved against."""
        return self._cwd

    def run(self, func: Callable[["NativeRt"], Awaitable[T]]) -> T:
        """Call ``func`` with this runtime and drive the awaitable it returns to completion."""

        async def main() -> T:
            return await func(self)

        return asyncio.run(main())

    async def open(self, path: PathLike, options: OpenOptions) -> SeekableFile:
        """Open a file relative to the current directory."""
        return await self._cwd.open_file(path, options)

    async def connect(self, address: tuple) -> TcpStream:
        """Connect to ``(host, port)``."""
        return await asyncio.wrap_future(self._instance.tcp_connect(address))

    async def bind(self, address: tuple) -> TcpListener:
        """Listen on ``(host, port)``."""
        try:
            sock = _bind(address)
        except OSError as exc:
            raise from_os_error(exc) from exc
        return self._instance.register_listener(sock)

    def register_stream(self, sock: socket.socket) -> TcpStream:
        """Take ownership of a connected socket."""
        return self._instance.register_stream(sock)

    def cancel_all_ops(self) -> None:
        self._instance.cancel_all_ops()

    def set_cwd(self, path: PathLike) -> None:
        self._cwd.directory = Path(os.fspath(path))

    def close(self) -> None:
        """Stop background work and release every registered handle."""
        if self._closed:
            return
        self._closed = True
        self._cwd.ops.close()
        self._instance.close()


__all__ = ["NativeRt", "NativeRtBuilder", "ENV_VAR"]

_: Any = None