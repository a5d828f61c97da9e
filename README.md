# nativert

A small runtime that performs file, directory and TCP I/O on background
threads. File opens, directory operations and metadata lookups run on a
worker thread; every registered file and TCP stream gets its own reader and
writer threads. Filesystem calls are exposed as `asyncio` coroutines, stream
I/O as `concurrent.futures.Future` objects, and failures are raised as
`nativert.core.Error`.

## Installing

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `nativert.core` – shared types: `Error` (with `code`, `subject`, `state`,
  `location`), the `State`, `Subject` and `Location` enums, `Shutdown`,
  `OpenOptions`, `Metadata`, `DirEntry`, `DirOp`/`DirOpKind`, and the helpers
  `from_os_error` and `io_error`.
- `nativert.sockets` – `new_socket`, `new_for_addr` and `set_nonblock`.
- `nativert.thread_io` – `FileIo` (positional reads/writes), `StreamIo`
  (socket reads/writes) and `IoWorker`, which serves one handle with a reader
  thread and a writer thread.
- `nativert.thread_backend` – `ThreadRuntime` with `FileWrapper`,
  `TcpStream` and `TcpListener`.
- `nativert.directory` – `NativeRtDir`, `BackgroundOps` and `SeekableFile`.
- `nativert.runtime` – `NativeRt` and `NativeRtBuilder`.

## Building a runtime

`NativeRtBuilder` chooses the backend; the thread backend is the only one.

```python
from nativert.runtime import NativeRt, NativeRtBuilder

rt = NativeRtBuilder.all_backends().build()
for name, result in NativeRtBuilder.all_backends().build_each():
    print(name, result)  # result is a NativeRt or the Error it failed with
```

`NativeRt.builder()` returns a builder with nothing enabled; `.thread(True)`
or `.enable_all()` turns the backend on. `build()` with no backend enabled
raises an `Error` with code 501 and state `State.UNSUPPORTED`.

`NativeRtBuilder.env_backends()` reads the comma-separated `MFIO_FS_BACKENDS`
environment variable (for example `MFIO_FS_BACKENDS=thread`) and enables every
backend when it is unset. `NativeRt.default()` builds from it.

`NativeRt` is a context manager; `close()` stops the background worker and
releases every registered handle.

## Running a coroutine

`NativeRt.run(func)` calls `func(rt)`, runs the returned awaitable with
`asyncio.run` and returns its result.

## Files

```python
from nativert.core import OpenOptions
from nativert.runtime import NativeRt

async def main(rt):
    options = (
        OpenOptions().with_read(True).with_write(True).with_create(True).with_truncate(True)
    )
    fh = await rt.open("example.bin", options)
    await fh.write(bytes(range(128)))
    fh.rewind()
    data = await fh.read_to_end()
    fh.close()
    return data

with NativeRt.default() as rt:
    assert rt.run(main) == bytes(range(128))
```

`SeekableFile` keeps its own cursor (`pos`): `read` and `write` advance it,
`seek` and `rewind` move it. `read` returns `b""` at end of file.
`read_all(pos, size)` reads exactly `size` bytes without moving the cursor
and raises `Error` with state `State.NOP` if the file ends first.

## Directories

`NativeRt.current_dir()` returns a `NativeRtDir`; relative paths resolve
against it, or against the process working directory until
`NativeRt.set_cwd` is called.

```python
from nativert.core import DirOp

async def main(rt):
    cwd = rt.current_dir()
    await cwd.do_op(DirOp.create_dir_all("data/nested"))
    sub = await cwd.open_dir("data")
    print(await sub.path())
    async for entry in await sub.read_dir():
        print(entry.name, entry.is_dir)
    meta = await cwd.metadata("data")
    print(meta.len, meta.modified, meta.readonly)
    await cwd.do_op(DirOp.remove_dir_all("data"))
```

`open_dir` raises an `Error` with state `State.NOT_FOUND` for a missing path
and `State.INVALID` for a path that is not a directory. `DirOp` also offers
`remove_dir`, `create_dir`, `remove_file`, `rename`, `copy` and `hard_link`.

## TCP

```python
async def main(rt):
    listener = await rt.bind(("127.0.0.1", 0))
    client = await rt.connect(listener.local_addr())
    server, peer = listener.accept()

    client.write(b"ping").result()
    assert server.read(4).result() == b"ping"

    client.close()
    server.close()
    listener.close()
```

`TcpStream.read` and `TcpStream.write` return `concurrent.futures.Future`
objects; a read at end of stream fails with state `State.NOP`. Streams also
have `local_addr`, `peer_addr`, `shutdown(Shutdown.READ | WRITE | BOTH)` and
`close`. `TcpListener.accept()` blocks until a connection arrives and returns
`None` once the listener is closed; iterating a listener yields
`(stream, address)` pairs. `NativeRt.register_stream` takes ownership of an
already connected socket.

## What it does not do

- There is one backend, built on blocking calls and threads; no
  readiness-polling or completion-port backend is provided.
- `DirOp.set_permissions` is rejected with state `State.UNSUPPORTED`.
- `NativeRt.cancel_all_ops()` does not cancel single operations: it
  invalidates every registered file and stream, after which their I/O fails
  with state `State.BROKEN_PIPE`.