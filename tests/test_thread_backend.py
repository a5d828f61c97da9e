import socket

import pytest

from nativert.core import Error, OpenOptions, Shutdown, State
from nativert.thread_backend import ThreadRuntime, map_options

TIMEOUT = 10


@pytest.fixture
def runtime():
    rt = ThreadRuntime.try_new()
    yield rt
    rt.close()


@pytest.fixture
def listener(runtime):
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    lst = runtime.register_listener(sock)
    yield lst
    lst.close()


def _connected_pair(runtime, listener):
    client = runtime.tcp_connect(listener.local_addr()).result(TIMEOUT)
    accepted = listener.accept()
    assert accepted is not None
    return client, accepted[0]


def test_file_write_then_read_round_trip(runtime, tmp_path):
    path = tmp_path / "data.bin"
    data = bytes(range(128))
    with open(path, "w+b") as fh:
        wrapper = runtime.register_file(fh)
        assert wrapper.write_at(0, data).result(TIMEOUT) == len(data)
        assert wrapper.read_at(0, len(data)).result(TIMEOUT) == data
        assert wrapper.read_at(10, 5).result(TIMEOUT) == data[10:15]
        wrapper.close()


def test_short_read_and_eof(runtime, tmp_path):
    path = tmp_path / "text.txt"
    path.write_bytes(b"Test test 42")
    wrapper = runtime.register_file(open(path, "rb"))
    assert wrapper.read_at(0, 100).result(TIMEOUT) == b"Test test 42"
    with pytest.raises(Error) as info:
        wrapper.read_at(12, 8).result(TIMEOUT)
    assert info.value.state is State.NOP
    wrapper.close()


def test_closed_file_wrapper_reports_not_found(runtime, tmp_path):
    path = tmp_path / "x"
    path.write_bytes(b"abc")
    wrapper = runtime.register_file(open(path, "rb"))
    wrapper.close()
    with pytest.raises(Error) as info:
        wrapper.read_at(0, 1).result(TIMEOUT)
    assert info.value.state is State.NOT_FOUND


def test_cancel_all_ops_invalidates_handles(runtime, tmp_path):
    path = tmp_path / "y"
    path.write_bytes(b"abc")
    wrapper = runtime.register_file(open(path, "rb"))
    runtime.cancel_all_ops()
    with pytest.raises(Error) as info:
        wrapper.read_at(0, 1).result(TIMEOUT)
    assert info.value.state is State.BROKEN_PIPE
    wrapper.close()


def test_tcp_round_trip(runtime, listener):
    client, server = _connected_pair(runtime, listener)
    payload = b"hello over tcp"
    assert client.write(payload).result(TIMEOUT) == len(payload)
    assert server.read(len(payload)).result(TIMEOUT) == payload
    assert server.write(payload[::-1]).result(TIMEOUT) == len(payload)
    assert client.read(len(payload)).result(TIMEOUT) == payload[::-1]
    client.close()
    server.close()


def test_addresses_match(runtime, listener):
    client, server = _connected_pair(runtime, listener)
    assert client.peer_addr() == listener.local_addr()
    assert server.peer_addr() == client.local_addr()
    client.close()
    server.close()


def test_shutdown_write_gives_peer_eof(runtime, listener):
    client, server = _connected_pair(runtime, listener)
    client.shutdown(Shutdown.WRITE)
    with pytest.raises(Error) as info:
        server.read(4).result(TIMEOUT)
    assert info.value.state is State.NOP
    client.close()
    server.close()


def test_connect_refused(runtime):
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    addr = probe.getsockname()
    probe.close()
    with pytest.raises(Error) as info:
        runtime.tcp_connect(addr).result(TIMEOUT)
    assert info.value.state is State.CONNECTION_REFUSED


def test_listener_close_ends_accept(runtime):
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    lst = runtime.register_listener(sock)
    lst.close()
    assert lst.accept() is None
    assert list(lst) == []


def test_closed_stream_address_not_found(runtime, listener):
    client, server = _connected_pair(runtime, listener)
    client.close()
    with pytest.raises(Error) as info:
        client.local_addr()
    assert info.value.state is State.NOT_FOUND
    server.close()


def test_map_options_is_identity():
    options = OpenOptions().with_read(True).with_write(True)
    assert map_options(options) == options