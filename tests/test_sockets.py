import os
import socket

import pytest

from nativert.sockets import new_for_addr, new_socket, set_nonblock


def test_new_for_addr_ipv4_nonblocking():
    family, sock = new_for_addr(("127.0.0.1", 0), True)
    with sock:
        assert family == socket.AF_INET
        assert sock.family == socket.AF_INET
        assert sock.type == socket.SOCK_STREAM
        assert sock.getblocking() is False


def test_new_for_addr_blocking():
    family, sock = new_for_addr(("127.0.0.1", 0), False)
    with sock:
        assert sock.getblocking() is True
        assert family == socket.AF_INET


def test_new_for_addr_ipv6_family():
    family, sock = new_for_addr(("::1", 0, 0, 0), True)
    with sock:
        assert family == socket.AF_INET6
        assert sock.family == socket.AF_INET6


def test_new_for_addr_rejects_hostname():
    with pytest.raises(ValueError):
        new_for_addr(("not an address", 0), True)


def test_new_socket_is_not_inheritable():
    with new_socket(socket.AF_INET, socket.SOCK_STREAM, False) as sock:
        assert sock.get_inheritable() is False
        assert sock.getblocking() is True


def test_new_socket_can_bind_and_listen():
    with new_socket(socket.AF_INET, socket.SOCK_STREAM, True) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        host, port = sock.getsockname()
        assert host == "127.0.0.1"
        assert port > 0


def test_set_nonblock_on_pipe():
    read_fd, write_fd = os.pipe()
    try:
        set_nonblock(read_fd)
        assert os.get_blocking(read_fd) is False
        with pytest.raises(BlockingIOError):
            os.read(read_fd, 1)
    finally:
        os.close(read_fd)
        os.close(write_fd)


def test_set_nonblock_bad_fd():
    read_fd, write_fd = os.pipe()
    os.close(read_fd)
    os.close(write_fd)
    with pytest.raises(OSError):
        set_nonblock(read_fd)