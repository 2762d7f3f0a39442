from __future__ import annotations

import errno
import socket
import struct
import threading
import time

import pytest

from conftest import free_port
from fbisender import protocol
from fbisender.errors import NotifyError, WatchError


@pytest.mark.parametrize(
    "text",
    [
        "",
        "192.168.1.5:8080/game.cia",
        "192.168.1.5:8080/a.cia\n192.168.1.5:8080/b%20c.tik\n192.168.1.5:8080/d.3dsx",
        "10.0.0.2:8080/%E3%82%BC.cia\nü",
    ],
)
def test_frame_roundtrip(text):
    frame = protocol.encode_payload(text)
    (length,) = struct.unpack("!I", frame[:4])
    assert length == len(text.encode("utf-8")) == len(frame) - 4
    assert protocol.decode_payload(frame) == text


def test_length_prefix_is_big_endian():
    assert protocol.encode_payload("ab") == b"\x00\x00\x00\x02ab"


def test_decode_rejects_length_mismatch():
    with pytest.raises(ValueError):
        protocol.decode_payload(b"\x00\x00\x00\x05abc")
    with pytest.raises(ValueError):
        protocol.decode_payload(b"\x00\x00")


def test_send_then_read_over_socket():
    a, b = socket.socketpair()
    with a, b:
        protocol.send(a, "h:1/a.cia\nh:1/b.cia")
        assert protocol.read_payload(b) == "h:1/a.cia\nh:1/b.cia"


def test_read_payload_fails_on_short_stream():
    a, b = socket.socketpair()
    with b:
        a.sendall(b"\x00\x00\x00\x10abc")
        a.close()
        with pytest.raises(ConnectionError):
            protocol.read_payload(b)


def test_connect_to_unreachable_target():
    with pytest.raises(NotifyError) as exc:
        protocol.connect("127.0.0.1", free_port(), timeout=2)
    assert "dialing target device" in str(exc.value)


def test_send_failure_closes_socket():
    a, b = socket.socketpair()
    b.close()
    a.shutdown(socket.SHUT_WR)
    with pytest.raises(NotifyError):
        protocol.send(a, "h:1/a.cia")
    assert a.fileno() == -1


def test_watcher_peer_close_is_success():
    a, b = socket.socketpair()
    cancel = threading.Event()
    b.close()
    with a:
        assert protocol.watch_for_completion(a, cancel, poll_interval=0.05) is True
    assert cancel.is_set()


def test_watcher_discards_data_until_close():
    a, b = socket.socketpair()
    cancel = threading.Event()
    b.sendall(b"progress 50%")
    b.close()
    with a:
        assert protocol.watch_for_completion(a, cancel, poll_interval=0.05) is True


def test_watcher_stops_on_cancel():
    a, b = socket.socketpair()
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()
    with a, b:
        start = time.monotonic()
        assert protocol.watch_for_completion(a, cancel, poll_interval=0.05) is False
        assert time.monotonic() - start < 2


class _FailingSocket:
    def __init__(self, exc):
        self.exc = exc

    def settimeout(self, value):
        pass

    def recv(self, size):
        raise self.exc


def test_watcher_connection_reset_is_success():
    cancel = threading.Event()
    sock = _FailingSocket(ConnectionResetError(errno.ECONNRESET, "connection reset by peer"))
    assert protocol.watch_for_completion(sock, cancel) is True
    assert cancel.is_set()


def test_watcher_other_read_error_propagates():
    cancel = threading.Event()
    sock = _FailingSocket(OSError(errno.EIO, "input/output error"))
    with pytest.raises(WatchError):
        protocol.watch_for_completion(sock, cancel)
    assert cancel.is_set()
