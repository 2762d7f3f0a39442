from __future__ import annotations

import logging
import socket
import struct
import threading

from .errors import NotifyError, WatchError

log = logging.getLogger(__name__)

LENGTH_PREFIX = struct.Struct("!I")  # byte count of the UTF-8 text that follows
ENC = "utf-8"

DEFAULT_TARGET_PORT = 5000
CONNECT_TIMEOUT = 10.0  # seconds
READ_POLL_INTERVAL = 0.25  # seconds between cancellation checks
RECV_SIZE = 1024


# ----------------------------
# Framing
# ----------------------------

def encode_payload(text: str) -> bytes:
    data = text.encode(ENC)
    return LENGTH_PREFIX.pack(len(data)) + data


def decode_payload(frame: bytes) -> str:
    if len(frame) < LENGTH_PREFIX.size:
        raise ValueError("frame too short to hold a length prefix")
    (length,) = LENGTH_PREFIX.unpack_from(frame)
    body = frame[LENGTH_PREFIX.size:]
    if len(body) != length:
        raise ValueError(f"length prefix says {length} bytes, got {len(body)}")
    return body.decode(ENC)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = b""
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise ConnectionError("socket closed while reading frame")
        buf += chunk
    return buf


def read_payload(sock: socket.socket) -> str:
    """Read one length-prefixed frame off a stream socket (the device side)."""
    header = _recv_exact(sock, LENGTH_PREFIX.size)
    (length,) = LENGTH_PREFIX.unpack(header)
    return _recv_exact(sock, length).decode(ENC)


# ----------------------------
# Notifier
# ----------------------------

def connect(target_ip: str, target_port: int, timeout: float = CONNECT_TIMEOUT) -> socket.socket:
    try:
        sock = socket.create_connection((target_ip, target_port), timeout=timeout)
    except OSError as exc:
        raise NotifyError(f"dialing target device {target_ip}:{target_port}") from exc
    sock.settimeout(None)
    return sock


def send(sock: socket.socket, text: str) -> None:
    """Write the framed payload in one go. The socket is closed if that fails."""
    try:
        sock.sendall(encode_payload(text))
    except OSError as exc:
        sock.close()
        raise NotifyError("writing to connection") from exc


def notify(target_ip: str, target_port: int, text: str) -> socket.socket:
    sock = connect(target_ip, target_port)
    send(sock, text)
    return sock


# ----------------------------
# Completion watcher
# ----------------------------

def watch_for_completion(
    sock: socket.socket,
    cancel: threading.Event,
    poll_interval: float = READ_POLL_INTERVAL,
) -> bool:
    """Block until the device hangs up or ``cancel`` fires.

    Returns True when the device closed (or reset) the connection, which is
    how it reports a finished installation, and False when cancelled first.
    Anything the device sends is discarded. ``cancel`` is always set on exit.
    """
    try:
        try:
            sock.settimeout(poll_interval)
        except OSError as exc:
            raise WatchError("preparing connection for reads") from exc

        while not cancel.is_set():
            try:
                data = sock.recv(RECV_SIZE)
            except socket.timeout:
                continue
            except ConnectionResetError:
                return True
            except OSError as exc:
                raise WatchError("reading from connection") from exc
            if not data:
                return True
            log.debug("Discarding %d unexpected byte(s) from target device", len(data))
        return False
    finally:
        cancel.set()
