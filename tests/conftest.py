from __future__ import annotations

import socket
import threading
import urllib.request

import pytest

from fbisender.protocol import read_payload


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeDevice:
    """Stands in for the loader: reads one payload, optionally fetches it, then hangs up.

    mode="close" hangs up right after reading (or fetching); mode="hold" keeps
    the connection open until stop() is called.
    """

    def __init__(self, mode: str = "close", fetch: bool = False):
        self.mode = mode
        self.fetch = fetch
        self.payload: str | None = None
        self.fetched: dict[str, bytes] = {}
        self.errors: list[BaseException] = []
        self.received = threading.Event()
        self.release = threading.Event()
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.sock.settimeout(10)
        self.port = self.sock.getsockname()[1]
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> "FakeDevice":
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            conn, _ = self.sock.accept()
        except OSError as exc:
            self.errors.append(exc)
            return
        with conn:
            try:
                self.payload = read_payload(conn)
                self.received.set()
                if self.fetch:
                    for url in self.payload.split("\n"):
                        with urllib.request.urlopen("http://" + url, timeout=5) as resp:
                            self.fetched[url] = resp.read()
                if self.mode == "hold":
                    self.release.wait(10)
            except Exception as exc:
                self.errors.append(exc)

    def stop(self) -> None:
        self.release.set()
        self._thread.join(5)
        self.sock.close()


@pytest.fixture
def fake_device():
    devices: list[FakeDevice] = []

    def factory(**kwargs) -> FakeDevice:
        device = FakeDevice(**kwargs).start()
        devices.append(device)
        return device

    yield factory
    for device in devices:
        device.stop()


@pytest.fixture
def package_dir(tmp_path):
    d = tmp_path / "packages"
    d.mkdir()
    (d / "game.cia").write_bytes(b"CIA-DATA")
    (d / "Ticket One.TIK").write_bytes(b"TIK-DATA")
    (d / "homebrew.3dsx").write_bytes(b"3DSX-DATA")
    (d / "readme.txt").write_text("not a package")
    (d / "nested.cia").mkdir()
    return d
