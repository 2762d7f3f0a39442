from __future__ import annotations

import enum
import logging
import os
import signal
import socket
import threading
from pathlib import Path

from . import protocol
from .config import Config
from .errors import DirectoryError, NotifyError, ServerError, WatchError
from .manifest import Manifest, build_manifest
from .server import SHUTDOWN_GRACE, FileServer

log = logging.getLogger(__name__)

WAIT_POLL_INTERVAL = 0.1  # seconds


class Outcome(enum.Enum):
    COMPLETED = "completed"
    READ_ERROR = "read-error"
    INTERRUPTED = "interrupted"
    SERVER_ERROR = "server-error"


class SignalInterrupt:
    """Maps OS termination signals onto a single 'interrupt requested' event.

    Handlers can only be installed from the main thread; use as a context
    manager so the previous handlers come back afterwards.
    """

    def __init__(self, signals=(signal.SIGINT, signal.SIGTERM)):
        self.signals = tuple(signals)
        self.event = threading.Event()
        self.signum: int | None = None
        self._previous: dict = {}

    def install(self) -> None:
        for sig in self.signals:
            self._previous[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def __enter__(self) -> "SignalInterrupt":
        self.install()
        return self

    def __exit__(self, *exc_info) -> None:
        self.restore()

    def _handle(self, signum, _frame) -> None:
        self.trigger(signum)

    def trigger(self, signum: int = signal.SIGTERM) -> None:
        self.signum = signum
        self.event.set()

    def is_set(self) -> bool:
        return self.event.is_set()

    @property
    def name(self) -> str:
        if self.signum is None:
            return "interrupt"
        return signal.Signals(self.signum).name


class TransferSession:
    """One delivery run: build the manifest, serve it, notify the device, wait, tear down.

    A session is single-use. ``cancel`` is the shared one-shot signal; the
    completion watcher sets it when it stops, and the session sets it itself
    when an interrupt arrives so the watcher unwinds.
    """

    def __init__(
        self,
        config: Config,
        target_path: str | Path,
        interrupt: SignalInterrupt | None = None,
        *,
        shutdown_grace: float = SHUTDOWN_GRACE,
        poll_interval: float = protocol.READ_POLL_INTERVAL,
    ) -> None:
        self.config = config
        self.target_path = target_path
        self.interrupt = interrupt if interrupt is not None else SignalInterrupt()
        self.shutdown_grace = shutdown_grace
        self.poll_interval = poll_interval
        self.cancel = threading.Event()

        self.manifest: Manifest | None = None
        self.serve_dir: Path | None = None
        self.server: FileServer | None = None
        self.conn: socket.socket | None = None
        self.completed = False
        self.watch_error: WatchError | None = None
        self._watcher: threading.Thread | None = None
        self._used = False

    def prepare(self) -> Manifest:
        if self.manifest is None:
            print("Preparing data...")
            self.manifest, self.serve_dir = build_manifest(
                self.target_path, self.config.host_ip, self.config.host_port
            )
        return self.manifest

    def run(self) -> Outcome:
        if self._used:
            raise RuntimeError("a TransferSession can only be run once")
        self._used = True

        manifest = self.prepare()
        self._enter_serve_dir()

        print("\nURLs:")
        print(manifest.text + "\n")

        self.server = FileServer.start(self.config.host_port)

        print(f"Sending URL(s) to {self.config.target_ip} on port {self.config.target_port}...")
        try:
            self.conn = protocol.notify(self.config.target_ip, self.config.target_port, manifest.text)
        except NotifyError:
            self.server.shutdown(self.shutdown_grace)
            raise

        try:
            self._watcher = threading.Thread(target=self._watch, name="fbisender-watcher", daemon=True)
            self._watcher.start()

            outcome = self._wait()
            if outcome is Outcome.INTERRUPTED:
                print(f"\nReceived signal {self.interrupt.name}. Shutting down...")
        finally:
            self.cancel.set()
            self.server.shutdown(self.shutdown_grace)
            self._watcher.join()
            self.conn.close()

        if outcome is Outcome.SERVER_ERROR:
            raise ServerError("HTTP server stopped unexpectedly") from self.server.error

        print("Server gracefully shut down.")
        return outcome

    def _enter_serve_dir(self) -> None:
        # Done once before the server starts; the server serves from the cwd.
        directory = str(self.serve_dir)
        if directory in ("", "."):
            return
        try:
            os.chdir(directory)
        except OSError as exc:
            raise DirectoryError(f"cannot enter {directory}") from exc

    def _watch(self) -> None:
        print("Waiting for the installation to complete...")
        try:
            self.completed = protocol.watch_for_completion(self.conn, self.cancel, self.poll_interval)
        except WatchError as exc:
            self.watch_error = exc
            log.warning("Installation process error: %s", exc)
            return
        if self.completed:
            print("Installation completed. Connection closed by target device.")

    def _wait(self) -> Outcome:
        while self._watcher.is_alive():
            if self.interrupt.is_set():
                return Outcome.INTERRUPTED
            if self.server.failed.is_set():
                return Outcome.SERVER_ERROR
            self._watcher.join(WAIT_POLL_INTERVAL)

        if self.watch_error is not None:
            return Outcome.READ_ERROR
        return Outcome.COMPLETED
