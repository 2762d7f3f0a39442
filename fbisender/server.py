from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from pathlib import Path

from flask import Flask, jsonify, send_from_directory
from werkzeug.serving import WSGIRequestHandler, make_server

from .errors import ServerError
from .manifest import accepted_file

log = logging.getLogger(__name__)

DEFAULT_HOST_PORT = 8080
SHUTDOWN_GRACE = 5.0  # seconds


# ----------------------------
# Shared helpers
# ----------------------------

def format_bytes(num: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    size = float(num)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{num} B"


def list_files_with_meta(directory: Path) -> list[dict]:
    entries = []
    for p in sorted(directory.iterdir(), key=lambda p: p.name):
        if not p.is_file() or not accepted_file(p.name):
            continue
        st = p.stat()
        entries.append(
            {
                "name": p.name,
                "modified": datetime.fromtimestamp(st.st_mtime).strftime("%Y-%m-%d %H:%M:%S"),
                "size": format_bytes(st.st_size),
                "size_bytes": st.st_size,
            }
        )
    return entries


# ----------------------------
# Flask app
# ----------------------------

def create_app(serve_dir: Path) -> Flask:
    app = Flask(__name__)
    app.config["SERVE_DIR"] = str(Path(serve_dir).resolve())

    @app.route("/", methods=["GET"], endpoint="index")
    def index():
        serve_path = Path(app.config["SERVE_DIR"])
        return jsonify({"directory": str(serve_path), "files": list_files_with_meta(serve_path)})

    # send_from_directory refuses paths that escape SERVE_DIR with a 404.
    @app.route("/<path:filename>", methods=["GET"], endpoint="serve_file")
    def serve_file(filename):
        return send_from_directory(app.config["SERVE_DIR"], filename)

    return app


# ----------------------------
# Server lifecycle
# ----------------------------

class _InFlight:
    """Counts requests currently being handled so shutdown can drain them."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self.count = 0

    def __enter__(self) -> "_InFlight":
        with self._cond:
            self.count += 1
        return self

    def __exit__(self, *exc_info) -> None:
        with self._cond:
            self.count -= 1
            if self.count == 0:
                self._cond.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self.count == 0, timeout)


class _TrackingRequestHandler(WSGIRequestHandler):
    # One request per connection, so an idle keep-alive never counts as in flight.
    protocol_version = "HTTP/1.0"

    def handle(self) -> None:
        with self.server.in_flight:
            super().handle()


class FileServer:
    """Static HTTP server for the serving directory, run on a background thread."""

    def __init__(self, httpd, serve_dir: Path) -> None:
        self._httpd = httpd
        self._in_flight = _InFlight()
        self._httpd.in_flight = self._in_flight
        self._closing = threading.Event()
        self.serve_dir = serve_dir
        self.failed = threading.Event()
        self.error: BaseException | None = None
        self._thread = threading.Thread(target=self._serve, name="fbisender-http", daemon=True)

    @classmethod
    def start(
        cls,
        port: int = DEFAULT_HOST_PORT,
        directory: str | Path | None = None,
        host: str = "0.0.0.0",
    ) -> "FileServer":
        """Bind and start serving without blocking. Bind failures raise ServerError."""
        serve_dir = Path(directory) if directory is not None else Path.cwd()
        print(f"Starting HTTP server on port {port}")
        try:
            httpd = make_server(
                host,
                port,
                create_app(serve_dir),
                threaded=True,
                request_handler=_TrackingRequestHandler,
            )
        # werkzeug exits instead of raising when the port cannot be bound
        except (OSError, SystemExit) as exc:
            raise ServerError(f"listening on {host}:{port}") from exc

        server = cls(httpd, serve_dir)
        server._thread.start()
        return server

    @property
    def port(self) -> int:
        return self._httpd.server_port

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._closing.is_set()

    def _serve(self) -> None:
        try:
            self._httpd.serve_forever()
        except Exception as exc:
            if self._closing.is_set():
                return
            self.error = exc
            log.error("HTTP server stopped unexpectedly: %s", exc)
            self.failed.set()

    def shutdown(self, grace: float = SHUTDOWN_GRACE) -> None:
        """Stop accepting connections and drain in-flight requests for up to ``grace`` seconds.

        Best effort: problems are logged, never raised. Safe to call twice.
        """
        if self._closing.is_set():
            return
        self._closing.set()
        deadline = time.monotonic() + grace

        if self._thread.is_alive():
            stopper = threading.Thread(target=self._httpd.shutdown, daemon=True)
            stopper.start()
            stopper.join(grace)
            if stopper.is_alive():
                log.warning("HTTP server shutdown error: accept loop did not stop within %.1fs", grace)

        remaining = max(0.0, deadline - time.monotonic())
        if not self._in_flight.wait_idle(remaining):
            log.warning(
                "HTTP server shutdown: %d request(s) still in flight after %.1fs grace period",
                self._in_flight.count,
                grace,
            )

        try:
            self._httpd.server_close()
        except OSError as exc:
            log.warning("HTTP server shutdown error: %s", exc)

        self._thread.join(max(0.0, deadline - time.monotonic()))
