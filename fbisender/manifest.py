from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from .errors import NoFilesError, UnsupportedExtensionError

# Installable package types the homebrew loader accepts.
ACCEPTED_EXTENSIONS = ("cia", "tik", "cetk", "3dsx")

# Reserved characters that may stay literal inside a single path segment.
PATH_SEGMENT_SAFE = "$&+:=@"


def accepted_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ACCEPTED_EXTENSIONS


def supported_extensions() -> str:
    return ", ".join(f".{ext}" for ext in ACCEPTED_EXTENSIONS)


def file_url(host_ip: str, host_port: int, filename: str) -> str:
    return f"{host_ip}:{host_port}/{quote(filename, safe=PATH_SEGMENT_SAFE)}"


@dataclass(frozen=True, slots=True)
class Manifest:
    """Ordered URLs the device is told to fetch; never empty."""

    urls: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.urls:
            raise NoFilesError("no files with supported extensions to serve")

    def __len__(self) -> int:
        return len(self.urls)

    def __iter__(self):
        return iter(self.urls)

    @property
    def text(self) -> str:
        return "\n".join(self.urls)


def eligible_files(directory: Path) -> list[Path]:
    """Direct children of ``directory`` that are regular files with an accepted extension."""
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        raise NoFilesError(f"cannot read directory {directory}") from exc
    return [p for p in entries if p.is_file() and accepted_file(p.name)]


def build_manifest(target_path: str | Path, host_ip: str, host_port: int) -> tuple[Manifest, Path]:
    """Turn a file or directory into a manifest plus the directory to serve.

    A directory yields one URL per eligible direct child and is served itself.
    A single file must carry an accepted extension; its parent is served.
    Nothing on disk is touched.
    """
    target = Path(target_path)

    if target.is_dir():
        files = eligible_files(target)
        serve_dir = target
    elif target.is_file():
        if not accepted_file(target.name):
            raise UnsupportedExtensionError(
                f"unsupported file extension. Supported extensions are: {supported_extensions()}"
            )
        files = [target]
        serve_dir = target.parent
    else:
        files = []
        serve_dir = target

    manifest = Manifest(tuple(file_url(host_ip, host_port, p.name) for p in files))
    return manifest, serve_dir
