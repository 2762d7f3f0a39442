from __future__ import annotations

import argparse
import logging
from pathlib import Path

from . import __version__
from .config import load_config
from .errors import FbiSenderError
from .manifest import build_manifest, supported_extensions
from .session import SignalInterrupt, TransferSession


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fbisender",
        description=f"Send {supported_extensions()} files to a homebrew loader over the network.",
    )
    parser.add_argument("path", help="File or directory to send")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: ~/.config/fbisender/config.yaml)")
    parser.add_argument("--target-ip", default=None, help="IP address of the receiving device")
    parser.add_argument("--target-port", type=int, default=None, help="Port the device listens on (default: 5000)")
    parser.add_argument("--host-ip", default=None, help="Address the device should fetch from (default: auto-detect)")
    parser.add_argument("--host-port", type=int, default=None, help="Port to serve files on (default: 8080)")
    parser.add_argument("--dry-run", action="store_true", help="Print the URLs that would be sent and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(
            args.config,
            target_ip=args.target_ip,
            target_port=args.target_port,
            host_ip=args.host_ip,
            host_port=args.host_port,
        )

        target_path = args.path.strip()
        if not Path(target_path).exists():
            raise SystemExit(f"Error: {target_path}: no such file or directory")

        if args.dry_run:
            manifest, serve_dir = build_manifest(target_path, config.host_ip, config.host_port)
            print(f"Would serve {serve_dir} and send to {config.target_ip}:{config.target_port}")
            print("\nURLs:")
            print(manifest.text + "\n")
            return 0

        with SignalInterrupt() as interrupt:
            TransferSession(config, target_path, interrupt).run()
    except FbiSenderError as exc:
        raise SystemExit(f"Error: {exc}") from None

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
