"""Deliver installable packages to a networked homebrew loader.

The files are served over HTTP. The device is told their URLs over a
length-prefixed TCP handshake and hangs up once it has installed them.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
