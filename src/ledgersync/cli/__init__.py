"""ledgersync CLI package.

This package provides a thin command-line interface over the sync and
submission engine: server version detection, full syncs and sending
transactions.
"""

from .main import app, main

__all__ = ["app", "main"]
