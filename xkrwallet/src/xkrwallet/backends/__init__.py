"""
Daemon backend implementations.

Available backends:
- HttpDaemonBackend: the daemon's HTTP/JSON REST interface
"""

from xkrwallet.backends.base import DaemonBackend
from xkrwallet.backends.http import HttpDaemonBackend

__all__ = [
    "DaemonBackend",
    "HttpDaemonBackend",
]
