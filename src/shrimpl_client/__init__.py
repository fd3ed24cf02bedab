"""Bootstrap and lifecycle layer for the Shrimpl language server."""

from shrimpl_client.exceptions import (
    HandshakeFailure,
    LaunchFailure,
    NeverThrown,
    ShrimplClientError,
    ShutdownFailure,
)
from shrimpl_client.invariants import never

__all__ = [
    "__version__",
    "HandshakeFailure",
    "LaunchFailure",
    "NeverThrown",
    "ShrimplClientError",
    "ShutdownFailure",
    "never",
]

__version__ = "0.1.0"
