"""Exception types raised across the Shrimpl client layer."""

from __future__ import annotations


class ShrimplClientError(RuntimeError):
    pass


class LspClientError(ShrimplClientError):
    """Protocol-level failure reported by the language server connection."""


class LaunchFailure(LspClientError):
    """The server subprocess could not be spawned."""


class HandshakeFailure(LspClientError):
    """The server was spawned but the initialize exchange did not complete."""


class ShutdownFailure(LspClientError):
    """Graceful shutdown did not complete cleanly."""


class NeverThrown(ShrimplClientError):
    """Raised by ``never()`` when a code path believed unreachable runs.

    ``env`` carries the keyword payload passed to ``never()`` so the failure
    can be diagnosed from the traceback alone.
    """

    def __init__(self, reason: str, *, env: dict[str, object] | None = None):
        super().__init__(reason)
        self.reason = reason
        self.env = dict(env or {})

    def __str__(self) -> str:
        if not self.env:
            return self.reason
        details = ", ".join(f"{key}={value!r}" for key, value in self.env.items())
        return f"{self.reason} ({details})"
