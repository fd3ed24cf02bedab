from __future__ import annotations

import asyncio
from enum import StrEnum
import logging
from typing import Callable, Protocol, Sequence

from shrimpl_client.host import NotificationSink
from shrimpl_client.invariants import never
from shrimpl_client.lsp_client import ClientOptions, FileEvent, LanguageClient, ServerOptions

logger = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "[Shrimpl]"


class ClientState(StrEnum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"
    STOPPED = "stopped"


_TRANSITIONS: dict[ClientState, frozenset[ClientState]] = {
    ClientState.UNSTARTED: frozenset({ClientState.STARTING}),
    ClientState.STARTING: frozenset({ClientState.RUNNING, ClientState.FAILED}),
    ClientState.RUNNING: frozenset({ClientState.STOPPING}),
    ClientState.STOPPING: frozenset({ClientState.STOPPED}),
    ClientState.FAILED: frozenset(),
    ClientState.STOPPED: frozenset(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in _TRANSITIONS.items() if not targets
)


class ProtocolClient(Protocol):
    @property
    def running(self) -> bool:
        """True while the server process is alive."""

    async def start(self) -> object:
        """Spawn the server and complete the handshake."""

    async def stop(self) -> None:
        """Shut the server down and release the process."""

    async def did_change_watched_files(self, events: Sequence[FileEvent]) -> None:
        """Forward watched file events to the server."""


ClientFactory = Callable[[ServerOptions, ClientOptions], ProtocolClient]


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class ClientLifecycle:
    """Owns the single protocol client of an activation.

    ``start`` and ``stop`` never raise: startup failures become the
    ``FAILED`` state plus an error notification, shutdown failures are
    logged. ``stop`` waits for an in-flight ``start`` to settle before it
    acts, so it always sees ``RUNNING`` or ``FAILED`` rather than
    ``STARTING``.
    """

    def __init__(
        self,
        server_options: ServerOptions,
        client_options: ClientOptions,
        notifications: NotificationSink,
        *,
        client_factory: ClientFactory = LanguageClient,
    ) -> None:
        self.server_options = server_options
        self.client_options = client_options
        self._notifications = notifications
        self._client_factory = client_factory
        self._state = ClientState.UNSTARTED
        self._client: ProtocolClient | None = None
        self._starting: asyncio.Future[ClientState] | None = None
        self._stopping: asyncio.Future[ClientState] | None = None

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def client(self) -> ProtocolClient | None:
        return self._client

    @property
    def client_running(self) -> bool:
        return self._client is not None and self._client.running

    def _transition(self, target: ClientState) -> None:
        if target not in _TRANSITIONS[self._state]:
            never(
                "illegal client state transition",
                current=self._state.value,
                target=target.value,
            )
        logger.info("Language client state %s -> %s", self._state.value, target.value)
        self._state = target

    async def start(self) -> ClientState:
        if self._state is ClientState.STARTING and self._starting is not None:
            return await asyncio.shield(self._starting)
        if self._state is not ClientState.UNSTARTED:
            logger.info("Ignoring start request in state %s", self._state.value)
            return self._state
        self._transition(ClientState.STARTING)
        self._starting = asyncio.ensure_future(self._start())
        return await asyncio.shield(self._starting)

    async def _start(self) -> ClientState:
        logger.info("Starting language server...")
        try:
            self._client = self._client_factory(self.server_options, self.client_options)
            await self._client.start()
        except Exception as exc:
            message = f"Failed to start language server: {_error_text(exc)}"
            logger.error("%s", message)
            client, self._client = self._client, None
            if client is not None:
                await self._discard(client)
            self._transition(ClientState.FAILED)
            self._notifications.error(f"{NOTIFICATION_PREFIX} {message}")
            return self._state
        logger.info("Language server is ready.")
        self._transition(ClientState.RUNNING)
        self._notifications.info(f"{NOTIFICATION_PREFIX} Language server started.")
        return self._state

    @staticmethod
    async def _discard(client: ProtocolClient) -> None:
        # A failed start may still hold a process; FAILED has no later stop.
        try:
            await client.stop()
        except Exception as exc:
            logger.debug("Cleanup after failed start reported: %s", _error_text(exc))

    async def stop(self) -> ClientState:
        if self._starting is not None:
            await asyncio.shield(self._starting)
        if self._stopping is not None:
            return await asyncio.shield(self._stopping)
        if self._state is not ClientState.RUNNING:
            logger.info("Ignoring stop request in state %s", self._state.value)
            self._client = None
            return self._state
        self._transition(ClientState.STOPPING)
        self._stopping = asyncio.ensure_future(self._stop())
        return await asyncio.shield(self._stopping)

    async def _stop(self) -> ClientState:
        client, self._client = self._client, None
        try:
            if client is not None:
                await client.stop()
        except Exception as exc:
            logger.warning("Language server shutdown reported an error: %s", _error_text(exc))
        self._transition(ClientState.STOPPED)
        return self._state

    async def forward_file_events(self, events: Sequence[FileEvent]) -> bool:
        """Send ``events`` to a running server; returns False when nothing was sent."""
        client = self._client
        if not events or client is None or self._state is not ClientState.RUNNING:
            return False
        try:
            await client.did_change_watched_files(events)
        except Exception as exc:
            logger.warning("Could not forward file events: %s", _error_text(exc))
            return False
        return True
