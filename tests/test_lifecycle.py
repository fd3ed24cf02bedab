from __future__ import annotations

import asyncio

import pytest

from shrimpl_client.exceptions import HandshakeFailure, LaunchFailure, ShutdownFailure
from shrimpl_client.lifecycle import TERMINAL_STATES, ClientLifecycle, ClientState
from shrimpl_client.lsp_client import ClientOptions, FileChangeType, FileEvent, server_options
from tests.harness.client_harness import FakeClientFactory, RecordingNotifications


def _lifecycle(
    factory: FakeClientFactory,
    notifications: RecordingNotifications,
) -> ClientLifecycle:
    return ClientLifecycle(
        server_options("/bin/shrimpl-lsp", environ={}),
        ClientOptions(),
        notifications,
        client_factory=factory,
    )


def test_terminal_states_are_failed_and_stopped() -> None:
    assert TERMINAL_STATES == {ClientState.FAILED, ClientState.STOPPED}


def test_successful_start_reaches_running(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)
    assert lifecycle.state is ClientState.UNSTARTED

    state = asyncio.run(lifecycle.start())

    assert state is ClientState.RUNNING
    assert lifecycle.state is ClientState.RUNNING
    assert lifecycle.client is factory.client
    assert lifecycle.client_running
    assert notifications.infos == ["[Shrimpl] Language server started."]
    assert notifications.errors == []
    _client, run_options, client_options = factory.created[0]
    assert run_options.run.command == "/bin/shrimpl-lsp"
    assert isinstance(client_options, ClientOptions)


@pytest.mark.parametrize(
    "error",
    [
        LaunchFailure("Launching server using command /bin/shrimpl-lsp failed: not found"),
        HandshakeFailure("Server did not answer initialize within 30s"),
        RuntimeError("protocol error"),
    ],
)
def test_failed_start_reports_error_without_raising(notifications, error) -> None:
    factory = FakeClientFactory(start_error=error)
    lifecycle = _lifecycle(factory, notifications)

    state = asyncio.run(lifecycle.start())

    assert state is ClientState.FAILED
    assert lifecycle.client is None
    assert notifications.infos == []
    assert notifications.errors == [f"[Shrimpl] Failed to start language server: {error}"]


def test_error_without_message_uses_type_name(notifications) -> None:
    factory = FakeClientFactory(start_error=TimeoutError())
    lifecycle = _lifecycle(factory, notifications)
    asyncio.run(lifecycle.start())
    assert notifications.errors == ["[Shrimpl] Failed to start language server: TimeoutError"]


def test_factory_error_is_a_failed_start(notifications) -> None:
    def _broken(*_args):
        raise ValueError("bad options")

    lifecycle = ClientLifecycle(
        server_options("shrimpl-lsp", environ={}),
        ClientOptions(),
        notifications,
        client_factory=_broken,
    )
    assert asyncio.run(lifecycle.start()) is ClientState.FAILED
    assert notifications.errors == ["[Shrimpl] Failed to start language server: bad options"]


def test_second_start_is_ignored(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        return await lifecycle.start()

    assert asyncio.run(scenario()) is ClientState.RUNNING
    assert len(factory.created) == 1
    assert factory.client.start_calls == 1
    assert len(notifications.infos) == 1


def test_concurrent_starts_share_one_client(notifications) -> None:
    gate = asyncio.Event()
    factory = FakeClientFactory(gate=gate)
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        first = asyncio.ensure_future(lifecycle.start())
        second = asyncio.ensure_future(lifecycle.start())
        await asyncio.sleep(0)
        gate.set()
        return await first, await second

    assert asyncio.run(scenario()) == (ClientState.RUNNING, ClientState.RUNNING)
    assert len(factory.created) == 1


def test_stop_before_start_is_noop(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)
    assert asyncio.run(lifecycle.stop()) is ClientState.UNSTARTED
    assert lifecycle.client is None
    assert factory.created == []


def test_stop_after_failure_is_noop(notifications) -> None:
    factory = FakeClientFactory(start_error=LaunchFailure("missing"))
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        released = factory.client.stop_calls
        return released, await lifecycle.stop()

    released, state = asyncio.run(scenario())
    assert state is ClientState.FAILED
    assert released == factory.client.stop_calls == 1
    assert lifecycle.client is None


def test_failed_start_releases_client_even_if_cleanup_fails(notifications) -> None:
    factory = FakeClientFactory(
        start_error=HandshakeFailure("initialized not delivered"),
        stop_error=ShutdownFailure("already gone"),
    )
    lifecycle = _lifecycle(factory, notifications)

    assert asyncio.run(lifecycle.start()) is ClientState.FAILED
    assert factory.client.stop_calls == 1
    assert lifecycle.client is None
    assert notifications.errors == [
        "[Shrimpl] Failed to start language server: initialized not delivered"
    ]


def test_stop_is_idempotent(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        first = await lifecycle.stop()
        second = await lifecycle.stop()
        return first, second

    assert asyncio.run(scenario()) == (ClientState.STOPPED, ClientState.STOPPED)
    assert factory.client.stop_calls == 1
    assert lifecycle.client is None
    assert not lifecycle.client_running


def test_concurrent_stops_shut_down_once(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        return await asyncio.gather(lifecycle.stop(), lifecycle.stop())

    assert asyncio.run(scenario()) == [ClientState.STOPPED, ClientState.STOPPED]
    assert factory.client.stop_calls == 1


def test_stop_waits_for_pending_start(notifications) -> None:
    gate = asyncio.Event()
    factory = FakeClientFactory(gate=gate)
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        start = asyncio.ensure_future(lifecycle.start())
        await asyncio.sleep(0)
        assert lifecycle.state is ClientState.STARTING
        stop = asyncio.ensure_future(lifecycle.stop())
        await asyncio.sleep(0)
        assert not stop.done()
        gate.set()
        return await start, await stop

    started, stopped = asyncio.run(scenario())
    assert started is ClientState.RUNNING
    assert stopped is ClientState.STOPPED
    assert lifecycle.client is None
    assert factory.client.stop_calls == 1


def test_stop_during_failing_start_clears_slot(notifications) -> None:
    gate = asyncio.Event()
    factory = FakeClientFactory(gate=gate, start_error=HandshakeFailure("closed"))
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        start = asyncio.ensure_future(lifecycle.start())
        await asyncio.sleep(0)
        stop = asyncio.ensure_future(lifecycle.stop())
        await asyncio.sleep(0)
        gate.set()
        return await start, await stop

    assert asyncio.run(scenario()) == (ClientState.FAILED, ClientState.FAILED)
    assert lifecycle.client is None
    assert factory.client.stop_calls == 1


def test_shutdown_errors_are_swallowed(notifications, caplog) -> None:
    factory = FakeClientFactory(stop_error=ShutdownFailure("pipe closed"))
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        return await lifecycle.stop()

    assert asyncio.run(scenario()) is ClientState.STOPPED
    assert lifecycle.client is None
    assert notifications.errors == []
    assert "pipe closed" in caplog.text


def test_start_after_stop_is_ignored(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        await lifecycle.stop()
        return await lifecycle.start()

    assert asyncio.run(scenario()) is ClientState.STOPPED
    assert len(factory.created) == 1


_EVENTS = [FileEvent("/proj/main.shr", FileChangeType.CHANGED)]


def test_file_events_reach_running_client(notifications) -> None:
    factory = FakeClientFactory()
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        return await lifecycle.forward_file_events(_EVENTS), await lifecycle.forward_file_events([])

    assert asyncio.run(scenario()) == (True, False)
    assert factory.client.file_events == [_EVENTS]


def test_file_events_are_dropped_unless_running(notifications) -> None:
    factory = FakeClientFactory(start_error=LaunchFailure("missing"))
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        before = await lifecycle.forward_file_events(_EVENTS)
        await lifecycle.start()
        return before, await lifecycle.forward_file_events(_EVENTS)

    assert asyncio.run(scenario()) == (False, False)
    assert factory.client.file_events == []


def test_file_event_errors_are_logged(notifications, caplog) -> None:
    factory = FakeClientFactory(notify_error=ShutdownFailure("pipe closed"))
    lifecycle = _lifecycle(factory, notifications)

    async def scenario():
        await lifecycle.start()
        return await lifecycle.forward_file_events(_EVENTS)

    assert asyncio.run(scenario()) is False
    assert lifecycle.state is ClientState.RUNNING
    assert "Could not forward file events: pipe closed" in caplog.text
