import asyncio
from unittest import mock

import pytest

from remotevfs.channel import ChannelUnavailableError
from remotevfs.connection import ConnectionState, ConnectionStateMachine
import remotevfs.protocol as protocol
from remotevfs.rpc import Correlator


def _resyncing_registry(count=0):
    registry = mock.Mock()
    registry.resync_all = mock.AsyncMock(return_value=count)
    return registry


def test_initial_state():
    machine = ConnectionStateMachine(mock.Mock())

    assert machine.state == ConnectionState.DISCONNECTED


def test_listener_receives_current_state():
    machine = ConnectionStateMachine(mock.Mock())
    machine.transition(ConnectionState.CONNECTING)

    listener = mock.Mock()
    machine.add_listener(listener)

    listener.assert_called_once_with(ConnectionState.CONNECTING)


def test_listeners_in_registration_order():
    machine = ConnectionStateMachine(mock.Mock())
    calls = []

    machine.add_listener(lambda state: calls.append(("first", state)))
    machine.add_listener(lambda state: calls.append(("second", state)))
    calls.clear()

    machine.transition(ConnectionState.CONNECTING)
    machine.transition(ConnectionState.CONNECTED)

    assert calls == [
        ("first", ConnectionState.CONNECTING),
        ("second", ConnectionState.CONNECTING),
        ("first", ConnectionState.CONNECTED),
        ("second", ConnectionState.CONNECTED),
    ]


def test_remove_listener():
    machine = ConnectionStateMachine(mock.Mock())
    listener = mock.Mock()

    remove = machine.add_listener(listener)
    remove()
    remove()

    machine.transition(ConnectionState.CONNECTING)
    assert listener.call_count == 1


def test_failing_listener_is_isolated(caplog):
    machine = ConnectionStateMachine(mock.Mock())

    machine.add_listener(mock.Mock(side_effect=RuntimeError("listener boom")))
    listener = mock.Mock()
    machine.add_listener(listener)

    machine.transition(ConnectionState.CONNECTING)

    listener.assert_called_with(ConnectionState.CONNECTING)
    assert "listener boom" in caplog.text


def test_disconnect_broadcasts():
    machine = ConnectionStateMachine(mock.Mock())
    machine.transition(ConnectionState.CONNECTED)

    machine.handle_broadcast(protocol.Broadcast(protocol.RECONNECTING, attempt=1))
    assert machine.state == ConnectionState.RECONNECTING

    machine.handle_broadcast(protocol.Broadcast(protocol.RECONNECTION_FAILED))
    assert machine.state == ConnectionState.DISCONNECTED

    machine.transition(ConnectionState.CONNECTED)
    machine.handle_broadcast(protocol.Broadcast(protocol.DISCONNECTED))
    assert machine.state == ConnectionState.DISCONNECTED


def test_informational_broadcasts():
    machine = ConnectionStateMachine(mock.Mock())
    listener = mock.Mock()
    machine.add_listener(listener)

    machine.handle_broadcast(protocol.Broadcast(protocol.READY))
    machine.handle_broadcast(protocol.Broadcast(protocol.RESYNC_COMPLETE, count=2))

    assert machine.state == ConnectionState.DISCONNECTED
    assert listener.call_count == 1


def test_unknown_broadcast():
    machine = ConnectionStateMachine(mock.Mock())

    with pytest.raises(ValueError):
        machine.handle_broadcast(protocol.Broadcast("exploded"))


def test_reconnected_broadcast_triggers_resync():
    async def scenario():
        registry = _resyncing_registry(3)
        machine = ConnectionStateMachine(registry)
        machine.transition(ConnectionState.RECONNECTING)

        machine.handle_broadcast(protocol.Broadcast(protocol.RECONNECTED))
        assert machine.state == ConnectionState.CONNECTED

        await machine.wait_recovered()
        registry.resync_all.assert_awaited_once()

    asyncio.run(scenario())


def test_recover():
    async def scenario():
        registry = _resyncing_registry(2)
        machine = ConnectionStateMachine(registry)

        assert await machine.recover() == 2
        assert machine.state == ConnectionState.CONNECTED

    asyncio.run(scenario())


def test_failed_resync_is_logged(caplog):
    async def scenario():
        registry = mock.Mock()
        registry.resync_all = mock.AsyncMock(side_effect=RuntimeError("resync boom"))
        machine = ConnectionStateMachine(registry)

        machine.handle_broadcast(protocol.Broadcast(protocol.RECONNECTED))
        await asyncio.sleep(0.01)

        assert machine.state == ConnectionState.CONNECTED

    asyncio.run(scenario())

    assert "resync boom" in caplog.text


def test_pending_calls_survive_disconnect_by_default():
    async def scenario():
        correlator = Correlator(mock.Mock(), timeout=60)
        machine = ConnectionStateMachine(mock.Mock(), correlator)

        call = asyncio.ensure_future(correlator.call(protocol.Exists("/a")))
        await asyncio.sleep(0)

        machine.transition(ConnectionState.DISCONNECTED)
        await asyncio.sleep(0)

        assert not call.done()
        call.cancel()

    asyncio.run(scenario())


def test_fail_fast_on_disconnect():
    async def scenario():
        correlator = Correlator(mock.Mock(), timeout=60)
        machine = ConnectionStateMachine(
            mock.Mock(), correlator, fail_fast_on_disconnect=True
        )

        call = asyncio.ensure_future(correlator.call(protocol.Exists("/a")))
        await asyncio.sleep(0)

        machine.handle_broadcast(protocol.Broadcast(protocol.DISCONNECTED))

        with pytest.raises(ChannelUnavailableError):
            await call

    asyncio.run(scenario())
