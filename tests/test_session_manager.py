"""
Unit tests for the SessionManager and SessionSupervisor lifecycle.
"""

import asyncio

import pytest

from lostcloud.config import CONFIG
from lostcloud.sessions.errors import (
    AuthorizationError,
    ConnectError,
    CreationError,
    NotFoundError,
)
from lostcloud.sessions.manager import SessionManager
from lostcloud.sessions.models import ConnectionParams, SessionIdentity, SessionState
from lostcloud.sessions.supervisor import RECONNECT_DELAY

from conftest import settle

PARAMS = ConnectionParams(host="mc.example.net", display_name="AfkBuddy")


def fixed_identities(*pairs):
    """Identity factory returning the given (id, key) pairs in order."""
    queue = [SessionIdentity(id=i, key=k) for i, k in pairs]
    return lambda: queue.pop(0)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_returns_live_identity(self, manager, factory):
        identity = await manager.create(PARAMS)

        assert len(identity.id) == 16
        assert len(identity.key) == 16
        assert manager.is_live(identity.id)
        supervisor = manager.get_supervisor(identity.id)
        assert supervisor.state is SessionState.LIVE
        assert supervisor.scheduler.attached
        assert len(factory.created) == 1
        assert factory.latest.username == "AfkBuddy"
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_default_username_uses_prefix_and_id(self, manager, factory):
        identity = await manager.create(ConnectionParams(host="mc.example.net"))

        assert factory.latest.username == f"{CONFIG.name_prefix}{identity.id}"
        assert factory.latest.params.port == 25565
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_first_connect_failure_is_terminal(
        self, registry, factory, clock
    ):
        factory.outcomes = [ConnectError("connection refused")]
        manager = SessionManager(
            registry,
            connection_factory=factory,
            clock=clock,
            identity_factory=fixed_identities(("AAAAAAAAAAAAAAAA", "KKKKKKKKKKKKKKKK")),
        )

        with pytest.raises(CreationError) as exc_info:
            await manager.create(PARAMS)

        assert isinstance(exc_info.value.__cause__, ConnectError)
        assert not manager.is_live("AAAAAAAAAAAAAAAA")
        assert len(registry) == 0
        assert manager.tracked_count == 0

        await clock.advance(RECONNECT_DELAY * 3)
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_network_error_becomes_creation_error(self, manager, factory):
        factory.outcomes = [ConnectionRefusedError("refused")]

        with pytest.raises(CreationError):
            await manager.create(PARAMS)
        assert factory.latest.closed

    @pytest.mark.asyncio
    async def test_unexpected_connect_failure_becomes_creation_error(
        self, manager, factory
    ):
        factory.outcomes = [RuntimeError("chunk decode failed")]

        with pytest.raises(CreationError, match="chunk decode failed"):
            await manager.create(PARAMS)

        assert factory.latest.closed
        assert manager.tracked_count == 0

    @pytest.mark.asyncio
    async def test_factory_failure_becomes_creation_error(self, registry, clock):
        def broken_factory(params, username):
            raise RuntimeError("transport misconfigured")

        manager = SessionManager(registry, connection_factory=broken_factory, clock=clock)

        with pytest.raises(CreationError) as exc_info:
            await manager.create(PARAMS)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert manager.tracked_count == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_entropy_failure_becomes_creation_error(self, registry, factory):
        def broken():
            raise OSError("no entropy")

        manager = SessionManager(registry, connection_factory=factory, identity_factory=broken)

        with pytest.raises(CreationError):
            await manager.create(PARAMS)
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_colliding_id_is_regenerated(self, registry, factory, clock):
        manager = SessionManager(
            registry,
            connection_factory=factory,
            clock=clock,
            identity_factory=fixed_identities(
                ("AAAAAAAAAAAAAAAA", "K1K1K1K1K1K1K1K1"),
                ("AAAAAAAAAAAAAAAA", "K2K2K2K2K2K2K2K2"),
                ("BBBBBBBBBBBBBBBB", "K3K3K3K3K3K3K3K3"),
            ),
        )

        first = await manager.create(PARAMS)
        second = await manager.create(PARAMS)

        assert first.id == "AAAAAAAAAAAAAAAA"
        assert second.id == "BBBBBBBBBBBBBBBB"
        assert second.key == "K3K3K3K3K3K3K3K3"
        await manager.shutdown()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_drop_then_reconnect_after_delay(self, manager, factory, clock):
        identity = await manager.create(PARAMS)
        first = factory.latest

        first.drop("kicked: idle")
        assert not manager.is_live(identity.id)
        supervisor = manager.get_supervisor(identity.id)
        assert supervisor.state is SessionState.DISCONNECTED
        assert supervisor.last_drop_reason == "kicked: idle"

        await clock.advance(RECONNECT_DELAY - 0.1)
        assert not manager.is_live(identity.id)
        assert len(factory.created) == 1

        await clock.advance(0.1)
        assert manager.is_live(identity.id)
        assert len(factory.created) == 2
        assert factory.latest is not first
        assert factory.latest.username == first.username
        assert factory.latest.params == first.params
        assert first.closed
        assert supervisor.state is SessionState.LIVE
        assert supervisor.reconnects == 1
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_retries_until_connect_succeeds(self, manager, factory, clock):
        factory.outcomes = [
            None,
            ConnectError("server full"),
            OSError("unreachable"),
            None,
        ]
        identity = await manager.create(PARAMS)
        factory.latest.drop("ended: restart")

        await clock.advance(RECONNECT_DELAY)
        assert not manager.is_live(identity.id)
        await clock.advance(RECONNECT_DELAY)
        assert not manager.is_live(identity.id)
        await clock.advance(RECONNECT_DELAY)

        assert manager.is_live(identity.id)
        assert len(factory.created) == 4
        assert manager.get_supervisor(identity.id).reconnects == 3
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_reconnect_failure_is_closed_and_retried(
        self, manager, factory, clock
    ):
        factory.outcomes = [None, RuntimeError("bridge hiccup"), None]
        identity = await manager.create(PARAMS)

        factory.latest.drop()
        await clock.advance(RECONNECT_DELAY)
        failed = factory.latest
        assert failed.closed
        assert not manager.is_live(identity.id)

        await clock.advance(RECONNECT_DELAY)
        assert len(factory.created) == 3
        assert manager.is_live(identity.id)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_scheduler_restarts_on_new_connection(self, manager, factory, clock):
        await manager.create(PARAMS)
        first = factory.latest
        first.drop()

        await clock.advance(RECONNECT_DELAY)
        second = factory.latest
        await clock.advance(5)

        assert second.named("navigate")
        assert first.named("navigate") == []
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_non_fatal_error_keeps_session_live(self, manager, factory):
        identity = await manager.create(PARAMS)

        factory.latest._emit_error(RuntimeError("chunk decode failed"))

        assert manager.is_live(identity.id)
        await manager.shutdown()


class TestDelete:
    @pytest.mark.asyncio
    async def test_wrong_key_is_rejected(self, manager):
        identity = await manager.create(PARAMS)

        with pytest.raises(AuthorizationError):
            await manager.delete(identity.id, "WRONGKEYWRONGKEY", identity.key)

        assert manager.is_live(identity.id)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_wrong_key_checked_before_existence(self, manager):
        with pytest.raises(AuthorizationError):
            await manager.delete("UNKNOWNUNKNOWN00", "A" * 16, "B" * 16)

    @pytest.mark.asyncio
    async def test_unknown_id(self, manager):
        with pytest.raises(NotFoundError):
            await manager.delete("UNKNOWNUNKNOWN00", "A" * 16, "A" * 16)

    @pytest.mark.asyncio
    async def test_delete_terminates_without_resurrection(
        self, manager, factory, clock
    ):
        identity = await manager.create(PARAMS)
        connection = factory.latest
        supervisor = manager.get_supervisor(identity.id)

        await manager.delete(identity.id, identity.key, identity.key)

        assert not manager.is_live(identity.id)
        assert supervisor.state is SessionState.TERMINATED
        assert connection.closed
        assert supervisor.scheduler is None

        # A late termination signal from the old connection changes nothing.
        connection._on_terminated("kicked: late")
        await clock.advance(RECONNECT_DELAY * 3)
        assert not manager.is_live(identity.id)
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_retried_delete_succeeds(self, manager):
        identity = await manager.create(PARAMS)

        await manager.delete(identity.id, identity.key, identity.key)
        await manager.delete(identity.id, identity.key, identity.key)

        assert not manager.is_live(identity.id)

    @pytest.mark.asyncio
    async def test_oldest_retired_ids_are_forgotten(self, registry, factory, clock):
        manager = SessionManager(
            registry,
            connection_factory=factory,
            clock=clock,
            identity_factory=fixed_identities(
                ("AAAAAAAAAAAAAAAA", "KAKAKAKAKAKAKAKA"),
                ("BBBBBBBBBBBBBBBB", "KBKBKBKBKBKBKBKB"),
            ),
            retired_limit=1,
        )
        first = await manager.create(PARAMS)
        await manager.delete(first.id, first.key, first.key)
        second = await manager.create(PARAMS)
        await manager.delete(second.id, second.key, second.key)

        await manager.delete(second.id, second.key, second.key)
        with pytest.raises(NotFoundError):
            await manager.delete(first.id, first.key, first.key)

    @pytest.mark.asyncio
    async def test_delete_while_waiting_to_reconnect(self, manager, factory, clock):
        identity = await manager.create(PARAMS)
        factory.latest.drop()

        await manager.delete(identity.id, identity.key, identity.key)
        await clock.advance(RECONNECT_DELAY * 3)

        assert len(factory.created) == 1
        assert not manager.is_live(identity.id)

    @pytest.mark.asyncio
    async def test_delete_during_reconnect_attempt(self, manager, factory, clock):
        pending = asyncio.get_running_loop().create_future()
        factory.outcomes = [None, pending]
        identity = await manager.create(PARAMS)
        factory.latest.drop()

        await clock.advance(RECONNECT_DELAY)
        in_flight = factory.latest
        assert len(factory.created) == 2

        await manager.delete(identity.id, identity.key, identity.key)
        await settle()

        assert pending.cancelled()
        assert in_flight.closed
        assert not manager.is_live(identity.id)
        await clock.advance(RECONNECT_DELAY * 3)
        assert len(factory.created) == 2
        assert not manager.is_live(identity.id)

    @pytest.mark.asyncio
    async def test_delete_during_first_connect(self, registry, factory, clock):
        pending = asyncio.get_running_loop().create_future()
        factory.outcomes = [pending]
        manager = SessionManager(
            registry,
            connection_factory=factory,
            clock=clock,
            identity_factory=fixed_identities(("CCCCCCCCCCCCCCCC", "KKKKKKKKKKKKKKKK")),
        )

        create = asyncio.create_task(manager.create(PARAMS))
        await settle()
        await manager.delete("CCCCCCCCCCCCCCCC", "KKKKKKKKKKKKKKKK", "KKKKKKKKKKKKKKKK")

        pending.set_result(None)
        with pytest.raises(CreationError):
            await create

        assert not manager.is_live("CCCCCCCCCCCCCCCC")
        assert len(registry) == 0
        assert factory.latest.closed


class TestSupervisor:
    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self, manager):
        identity = await manager.create(PARAMS)
        supervisor = manager.get_supervisor(identity.id)

        await supervisor.terminate()
        await supervisor.terminate()

        assert supervisor.state is SessionState.TERMINATED

    @pytest.mark.asyncio
    async def test_status(self, manager):
        identity = await manager.create(PARAMS)

        status = manager.get_supervisor(identity.id).get_status()

        assert status["session_id"] == identity.id
        assert status["state"] == "live"
        assert status["live"] is True
        assert status["attempts"] == 1
        assert status["address"] == "mc.example.net:25565"
        assert status["scheduler"]["attached"] is True
        assert identity.key not in str(status)
        await manager.shutdown()


class TestQueries:
    @pytest.mark.asyncio
    async def test_liveness_snapshot(self, manager, factory):
        live = await manager.create(PARAMS)
        dropped = await manager.create(PARAMS)
        factory.latest.drop()

        snapshot = manager.liveness_snapshot([live.id, dropped.id, "NEVERCREATED0000"])

        assert [(e.id, e.live) for e in snapshot] == [
            (live.id, True),
            (dropped.id, False),
            ("NEVERCREATED0000", False),
        ]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_list_sessions_includes_disconnected(self, manager, factory):
        await manager.create(PARAMS)
        await manager.create(PARAMS)
        factory.latest.drop()

        states = sorted(s["state"] for s in manager.list_sessions())

        assert states == ["disconnected", "live"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_terminates_everything(self, manager, factory, clock):
        first = await manager.create(PARAMS)
        second = await manager.create(PARAMS)

        await manager.shutdown()

        assert not manager.is_live(first.id)
        assert not manager.is_live(second.id)
        assert manager.tracked_count == 0
        assert all(c.closed for c in factory.created)
        await clock.advance(RECONNECT_DELAY * 2)
        assert len(factory.created) == 2

    @pytest.mark.asyncio
    async def test_independent_registries(self, factory, clock):
        from lostcloud.sessions.registry import SessionRegistry

        manager_a = SessionManager(SessionRegistry(), connection_factory=factory, clock=clock)
        manager_b = SessionManager(SessionRegistry(), connection_factory=factory, clock=clock)

        identity = await manager_a.create(PARAMS)

        assert manager_a.is_live(identity.id)
        assert not manager_b.is_live(identity.id)
        await manager_a.shutdown()
