"""
tinyapp core -- SandboxHost: update-session, saves, teardown, host actions

update-session replaces session data in memory at once, saves in the
background and answers with session-saved. A failed save is reported, never
rolled back. Switch, new and reload re-send init without a new ready.
"""

import json

import pytest
import pytest_asyncio

from engine.core.remote import RemoteStoreError
from engine.core.sandbox import HostState, SandboxHost
from engine.core.sync import SyncCoordinator


@pytest_asyncio.fixture
async def app(sync):
    return await sync.create_app("Counter")


@pytest_asyncio.fixture
async def host(sync, app, guest):
    host = SandboxHost(sync, app.id)
    await host.open(guest)
    await host.handle_message(guest, {"type": "ready"})
    guest.received.clear()
    return host


def stored_data(remote, session_id: str) -> dict:
    return json.loads(remote.documents[session_id].content)["data"]


class TestUpdateSession:
    @pytest.mark.asyncio
    async def test_data_replaced_before_save_completes(self, host, guest):
        accepted = await host.handle_message(guest, {"type": "update-session", "data": {"count": 1}})

        assert accepted
        assert host.current_session.data == {"count": 1}
        assert host.state is HostState.SAVING
        assert host.pending_saves == 1
        assert guest.received == []
        await host.drain()

    @pytest.mark.asyncio
    async def test_successful_save_is_acknowledged(self, host, guest, remote):
        await host.handle_message(guest, {"type": "update-session", "data": {"count": 1}})
        await host.drain()

        assert guest.received == [{"type": "session-saved", "success": True}]
        assert stored_data(remote, host.current_session.id) == {"count": 1}
        assert host.state is HostState.INITIALIZED
        assert host.pending_saves == 0

    @pytest.mark.asyncio
    async def test_data_is_replaced_not_merged(self, host, guest):
        await host.handle_message(guest, {"type": "update-session", "data": {"a": 1}})
        await host.handle_message(guest, {"type": "update-session", "data": {"b": 2}})
        await host.drain()

        assert host.current_session.data == {"b": 2}

    @pytest.mark.asyncio
    async def test_seq_is_echoed(self, host, guest):
        await host.handle_message(guest, {"type": "update-session", "data": {}, "seq": 7})
        await host.drain()

        assert guest.received == [{"type": "session-saved", "success": True, "seq": 7}]

    @pytest.mark.asyncio
    async def test_failed_save_reports_error_without_rollback(self, host, guest, remote):
        remote.fail_next("update", RemoteStoreError("User rate limit exceeded", status_code=403))

        await host.handle_message(guest, {"type": "update-session", "data": {"count": 2}})
        await host.drain()

        assert guest.received == [{"type": "session-saved", "success": False, "error": "User rate limit exceeded"}]
        assert host.current_session.data == {"count": 2}
        assert stored_data(remote, host.current_session.id) == {}
        assert host.state is HostState.INITIALIZED

    @pytest.mark.asyncio
    async def test_each_update_saved_in_order(self, guest, gated_remote, cache):
        sync = SyncCoordinator(gated_remote, cache)
        app = await sync.create_app("Gated")
        host = SandboxHost(sync, app.id)
        await host.open(guest)
        gated_remote.gate.clear()

        for n in range(3):
            await host.handle_message(guest, {"type": "update-session", "data": {"n": n}, "seq": n})
        assert host.pending_saves == 3
        assert host.state is HostState.SAVING

        gated_remote.gate.set()
        await host.drain()

        assert sorted(m["seq"] for m in guest.of_type("session-saved")) == [0, 1, 2]
        assert all(m["success"] for m in guest.of_type("session-saved"))
        assert stored_data(gated_remote, host.current_session.id) == {"n": 2}
        assert host.state is HostState.INITIALIZED

    @pytest.mark.asyncio
    async def test_save_keeps_session_name_and_created_at(self, host, guest, remote):
        session = host.current_session

        await host.handle_message(guest, {"type": "update-session", "data": {"x": 1}})
        await host.drain()

        document = json.loads(remote.documents[session.id].content)
        assert document["name"] == session.name
        assert document["createdAt"] == session.created_at

    @pytest.mark.asyncio
    async def test_update_without_session_is_ignored(self, sync, app, guest):
        host = SandboxHost(sync, app.id)
        host.mount(guest)

        assert not await host.handle_message(guest, {"type": "update-session", "data": {"x": 1}})
        assert host.pending_saves == 0


class TestTeardown:
    @pytest.mark.asyncio
    async def test_in_flight_save_completes_but_result_is_discarded(self, cache, guest, gated_remote):
        sync = SyncCoordinator(gated_remote, cache)
        app = await sync.create_app("Gated")
        host = SandboxHost(sync, app.id)
        await host.open(guest)
        gated_remote.gate.clear()
        await host.handle_message(guest, {"type": "update-session", "data": {"late": True}})

        host.teardown()
        gated_remote.gate.set()
        await host.drain()

        assert stored_data(gated_remote, host.current_session.id) == {"late": True}
        assert guest.of_type("session-saved") == []
        assert host.state is HostState.TORN_DOWN

    @pytest.mark.asyncio
    async def test_messages_after_teardown_are_dropped(self, host, guest):
        host.teardown()

        assert not await host.handle_message(guest, {"type": "ready"})
        assert guest.received == []

    @pytest.mark.asyncio
    async def test_cannot_remount_after_teardown(self, host, guest):
        host.teardown()

        with pytest.raises(RuntimeError):
            host.mount(guest)


class TestHostActions:
    @pytest.mark.asyncio
    async def test_switch_session_resends_init(self, host, guest, sync, app):
        other = await sync.create_session(app.id, "Other")
        other.data = {"saved": "elsewhere"}
        await sync.save_session(other.id, other, app_id=app.id)

        await host.switch_session(other.id)

        assert host.current_session.id == other.id
        assert [m["session"] for m in guest.of_type("init")] == [{"saved": "elsewhere"}]
        assert host.state is HostState.INITIALIZED

    @pytest.mark.asyncio
    async def test_updates_after_switch_go_to_new_session(self, host, guest, sync, app, remote):
        first_id = host.current_session.id
        other = await sync.create_session(app.id, "Other")
        await host.switch_session(other.id)

        await host.handle_message(guest, {"type": "update-session", "data": {"k": "v"}})
        await host.drain()

        assert stored_data(remote, other.id) == {"k": "v"}
        assert stored_data(remote, first_id) == {}

    @pytest.mark.asyncio
    async def test_save_in_flight_during_switch_targets_old_session(self, cache, guest, gated_remote):
        sync = SyncCoordinator(gated_remote, cache)
        app = await sync.create_app("Gated")
        host = SandboxHost(sync, app.id)
        await host.open(guest)
        first_id = host.current_session.id
        other = await sync.create_session(app.id, "Other")

        gated_remote.gate.clear()
        await host.handle_message(guest, {"type": "update-session", "data": {"for": "first"}})
        await host.switch_session(other.id)
        assert host.state is HostState.SAVING

        gated_remote.gate.set()
        await host.drain()

        assert stored_data(gated_remote, first_id) == {"for": "first"}
        assert stored_data(gated_remote, other.id) == {}
        assert host.state is HostState.INITIALIZED

    @pytest.mark.asyncio
    async def test_new_session_resends_empty_init(self, host, guest):
        record = await host.new_session("Fresh")

        assert host.current_session.id == record.id
        assert {s.name for s in host.sessions} == {"Default", "Fresh"}
        assert [m["session"] for m in guest.of_type("init")] == [{}]

    @pytest.mark.asyncio
    async def test_reload_refetches_app_and_session(self, host, guest, remote, app):
        params_ref = await remote.find(app.id, "params.json")
        await remote.update(params_ref, json.dumps({"theme": "dark"}))
        session_id = host.current_session.id
        remote.documents[session_id].content = json.dumps(
            {"name": "Default", "createdAt": host.current_session.created_at, "data": {"remote": 1}}
        )

        await host.reload()

        init = guest.of_type("init")[-1]
        assert init["params"] == {"theme": "dark"}
        assert init["session"] == {"remote": 1}
        assert host.state is HostState.INITIALIZED

    @pytest.mark.asyncio
    async def test_switch_failure_propagates(self, host):
        with pytest.raises(RemoteStoreError):
            await host.switch_session("missing")


class TestSyncLabel:
    @pytest.mark.asyncio
    async def test_label_uses_bundle_sync_time(self, host):
        synced_at = host.bundle.sync_time

        assert host.sync_label(now_ms=synced_at + 125_000) == "2m ago"
        assert host.sync_label(now_ms=synced_at + 1_000) == "just now"

    @pytest.mark.asyncio
    async def test_label_empty_before_load(self, sync, app):
        assert SandboxHost(sync, app.id).sync_label() == ""
