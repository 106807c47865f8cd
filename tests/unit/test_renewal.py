"""Single-flight credential renewal under concurrent authorization failures."""
import asyncio

import pytest

from backoffice.core.api.client import ApiClient
from backoffice.core.api.exceptions import NetworkFailure, SessionExpired


@pytest.fixture()
def seeded(server, payloads):
    server.add_order(payloads.order(1, "processing"))
    return server


@pytest.mark.parametrize("callers", [2, 5, 20])
def test_concurrent_401s_issue_exactly_one_renewal(manager, seeded, login_as, callers):
    client = ApiClient(manager)

    async def scenario():
        await login_as(manager, "staff")
        seeded.expire_access()
        return await asyncio.gather(*(client.get("/orders/1") for _ in range(callers)))

    responses = asyncio.run(scenario())

    assert seeded.count("POST", "/auth/refresh") == 1
    assert all(r.data["id"] == 1 for r in responses)
    assert manager.renewal_pending is False


def test_concurrent_callers_receive_same_credential(manager, server, login_as):
    server.refresh_gate = asyncio.Event()

    async def scenario():
        await login_as(manager, "admin")
        stale = manager.current_credential().access_token
        waiters = [asyncio.ensure_future(manager.renew(rejected_token=stale)) for _ in range(4)]
        await asyncio.sleep(0.01)
        assert manager.renewal_pending is True
        server.refresh_gate.set()
        return await asyncio.gather(*waiters)

    credentials = asyncio.run(scenario())

    assert len({c.access_token for c in credentials}) == 1
    assert server.count("POST", "/auth/refresh") == 1


def test_renewal_failure_fans_out_session_expired_and_clears(manager, seeded, store, login_as):
    client = ApiClient(manager)

    async def scenario():
        await login_as(manager, "staff")
        seeded.expire_access()
        seeded.refresh_tokens.clear()
        return await asyncio.gather(*(client.get("/orders/1") for _ in range(5)), return_exceptions=True)

    results = asyncio.run(scenario())

    assert all(isinstance(r, SessionExpired) for r in results)
    assert seeded.count("POST", "/auth/refresh") == 1
    assert store.load_credential() is None
    assert manager.identity is None
    assert manager.is_authenticated is False


def test_renewal_network_failure_is_session_expired(manager, server, store, login_as):
    server.refresh_error = NetworkFailure("timed out", endpoint="/auth/refresh")

    async def scenario():
        await login_as(manager, "admin")
        await manager.renew()

    with pytest.raises(SessionExpired):
        asyncio.run(scenario())
    assert store.load_credential() is None


def test_rotated_token_is_reused_without_second_renewal(manager, server, login_as):
    async def scenario():
        await login_as(manager, "admin")
        stale = manager.current_credential().access_token
        first = await manager.renew(rejected_token=stale)
        # A request that was rejected with the old token arrives late.
        second = await manager.renew(rejected_token=stale)
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second
    assert server.count("POST", "/auth/refresh") == 1


def test_later_expiry_starts_fresh_renewal(manager, seeded, login_as):
    client = ApiClient(manager)

    async def scenario():
        await login_as(manager, "staff")
        seeded.expire_access()
        await client.get("/orders/1")
        seeded.expire_access()
        await client.get("/orders/1")

    asyncio.run(scenario())

    assert seeded.count("POST", "/auth/refresh") == 2


def test_renew_without_credential_raises_session_expired(manager, server):
    with pytest.raises(SessionExpired):
        asyncio.run(manager.renew())
    assert server.calls == []


def test_renewal_after_failure_is_not_retried_automatically(manager, server, login_as):
    async def scenario():
        await login_as(manager, "staff")
        stale = manager.current_credential().access_token
        server.refresh_tokens.clear()
        with pytest.raises(SessionExpired):
            await manager.renew(rejected_token=stale)
        # Straggler that saw the same rejected token.
        with pytest.raises(SessionExpired):
            await manager.renew(rejected_token=stale)

    asyncio.run(scenario())
    assert server.count("POST", "/auth/refresh") == 1


def test_cancelled_sole_waiter_lets_renewal_finish_and_persist(manager, seeded, store, login_as):
    seeded.refresh_gate = asyncio.Event()
    client = ApiClient(manager)

    async def scenario():
        await login_as(manager, "admin")
        before = manager.current_credential()
        waiter = asyncio.ensure_future(manager.renew(rejected_token=before.access_token))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert manager.renewal_pending is True
        seeded.refresh_gate.set()
        await asyncio.sleep(0.01)
        renewed = manager.current_credential()
        # The rotated refresh token kept by the session must still work.
        seeded.expire_access()
        await client.get("/orders/1")
        return before, renewed

    before, renewed = asyncio.run(scenario())

    assert renewed.access_token != before.access_token
    assert renewed.refresh_token != before.refresh_token
    assert manager.renewal_pending is False
    assert seeded.count("POST", "/auth/refresh") == 2
    assert manager.is_authenticated is True


def test_cancelled_waiter_does_not_cancel_shared_renewal(manager, server, store, login_as):
    server.refresh_gate = asyncio.Event()

    async def scenario():
        await login_as(manager, "admin")
        stale = manager.current_credential().access_token
        leaving = asyncio.ensure_future(manager.renew(rejected_token=stale))
        staying = asyncio.ensure_future(manager.renew(rejected_token=stale))
        await asyncio.sleep(0.01)
        leaving.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leaving
        server.refresh_gate.set()
        return stale, await staying

    stale, renewed = asyncio.run(scenario())

    assert renewed.access_token != stale
    assert store.load_credential() == renewed
    assert server.count("POST", "/auth/refresh") == 1


# ─────────────────────────────────────────────────────────────────────────────
# Renewal settling after the session changed
# ─────────────────────────────────────────────────────────────────────────────
def test_teardown_during_renewal_keeps_store_cleared(manager, server, store, login_as):
    server.refresh_gate = asyncio.Event()

    async def scenario():
        await login_as(manager, "staff")
        stale = manager.current_credential().access_token
        pending = asyncio.ensure_future(manager.renew(rejected_token=stale))
        await asyncio.sleep(0.01)
        manager.teardown()
        assert store.load_credential() is None
        server.refresh_gate.set()
        with pytest.raises(SessionExpired):
            await pending

    asyncio.run(scenario())

    assert store.load_credential() is None
    assert store.load_identity() is None
    assert manager.current_credential() is None
    assert manager.identity is None


def test_logout_during_renewal_is_not_undone(manager, seeded, store, login_as):
    seeded.refresh_gate = asyncio.Event()
    client = ApiClient(manager)

    async def scenario():
        await login_as(manager, "staff")
        seeded.expire_access()
        request = asyncio.ensure_future(client.get("/orders/1"))
        await asyncio.sleep(0.01)
        assert manager.renewal_pending is True
        seeded.force("POST", "/auth/logout", (200, None))
        assert await manager.logout() is True
        seeded.refresh_gate.set()
        with pytest.raises(SessionExpired):
            await request

    asyncio.run(scenario())

    assert store.load_credential() is None
    assert manager.current_credential() is None
    assert manager.is_authenticated is False


def test_login_during_renewal_keeps_new_session(manager, server, store, login_as):
    server.refresh_gate = asyncio.Event()

    async def scenario():
        await login_as(manager, "staff")
        stale = manager.current_credential().access_token
        pending = asyncio.ensure_future(manager.renew(rejected_token=stale))
        await asyncio.sleep(0.01)
        admin = await login_as(manager, "admin")
        admin_credential = manager.current_credential()
        server.refresh_gate.set()
        with pytest.raises(SessionExpired):
            await pending
        return admin, admin_credential

    admin, admin_credential = asyncio.run(scenario())

    assert manager.identity == admin
    assert manager.current_credential() == admin_credential
    assert store.load_credential() == admin_credential
    assert store.load_identity() == admin


def test_new_session_renews_independently_of_orphaned_renewal(manager, server, login_as):
    server.refresh_gate = asyncio.Event()

    async def scenario():
        await login_as(manager, "staff")
        stale = manager.current_credential().access_token
        orphan = asyncio.ensure_future(manager.renew(rejected_token=stale))
        await asyncio.sleep(0.01)
        await login_as(manager, "admin")
        admin_token = manager.current_credential().access_token
        server.refresh_gate.set()
        renewed = await manager.renew(rejected_token=admin_token)
        with pytest.raises(SessionExpired):
            await orphan
        return admin_token, renewed

    admin_token, renewed = asyncio.run(scenario())

    assert renewed.access_token != admin_token
    assert manager.current_credential() == renewed
    assert manager.identity.role.value == "admin"
    assert server.count("POST", "/auth/refresh") == 2
