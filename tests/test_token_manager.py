"""
Unit tests for per-tenant bearer token acquisition
"""
import threading
import time

import pytest

from erp_mirror.auth.token_manager import TokenManager
from erp_mirror.cache.token_store import TokenCacheEntry
from erp_mirror.exceptions import (
    AuthenticationFailedError,
    AuthServiceUnavailableError,
    ContractNotFoundError,
    ErpServerError,
    ErpTransportError,
    MissingCredentialsError,
    TokenLockTimeoutError,
)


@pytest.fixture
def manager(token_store, fake_client, contract_loader, fake_clock):
    return TokenManager(
        token_store,
        fake_client,
        contract_loader,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        ttl_seconds=1200,
        safety_margin_seconds=120,
        lock_ttl_seconds=30,
        lock_wait_seconds=25,
        lock_poll_seconds=0.5,
        max_retries=3,
        retry_delay_seconds=1.0,
    )


class ScriptedAuthClient:
    """Raises the scripted exceptions in order, then issues tokens."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def authenticate(self, contract):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return f"token-{self.calls}"


class TestCachedAcquire:
    """Non-forced acquisition and the cache"""

    def test_cached_token_reused(self, manager, fake_client, contract_id):
        first = manager.acquire(contract_id)
        second = manager.acquire(contract_id)

        assert first == second
        assert fake_client.auth_calls == [contract_id]

    def test_token_within_safety_margin_is_reissued(self, manager, fake_client, fake_clock, contract_id):
        first = manager.acquire(contract_id)
        fake_clock.sleep(1200 - 100)  # 100s left, under the 120s margin

        second = manager.acquire(contract_id)

        assert second != first
        assert len(fake_client.auth_calls) == 2

    def test_token_outside_safety_margin_is_reused(self, manager, fake_client, fake_clock, contract_id):
        manager.acquire(contract_id)
        fake_clock.sleep(1200 - 300)

        manager.acquire(contract_id)

        assert len(fake_client.auth_calls) == 1

    def test_tokens_are_per_tenant(self, manager, fake_client, make_contract):
        a = make_contract(name="A")
        b = make_contract(name="B")

        assert manager.acquire(a) != manager.acquire(b)
        assert fake_client.auth_calls == [a, b]


class TestForcedRefresh:
    """Forced refresh bypasses the cache and clears it"""

    def test_always_issues(self, manager, fake_client, contract_id):
        manager.acquire(contract_id)

        t1 = manager.acquire(contract_id, force_refresh=True)
        t2 = manager.acquire(contract_id, force_refresh=True)

        assert t1 != t2
        assert len(fake_client.auth_calls) == 3

    def test_not_cached(self, manager, token_store, contract_id):
        manager.acquire(contract_id, force_refresh=True)

        assert token_store.get_token(contract_id) is None

    def test_clears_previously_cached_token(self, manager, fake_client, token_store, contract_id):
        cached = manager.acquire(contract_id)

        manager.acquire(contract_id, force_refresh=True)

        assert token_store.get_token(contract_id) is None
        assert manager.acquire(contract_id) != cached
        assert len(fake_client.auth_calls) == 3

    def test_lock_released_after_issue(self, manager, token_store, contract_id):
        manager.acquire(contract_id, force_refresh=True)

        assert not token_store.is_locked(contract_id)


class TestFailures:
    def test_missing_credentials_is_fatal(self, manager, fake_client, token_store, fake_clock, make_contract):
        tenant = make_contract(password=None)
        token_store.set_token(tenant, TokenCacheEntry("stale", fake_clock() + 60, fake_clock()), 60)

        with pytest.raises(MissingCredentialsError) as exc_info:
            manager.acquire(tenant)

        assert exc_info.value.missing == ["password"]
        assert fake_client.auth_calls == []
        assert token_store.get_token(tenant) is None
        assert fake_clock.sleeps == []

    def test_oauth_contract_requires_oauth_fields(self, manager, make_contract):
        tenant = make_contract(auth_type="OAUTH2")

        with pytest.raises(MissingCredentialsError) as exc_info:
            manager.acquire(tenant)

        assert set(exc_info.value.missing) == {"oauth_client_id", "oauth_client_secret", "oauth_x_token"}

    def test_unknown_contract(self, manager):
        with pytest.raises(ContractNotFoundError):
            manager.acquire(999)

    def test_5xx_retried_with_linear_backoff(self, token_store, contract_loader, fake_clock, contract_id):
        client = ScriptedAuthClient(ErpServerError("down", 503), ErpServerError("down", 502))
        manager = TokenManager(token_store, client, contract_loader, clock=fake_clock, sleep=fake_clock.sleep)

        assert manager.acquire(contract_id) == "token-3"
        assert fake_clock.sleeps == [1.0, 2.0]

    def test_5xx_exhausted_is_service_unavailable(self, token_store, contract_loader, fake_clock, contract_id):
        client = ScriptedAuthClient(*[ErpServerError("down", 503) for _ in range(4)])
        manager = TokenManager(token_store, client, contract_loader, clock=fake_clock, sleep=fake_clock.sleep)

        with pytest.raises(AuthServiceUnavailableError):
            manager.acquire(contract_id)

        assert client.calls == 4
        assert fake_clock.sleeps == [1.0, 2.0, 3.0]
        assert not token_store.is_locked(contract_id)

    def test_rejection_invalidates_cache(self, token_store, contract_loader, fake_clock, contract_id):
        client = ScriptedAuthClient(AuthenticationFailedError("Login rejected: bad password"))
        manager = TokenManager(token_store, client, contract_loader, clock=fake_clock, sleep=fake_clock.sleep)
        # Entry inside the safety margin: present but not usable
        token_store.set_token(contract_id, TokenCacheEntry("old", fake_clock() + 60, fake_clock()), 60)

        with pytest.raises(AuthenticationFailedError, match="bad password"):
            manager.acquire(contract_id)

        assert client.calls == 1
        assert token_store.get_token(contract_id) is None

    def test_transport_error_surfaces_as_auth_failure(self, token_store, contract_loader, fake_clock, contract_id):
        client = ScriptedAuthClient(ErpTransportError("connection refused"))
        manager = TokenManager(token_store, client, contract_loader, clock=fake_clock, sleep=fake_clock.sleep)

        with pytest.raises(AuthenticationFailedError, match="connection refused"):
            manager.acquire(contract_id)


class TestTenantLock:
    def test_times_out_when_lock_held(self, manager, token_store, fake_client, fake_clock, contract_id):
        token_store.try_lock(contract_id, "other-worker", 300)

        with pytest.raises(TokenLockTimeoutError):
            manager.acquire(contract_id)

        assert fake_client.auth_calls == []
        assert set(fake_clock.sleeps) == {0.5}
        assert len(fake_clock.sleeps) == 50

    def test_uses_token_cached_by_lock_holder(self, token_store, fake_client, contract_loader, fake_clock, contract_id):
        token_store.try_lock(contract_id, "other-worker", 30)

        def sleep(seconds):
            fake_clock.sleep(seconds)
            # The other worker finishes issuing while we wait
            token_store.set_token(
                contract_id, TokenCacheEntry("from-other", fake_clock() + 1200, fake_clock()), 1200
            )

        manager = TokenManager(token_store, fake_client, contract_loader, clock=fake_clock, sleep=sleep)

        assert manager.acquire(contract_id) == "from-other"
        assert fake_client.auth_calls == []

    def test_forced_refresh_waits_for_lock_instead_of_cache(
        self, token_store, fake_client, contract_loader, fake_clock, contract_id
    ):
        token_store.try_lock(contract_id, "other-worker", 2)
        token_store.set_token(contract_id, TokenCacheEntry("cached", fake_clock() + 1200, fake_clock()), 1200)
        manager = TokenManager(token_store, fake_client, contract_loader, clock=fake_clock, sleep=fake_clock.sleep)

        token = manager.acquire(contract_id, force_refresh=True)

        assert token != "cached"
        assert fake_client.auth_calls == [contract_id]


class TestConcurrentCallers:
    def test_duplicate_requests_collapse_into_one_call(self, token_store, contract_loader, contract_id):
        entered = threading.Event()
        release = threading.Event()

        class SlowClient:
            calls = 0

            def authenticate(self, contract):
                SlowClient.calls += 1
                entered.set()
                release.wait(5)
                return "shared-token"

        manager = TokenManager(token_store, SlowClient(), contract_loader)
        results = []

        def worker():
            results.append(manager.acquire(contract_id))

        first = threading.Thread(target=worker)
        first.start()
        assert entered.wait(5)
        second = threading.Thread(target=worker)
        second.start()
        time.sleep(0.05)
        release.set()
        first.join(5)
        second.join(5)

        assert results == ["shared-token", "shared-token"]
        assert SlowClient.calls == 1


class TestStatusAndInvalidate:
    def test_status_of_cached_token(self, manager, fake_clock, contract_id):
        manager.acquire(contract_id)
        fake_clock.sleep(200)

        status = manager.status(contract_id)

        assert status.active is True
        assert status.remaining_seconds == 1000
        assert status.expires_at > status.issued_at

    def test_status_without_token(self, manager, contract_id):
        status = manager.status(contract_id)

        assert status.active is False
        assert status.issued_at is None

    def test_invalidate_forces_reissue(self, manager, fake_client, contract_id):
        manager.acquire(contract_id)
        manager.invalidate(contract_id)
        manager.acquire(contract_id)

        assert len(fake_client.auth_calls) == 2
