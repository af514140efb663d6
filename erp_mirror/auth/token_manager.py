"""
Per-tenant bearer token manager.

``acquire`` is the only way to get a token. Cached tokens are reused while they
have more than the safety margin left; otherwise a new one is issued under the
tenant lock so that concurrent callers, in this process or others, trigger a
single authentication call.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from erp_mirror.cache.token_store import TokenCacheEntry, TokenStore, build_token_store
from erp_mirror.config import settings
from erp_mirror.contracts import load_contract
from erp_mirror.exceptions import (
    AuthenticationFailedError,
    AuthServiceUnavailableError,
    ErpRequestError,
    ErpServerError,
    MissingCredentialsError,
    TokenLockTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenStatus:
    tenant_id: int
    active: bool
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    remaining_seconds: int = 0


def _instant(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).replace(tzinfo=None)


class TokenManager:
    def __init__(
        self,
        store: TokenStore,
        client,
        contract_loader: Callable,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        ttl_seconds: Optional[int] = None,
        safety_margin_seconds: Optional[int] = None,
        lock_ttl_seconds: Optional[int] = None,
        lock_wait_seconds: Optional[float] = None,
        lock_poll_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        """
        Args:
            store: token cache + tenant lock backend
            client: ERP client exposing ``authenticate(contract) -> str``
            contract_loader: ``tenant_id -> Contract``; raises ContractNotFoundError
        """
        self.store = store
        self.client = client
        self._load_contract = contract_loader
        self._clock = clock
        self._sleep = sleep
        self.ttl = ttl_seconds or settings.token_ttl_seconds
        self.safety_margin = settings.token_safety_margin_seconds if safety_margin_seconds is None else safety_margin_seconds
        self.lock_ttl = lock_ttl_seconds or settings.token_lock_ttl_seconds
        self.lock_wait = settings.token_lock_wait_seconds if lock_wait_seconds is None else lock_wait_seconds
        self.lock_poll = lock_poll_seconds or settings.token_lock_poll_seconds
        self.max_retries = settings.auth_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.auth_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds

        self._guard = threading.Lock()
        self._inflight: dict[tuple[int, bool], Future] = {}

    # -- public API ----------------------------------------------------------

    def acquire(self, tenant_id: int, force_refresh: bool = False) -> str:
        """
        Return a bearer token for the tenant.

        With ``force_refresh`` the cache is bypassed and cleared and the new
        token is not cached, so the caller is guaranteed a freshly issued credential.
        """
        if not force_refresh:
            token = self._cached(tenant_id)
            if token:
                return token

        # Collapse concurrent requests of the same kind onto one issuance
        key = (tenant_id, force_refresh)
        with self._guard:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
        if not leader:
            logger.debug("Joining in-flight token request for contract %s", tenant_id)
            return future.result()

        try:
            token = self._issue_with_retry(tenant_id, force_refresh)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(token)
            return token
        finally:
            with self._guard:
                self._inflight.pop(key, None)

    def invalidate(self, tenant_id: int) -> None:
        """Drop the cached token (e.g. after the gateway rejected it)."""
        self.store.delete_token(tenant_id)
        logger.info("Token cache invalidated for contract %s", tenant_id)

    def status(self, tenant_id: int) -> TokenStatus:
        entry = self.store.get_token(tenant_id)
        if entry is None:
            return TokenStatus(tenant_id=tenant_id, active=False)
        remaining = entry.remaining(self._clock())
        return TokenStatus(
            tenant_id=tenant_id,
            active=remaining > 0,
            issued_at=_instant(entry.issued_at),
            expires_at=_instant(entry.expires_at),
            remaining_seconds=max(0, int(remaining)),
        )

    # -- issuance ------------------------------------------------------------

    def _cached(self, tenant_id: int) -> Optional[str]:
        entry = self.store.get_token(tenant_id)
        if entry and entry.remaining(self._clock()) > self.safety_margin:
            return entry.token
        return None

    def _issue_with_retry(self, tenant_id: int, force_refresh: bool) -> str:
        attempt = 0
        while True:
            try:
                return self._issue(tenant_id, force_refresh)
            except ErpServerError as exc:
                if attempt >= self.max_retries:
                    raise AuthServiceUnavailableError(
                        f"Authentication service unavailable for contract {tenant_id}",
                        {"status_code": exc.status_code, "attempts": attempt + 1},
                    ) from exc
                attempt += 1
                delay = self.retry_delay * attempt
                logger.warning(
                    "Auth endpoint returned %s for contract %s, retry %d/%d in %.1fs",
                    exc.status_code, tenant_id, attempt, self.max_retries, delay,
                )
                self._sleep(delay)

    def _issue(self, tenant_id: int, force_refresh: bool) -> str:
        owner = uuid.uuid4().hex
        deadline = self._clock() + self.lock_wait
        while not self.store.try_lock(tenant_id, owner, self.lock_ttl):
            if not force_refresh:
                token = self._cached(tenant_id)
                if token:
                    logger.debug("Token for contract %s issued by another caller", tenant_id)
                    return token
            if self._clock() >= deadline:
                raise TokenLockTimeoutError(
                    f"Timed out waiting for token lock of contract {tenant_id}",
                    {"waited_seconds": self.lock_wait},
                )
            self._sleep(self.lock_poll)

        try:
            if not force_refresh:
                # Issued between our cache miss and taking the lock
                token = self._cached(tenant_id)
                if token:
                    return token
            return self._authenticate(tenant_id, force_refresh)
        finally:
            self.store.release_lock(tenant_id, owner)

    def _authenticate(self, tenant_id: int, force_refresh: bool) -> str:
        contract = self._load_contract(tenant_id)
        missing = contract.missing_credentials()
        if missing:
            self.store.delete_token(tenant_id)
            raise MissingCredentialsError(tenant_id, contract.auth_type, missing)

        try:
            token = self.client.authenticate(contract)
        except ErpServerError:
            raise
        except AuthenticationFailedError as exc:
            self.store.delete_token(tenant_id)
            logger.error("Authentication failed for contract %s: %s", tenant_id, exc.message)
            raise
        except ErpRequestError as exc:
            self.store.delete_token(tenant_id)
            logger.error("Authentication failed for contract %s: %s", tenant_id, exc.message)
            raise AuthenticationFailedError(
                f"Authentication failed for contract {tenant_id}: {exc.message}", exc.details
            ) from exc

        now = self._clock()
        if force_refresh:
            # A forced token supersedes whatever is cached for the tenant
            self.store.delete_token(tenant_id)
        else:
            self.store.set_token(tenant_id, TokenCacheEntry(token=token, expires_at=now + self.ttl, issued_at=now), self.ttl)
        logger.info(
            "Issued %s token for contract %s (%s)",
            "forced" if force_refresh else "cached",
            tenant_id,
            "sandbox" if contract.is_sandbox else "production",
        )
        return token


def build_token_manager(client) -> TokenManager:
    """Token manager over the configured store, loading contracts from the database."""
    return TokenManager(build_token_store(settings.redis_url), client, load_contract)
