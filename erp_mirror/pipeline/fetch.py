"""
Paginated entity fetch with transparent credential renewal.

The page loop is a small state machine: ``FetchState`` holds the cursor, the
rows accumulated so far and the token in use, and the two transitions below are
pure so the renewal/resume behaviour can be tested without HTTP.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from erp_mirror.config import settings
from erp_mirror.connectors.sankhya import RecordsPage
from erp_mirror.exceptions import CredentialsExpiredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchState:
    token: str
    page: int = 0
    rows: list[dict[str, Any]] = field(default_factory=list)
    done: bool = False
    renewals: int = 0  # consecutive renewals on the current page
    total_renewals: int = 0
    pages_fetched: int = 0


def apply_page(state: FetchState, page: RecordsPage) -> FetchState:
    """Accept a page: keep its rows, advance the cursor, stop on an empty or final page."""
    return replace(
        state,
        page=state.page + 1,
        rows=[*state.rows, *page.rows],
        done=not page.rows or not page.has_more,
        renewals=0,
        pages_fetched=state.pages_fetched + 1,
    )


def apply_renewal(state: FetchState, token: str) -> FetchState:
    """Swap in a renewed token; cursor and accumulated rows are untouched so the same page is retried."""
    return replace(
        state,
        token=token,
        renewals=state.renewals + 1,
        total_renewals=state.total_renewals + 1,
    )


class PageFetcher:
    def __init__(
        self,
        client,
        token_manager,
        sleep: Callable[[float], None] = time.sleep,
        page_delay: Optional[float] = None,
        renewal_delay: Optional[float] = None,
        max_renewals_per_page: Optional[int] = None,
    ):
        self.client = client
        self.token_manager = token_manager
        self._sleep = sleep
        self.page_delay = settings.fetch_page_delay_seconds if page_delay is None else page_delay
        self.renewal_delay = settings.fetch_renewal_delay_seconds if renewal_delay is None else renewal_delay
        self.max_renewals = max_renewals_per_page or settings.fetch_max_renewals_per_page

    def fetch_all(self, tenant_id: int, spec, token: str, is_sandbox: bool) -> list[dict[str, Any]]:
        """
        Fetch every page of ``spec.entity`` for the tenant.

        A 401/403 drops the cached token, renews it (forced refresh) and retries the same page.
        Any other error propagates; nothing fetched so far is returned.
        """
        state = FetchState(token=token)
        while not state.done:
            try:
                page = self.client.load_records(state.token, is_sandbox, spec.entity, spec.fields, state.page)
            except CredentialsExpiredError:
                self.token_manager.invalidate(tenant_id)
                if state.renewals >= self.max_renewals:
                    logger.error(
                        "%s page %d for contract %s still rejected after %d renewals",
                        spec.entity, state.page, tenant_id, state.renewals,
                    )
                    raise
                logger.warning(
                    "Token rejected on %s page %d for contract %s, renewing",
                    spec.entity, state.page, tenant_id,
                )
                state = apply_renewal(state, self.token_manager.acquire(tenant_id, force_refresh=True))
                self._sleep(self.renewal_delay)
                continue

            state = apply_page(state, page)
            logger.info(
                "%s page %d for contract %s: %d rows (total %d)",
                spec.entity, state.page - 1, tenant_id, len(page.rows), len(state.rows),
            )
            if not state.done:
                self._sleep(self.page_delay)

        logger.info(
            "Fetched %d %s rows for contract %s in %d pages (%d renewals)",
            len(state.rows), spec.entity, tenant_id, state.pages_fetched, state.total_renewals,
        )
        return state.rows
