"""Sankhya gateway connector — bearer authentication (legacy + OAuth 2.0) and paged record loading."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from erp_mirror.config import settings
from erp_mirror.exceptions import (
    AuthenticationFailedError,
    CredentialsExpiredError,
    ErpRequestError,
    ErpServerError,
    ErpTransportError,
    MalformedResponseError,
)

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
OAUTH_TOKEN_PATH = "/authenticate"
LOAD_RECORDS_PATH = "/gateway/v1/mge/service.sbr?serviceName=CRUDServiceProvider.loadRecords&outputType=json"


def base_url(is_sandbox: bool) -> str:
    """Gateway base URL for the contract's environment."""
    return settings.erp_sandbox_url if is_sandbox else settings.erp_production_url


def get_oauth_client(client_id: str, client_secret: str) -> OAuth2Session:
    """Build OAuth2 client for the client-credentials grant (secret sent in the form body)."""
    return OAuth2Session(
        client_id=client_id,
        client_secret=client_secret,
        token_endpoint_auth_method="client_secret_post",
    )


def _headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}


def _error_detail(response: requests.Response) -> Any:
    """Best-effort upstream error detail: JSON statusMessage/body, else truncated text."""
    try:
        data = response.json()
    except ValueError:
        return (response.text or "")[:500]
    if isinstance(data, dict) and data.get("statusMessage"):
        return data["statusMessage"]
    return data


@dataclass
class RecordsPage:
    """One page of loadRecords output, converted to named-field rows."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False


def build_load_payload(entity: str, fields: tuple[str, ...], page: int) -> dict[str, Any]:
    """loadRecords request body for one page of an entity."""
    return {
        "requestBody": {
            "dataSet": {
                "rootEntity": entity,
                "includePresentationFields": "N",
                "useFileBasedPagination": True,
                "disableRowsLimit": True,
                "offsetPage": str(page),
                "entity": {"fieldset": {"list": ", ".join(fields)}},
            }
        }
    }


def parse_entities(data: Any) -> RecordsPage:
    """
    Convert a loadRecords response into rows keyed by field name.

    Records arrive keyed by positional index (f0, f1, ...) with the value under
    "$"; the field names come from the response metadata. A single record or a
    single metadata field is sent as an object rather than a list.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("loadRecords response is not a JSON object")
    if str(data.get("status", "")) == "0":
        raise ErpRequestError(data.get("statusMessage") or "Gateway reported an error", response_data=data)

    entities = (data.get("responseBody") or {}).get("entities")
    if not entities or not entities.get("entity"):
        return RecordsPage(rows=[], has_more=False)

    try:
        field_meta = entities["metadata"]["fields"]["field"]
    except (KeyError, TypeError) as exc:
        raise MalformedResponseError("loadRecords response has no field metadata") from exc
    if isinstance(field_meta, dict):
        field_meta = [field_meta]
    names = [f["name"] for f in field_meta]

    raw = entities["entity"]
    if isinstance(raw, dict):
        raw = [raw]

    rows = []
    for record in raw:
        row = {}
        for i, name in enumerate(names):
            cell = record.get(f"f{i}")
            if isinstance(cell, dict) and "$" in cell:
                row[name] = cell["$"]
        rows.append(row)

    has_more = entities.get("hasMoreResult") in (True, "true")
    return RecordsPage(rows=rows, has_more=has_more)


class SankhyaClient:
    """
    HTTP client for one gateway (sandbox and production share it; the base URL
    is picked per call from the contract's environment flag).
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        auth_timeout: Optional[float] = None,
        request_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.auth_timeout = auth_timeout or settings.erp_auth_timeout_seconds
        self.request_timeout = request_timeout or settings.erp_request_timeout_seconds
        self.max_retries = settings.fetch_request_retries if max_retries is None else max_retries
        self.retry_delay = settings.fetch_retry_delay_seconds if retry_delay is None else retry_delay
        self._sleep = sleep

    # -- authentication ------------------------------------------------------

    def authenticate(self, contract) -> str:
        """Issue a new bearer token with the contract's scheme. Raises ErpServerError on 5xx."""
        if contract.uses_oauth2:
            return self.authenticate_oauth2(contract)
        return self.login_legacy(contract)

    def login_legacy(self, contract) -> str:
        """Legacy login: four credential headers, bearer token in the JSON body."""
        url = f"{base_url(contract.is_sandbox)}{LOGIN_PATH}"
        headers = {
            "token": contract.integration_token,
            "appkey": contract.app_key,
            "username": contract.username,
            "password": contract.password,
        }
        try:
            r = self.session.post(url, json={}, headers=headers, timeout=self.auth_timeout)
        except requests.RequestException as exc:
            raise ErpTransportError(f"Login request failed: {exc}") from exc

        if r.status_code >= 500:
            raise ErpServerError("Login endpoint unavailable", r.status_code, _error_detail(r))
        if not r.ok:
            raise AuthenticationFailedError(f"Login rejected: {_error_detail(r)}", {"status_code": r.status_code})
        try:
            data = r.json()
        except ValueError as exc:
            raise AuthenticationFailedError("Login response is not JSON") from exc
        token = data.get("bearerToken") or data.get("token")
        if not token:
            raise AuthenticationFailedError("Bearer token missing from login response")
        return token

    def authenticate_oauth2(self, contract) -> str:
        """OAuth 2.0 client-credentials grant; the X-Token header identifies the integration."""
        url = f"{base_url(contract.is_sandbox)}{OAUTH_TOKEN_PATH}"
        client = get_oauth_client(contract.oauth_client_id, contract.oauth_client_secret)
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "X-Token": contract.oauth_x_token,
        }
        try:
            token = client.fetch_token(
                url,
                grant_type="client_credentials",
                headers=headers,
                timeout=self.auth_timeout,
            )
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status and status >= 500:
                raise ErpServerError("OAuth endpoint unavailable", status) from exc
            raise AuthenticationFailedError(f"OAuth request rejected: {exc}") from exc
        except AuthlibBaseError as exc:
            raise AuthenticationFailedError(f"OAuth request rejected: {exc.description or exc.error}") from exc
        except requests.RequestException as exc:
            raise ErpTransportError(f"OAuth request failed: {exc}") from exc
        except ValueError as exc:
            raise AuthenticationFailedError("OAuth response is not JSON") from exc
        finally:
            client.close()

        access_token = token.get("access_token")
        if not access_token:
            raise AuthenticationFailedError("Access token missing from OAuth response")
        return access_token

    # -- record loading ------------------------------------------------------

    def load_records(
        self,
        token: str,
        is_sandbox: bool,
        entity: str,
        fields: tuple[str, ...],
        page: int,
    ) -> RecordsPage:
        """
        Fetch one page of an entity. Network errors, timeouts and 5xx are retried
        with linear backoff; 401/403 is raised immediately as CredentialsExpiredError.
        """
        url = f"{base_url(is_sandbox)}{LOAD_RECORDS_PATH}"
        payload = build_load_payload(entity, fields, page)
        attempt = 0
        while True:
            try:
                return parse_entities(self._post(url, token, payload))
            except (ErpServerError, ErpTransportError) as exc:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.retry_delay * attempt
                logger.warning(
                    "%s page %d failed (%s), retry %d/%d in %.1fs",
                    entity, page, exc.message, attempt, self.max_retries, delay,
                )
                self._sleep(delay)

    def _post(self, url: str, token: str, payload: dict[str, Any]) -> Any:
        try:
            r = self.session.post(url, json=payload, headers=_headers(token), timeout=self.request_timeout)
        except requests.Timeout as exc:
            raise ErpTransportError(f"Gateway request timed out after {self.request_timeout}s") from exc
        except requests.RequestException as exc:
            raise ErpTransportError(f"Gateway request failed: {exc}") from exc

        if r.status_code in (401, 403):
            raise CredentialsExpiredError("Bearer token rejected", r.status_code)
        if r.status_code >= 500:
            raise ErpServerError("Gateway unavailable", r.status_code, _error_detail(r))
        if r.status_code >= 400:
            raise ErpRequestError(f"Gateway request rejected: {_error_detail(r)}", r.status_code)
        try:
            return r.json()
        except ValueError as exc:
            raise MalformedResponseError("Gateway response is not JSON", r.status_code) from exc
