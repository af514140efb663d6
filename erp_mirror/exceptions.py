"""
Exception hierarchy for the sync engine.

Configuration errors are fatal and never retried. Remote request errors are
split so callers can tell credential expiry (recoverable by re-authenticating)
from transient failures (retried with backoff) and everything else.
"""
from typing import Any, Optional


class ErpMirrorError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# -- configuration -----------------------------------------------------------

class ConfigurationError(ErpMirrorError):
    """Contract configuration is unusable; retrying will not help."""


class ContractNotFoundError(ConfigurationError):
    def __init__(self, tenant_id: int):
        super().__init__(f"Contract {tenant_id} not found", {"tenant_id": tenant_id})
        self.tenant_id = tenant_id


class MissingCredentialsError(ConfigurationError):
    def __init__(self, tenant_id: int, auth_type: str, missing: list[str]):
        super().__init__(
            f"Incomplete {auth_type} credentials for contract {tenant_id}",
            {"missing": missing},
        )
        self.tenant_id = tenant_id
        self.missing = missing


# -- token acquisition -------------------------------------------------------

class AuthError(ErpMirrorError):
    """Bearer token could not be obtained."""


class AuthenticationFailedError(AuthError):
    """Authentication endpoint rejected the request; carries the upstream detail."""


class AuthServiceUnavailableError(AuthError):
    """Authentication endpoint kept answering 5xx after all retries."""


class TokenLockTimeoutError(AuthError):
    """Another caller held the tenant lock for longer than the wait budget."""


# -- remote requests ---------------------------------------------------------

class ErpRequestError(ErpMirrorError):
    """A call to the ERP gateway failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Any = None,
    ):
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_data:
            details["response_data"] = response_data
        super().__init__(message, details)
        self.status_code = status_code
        self.response_data = response_data


class CredentialsExpiredError(ErpRequestError):
    """401/403 from the gateway: the bearer token is no longer accepted."""


class ErpServerError(ErpRequestError):
    """5xx from the gateway."""


class ErpTransportError(ErpRequestError):
    """Network failure or timeout before a response arrived."""


class MalformedResponseError(ErpRequestError):
    """Response body did not have the expected shape."""


# -- scheduling --------------------------------------------------------------

class QueueConflictError(ErpMirrorError):
    """Force-sync rejected because the tenant is already scheduled."""


class AlreadyQueuedError(QueueConflictError):
    def __init__(self, tenant_id: int):
        super().__init__(f"Contract {tenant_id} is already in the sync queue")
        self.tenant_id = tenant_id


class AlreadyInFlightError(QueueConflictError):
    def __init__(self, tenant_id: int):
        super().__init__(f"Contract {tenant_id} is already being synchronized")
        self.tenant_id = tenant_id
