"""Contract (tenant) model — one ERP customer whose data is mirrored."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func

from erp_mirror.database import Base

AUTH_LEGACY = "LEGACY"
AUTH_OAUTH2 = "OAUTH2"

# Required credential fields per authentication scheme
LEGACY_FIELDS = ("integration_token", "app_key", "username", "password")
OAUTH2_FIELDS = ("oauth_client_id", "oauth_client_secret", "oauth_x_token")


class Contract(Base):
    """ERP contract: connection settings, credentials and sync schedule."""

    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    tax_id = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    active = Column(Boolean, default=True, nullable=False)
    is_sandbox = Column(Boolean, default=True, nullable=False)
    auth_type = Column(String(10), default=AUTH_LEGACY, nullable=False)  # LEGACY | OAUTH2

    # Legacy login bundle
    integration_token = Column(String(500))
    app_key = Column(String(500))
    username = Column(String(255))
    password = Column(String(255))

    # OAuth2 client-credentials bundle
    oauth_client_id = Column(String(255))
    oauth_client_secret = Column(String(500))
    oauth_x_token = Column(String(500))

    # Schedule state
    sync_enabled = Column(Boolean, default=False, nullable=False)
    sync_interval_minutes = Column(Integer, default=120)
    last_sync_at = Column(DateTime(timezone=True))
    next_sync_at = Column(DateTime(timezone=True), index=True)

    @property
    def uses_oauth2(self) -> bool:
        return (self.auth_type or AUTH_LEGACY).upper() == AUTH_OAUTH2

    def required_credential_fields(self) -> tuple[str, ...]:
        return OAUTH2_FIELDS if self.uses_oauth2 else LEGACY_FIELDS

    def missing_credentials(self) -> list[str]:
        """Names of required credential fields that are empty for this contract's scheme."""
        return [f for f in self.required_credential_fields() if not getattr(self, f)]

    def __repr__(self):
        return f"<Contract(id={self.id}, name='{self.name}', auth_type='{self.auth_type}')>"
