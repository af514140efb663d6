"""Admin API key dependency."""
import secrets

from fastapi import Header, HTTPException

from erp_mirror.config import settings
from erp_mirror.schemas import MAX_LEN_ADMIN_KEY


def require_admin_key(x_admin_key: str = Header(..., max_length=MAX_LEN_ADMIN_KEY)) -> None:
    """Validate the X-Admin-Key header against the configured key (constant-time compare)."""
    expected = settings.admin_api_key
    if not expected or not secrets.compare_digest(x_admin_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin key")
