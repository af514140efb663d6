#!/usr/bin/env python3
"""Seed a demo sandbox contract so the scheduler has something to pick up."""
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from erp_mirror.database import SessionLocal, init_db
from erp_mirror.models import Contract
from erp_mirror.models.contract import AUTH_LEGACY, AUTH_OAUTH2


def seed():
    init_db()
    db = SessionLocal()
    try:
        c = db.query(Contract).filter(Contract.name == "Demo Company").first()
        if c:
            print(f"Using contract: {c.id}")
            return

        auth_type = AUTH_OAUTH2 if os.getenv("DEMO_OAUTH_CLIENT_ID") else AUTH_LEGACY
        c = Contract(
            name="Demo Company",
            tax_id="00000000000191",
            is_sandbox=True,
            auth_type=auth_type,
            # Credentials come from the environment; never hardcode them
            integration_token=os.getenv("DEMO_INTEGRATION_TOKEN"),
            app_key=os.getenv("DEMO_APP_KEY"),
            username=os.getenv("DEMO_USERNAME"),
            password=os.getenv("DEMO_PASSWORD"),
            oauth_client_id=os.getenv("DEMO_OAUTH_CLIENT_ID"),
            oauth_client_secret=os.getenv("DEMO_OAUTH_CLIENT_SECRET"),
            oauth_x_token=os.getenv("DEMO_OAUTH_X_TOKEN"),
            sync_enabled=True,
            sync_interval_minutes=120,
        )
        db.add(c)
        db.commit()
        db.refresh(c)
        print(f"Created contract: {c.id} ({auth_type}, sandbox)")
        missing = c.missing_credentials()
        if missing:
            print(f"Missing credentials (set DEMO_* env vars): {', '.join(missing)}")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
