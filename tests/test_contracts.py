"""
Tests for contract lookup and schedule bookkeeping
"""
from datetime import datetime, timedelta

import pytest

from erp_mirror.contracts import contracts_due, get_contract, mark_synced
from erp_mirror.exceptions import ContractNotFoundError
from erp_mirror.models import Contract

NOW = datetime(2026, 3, 10, 12, 0, 0)


class TestContracts:
    def test_get_contract(self, db_session, contract_id):
        assert get_contract(db_session, contract_id).name == "Acme Distribuidora"

    def test_get_unknown_contract(self, db_session):
        with pytest.raises(ContractNotFoundError):
            get_contract(db_session, 999)

    def test_missing_credentials_depend_on_auth_type(self, db_session, make_contract, oauth_contract_id):
        legacy = get_contract(db_session, make_contract(password=None))
        oauth = get_contract(db_session, oauth_contract_id)

        assert legacy.missing_credentials() == ["password"]
        assert oauth.missing_credentials() == []

    def test_mark_synced_uses_contract_interval(self, session_factory, make_contract):
        tenant = make_contract(sync_interval_minutes=30)
        db = session_factory()
        try:
            mark_synced(db, tenant, NOW)
        finally:
            db.close()

        db = session_factory()
        try:
            contract = db.get(Contract, tenant)
            assert contract.last_sync_at == NOW
            assert contract.next_sync_at == NOW + timedelta(minutes=30)
            assert contracts_due(db, NOW) == []
            assert [c.id for c in contracts_due(db, NOW + timedelta(minutes=30))] == [tenant]
        finally:
            db.close()
