"""
Unit tests for catalog converters and row mapping
"""
from datetime import datetime

import pytest

from erp_mirror.pipeline.catalog import (
    CATALOG,
    get_table,
    table_names,
    text,
    to_datetime,
    to_float,
    to_int,
)


class TestConverters:
    def test_to_int(self):
        assert to_int("42") == 42
        assert to_int("42.0") == 42
        assert to_int("") is None
        assert to_int(None) is None

    def test_to_int_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_int("abc")

    def test_to_float_accepts_decimal_comma(self):
        assert to_float("2,5") == 2.5
        assert to_float(3) == 3.0
        assert to_float("") is None

    def test_text_truncates(self):
        assert text(3)("abcdef") == "abc"
        assert text(3)(12345) == "123"
        assert text(3)(None) is None

    @pytest.mark.parametrize("raw, expected", [
        ("01/03/2024", datetime(2024, 3, 1)),
        ("01/03/2024 10:30", datetime(2024, 3, 1, 10, 30)),
        ("01/03/2024 10:30:15", datetime(2024, 3, 1, 10, 30, 15)),
        ("2024-03-01", None),
        ("", None),
        (None, None),
    ])
    def test_to_datetime(self, raw, expected):
        assert to_datetime(raw) == expected


class TestCatalog:
    def test_names_are_unique(self):
        names = table_names()
        assert len(names) == len(set(names)) == len(CATALOG)

    def test_partners_sync_first(self):
        assert CATALOG[0].name == "partners"
        assert CATALOG[0].entity == "Parceiro"

    def test_lookup(self):
        assert get_table("products").entity == "Produto"
        assert get_table("invoices") is None

    def test_key_fields_are_requested(self):
        for spec in CATALOG:
            assert set(spec.key_fields) <= set(spec.fields), spec.name

    def test_map_row_requires_key(self):
        with pytest.raises(KeyError):
            get_table("partners").map_row({"NOMEPARC": "No code"})

    def test_map_row_converts(self):
        values = get_table("partners").map_row({"CODPARC": "7", "NOMEPARC": "Loja 7"})

        assert values["partner_code"] == 7
        assert values["name"] == "Loja 7"
