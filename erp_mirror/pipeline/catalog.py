"""
Catalog of mirrored ERP entities.

Each entry parameterizes the generic table pipeline: remote entity name, the
field list requested, the local model, its natural key, and how each remote
field maps onto a column. Order matters: tenants are synced table by table in
catalog order.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from erp_mirror.models import (
    Partner,
    Product,
    NegotiationType,
    OperationType,
    StockLevel,
    PriceTable,
    PriceException,
    Seller,
    Brand,
    ProductGroup,
    Neighborhood,
    City,
    Company,
    Region,
    State,
)

Converter = Callable[[Any], Any]

ERP_DATE_FORMATS = ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%d/%m/%Y")


def to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return int(float(value))


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.replace(",", ".")
    return float(value)


def text(max_len: int) -> Converter:
    """String converter truncating to the column width."""

    def convert(value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)[:max_len]

    return convert


def key_text(value: Any) -> str:
    """String key component; absent means empty (key columns are never NULL)."""
    return "" if value is None else str(value)


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse the ERP's dd/mm/yyyy[ HH:MM[:SS]] format. Unparseable dates become None."""
    if not value:
        return None
    value = str(value).strip()
    for fmt in ERP_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class TableSpec:
    name: str
    entity: str
    model: type
    key_fields: tuple[str, ...]
    mapper: dict[str, tuple[str, Converter]]

    @property
    def fields(self) -> tuple[str, ...]:
        """Remote fields requested, in mapper order."""
        return tuple(self.mapper)

    @property
    def key_columns(self) -> tuple[str, ...]:
        return tuple(self.mapper[f][0] for f in self.key_fields)

    def map_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """
        Convert one remote row to column values.

        Raises KeyError when a key field is missing and ValueError/TypeError when
        a value cannot be converted; the reconciler skips such rows.
        """
        values = {}
        for field, (column, convert) in self.mapper.items():
            if field in self.key_fields:
                if row.get(field) in (None, "") and convert is not key_text:
                    raise KeyError(f"{self.entity} row without key field {field}")
            values[column] = convert(row.get(field))
        return values


CATALOG: list[TableSpec] = [
    TableSpec(
        name="partners",
        entity="Parceiro",
        model=Partner,
        key_fields=("CODPARC",),
        mapper={
            "CODPARC": ("partner_code", to_int),
            "NOMEPARC": ("name", text(255)),
            "CGC_CPF": ("tax_id", text(20)),
            "CODCID": ("city_code", to_int),
            "ATIVO": ("active", text(1)),
            "TIPPESSOA": ("person_type", text(1)),
            "RAZAOSOCIAL": ("legal_name", text(255)),
            "IDENTINSCESTAD": ("state_registration", text(30)),
            "CEP": ("zip_code", text(10)),
            "CODEND": ("address_code", to_int),
            "NUMEND": ("address_number", text(20)),
            "COMPLEMENTO": ("complement", text(100)),
            "CODBAI": ("neighborhood_code", to_int),
            "LATITUDE": ("latitude", text(50)),
            "LONGITUDE": ("longitude", text(50)),
            "CLIENTE": ("is_customer", text(1)),
            "CODVEND": ("seller_code", to_int),
            "CODREG": ("region_code", to_int),
            "CODTAB": ("price_table_code", to_int),
        },
    ),
    TableSpec(
        name="products",
        entity="Produto",
        model=Product,
        key_fields=("CODPROD",),
        mapper={
            "CODPROD": ("product_code", to_int),
            "DESCRPROD": ("description", text(255)),
            "ATIVO": ("active", text(1)),
            "LOCAL": ("location", text(100)),
            "MARCA": ("brand", text(100)),
            "CARACTERISTICAS": ("features", text(500)),
            "UNIDADE": ("unit", text(10)),
            "VLRCOMERC": ("commercial_value", to_float),
            "CODGRUPOPROD": ("product_group_code", to_int),
            "CODMARCA": ("brand_code", to_int),
        },
    ),
    TableSpec(
        name="negotiation_types",
        entity="TipoNegociacao",
        model=NegotiationType,
        key_fields=("CODTIPVENDA",),
        mapper={
            "CODTIPVENDA": ("type_code", to_int),
            "DESCRTIPVENDA": ("description", text(255)),
        },
    ),
    TableSpec(
        name="operation_types",
        entity="TipoOperacao",
        model=OperationType,
        key_fields=("CODTIPOPER",),
        mapper={
            "CODTIPOPER": ("operation_code", to_int),
            "DESCROPER": ("description", text(255)),
            "ATIVO": ("active", text(1)),
        },
    ),
    TableSpec(
        name="stock_levels",
        entity="Estoque",
        model=StockLevel,
        key_fields=("CODEMP", "CODPROD", "CODLOCAL", "CONTROLE"),
        mapper={
            "CODEMP": ("company_code", to_int),
            "CODPROD": ("product_code", to_int),
            "CODLOCAL": ("location_code", to_int),
            "CONTROLE": ("control", key_text),
            "ESTOQUE": ("quantity", to_float),
            "RESERVADO": ("reserved", to_float),
            "ATIVO": ("active", text(1)),
        },
    ),
    TableSpec(
        name="price_tables",
        entity="TabelaPreco",
        model=PriceTable,
        key_fields=("NUTAB",),
        mapper={
            "NUTAB": ("table_number", to_int),
            "DTVIGOR": ("effective_at", to_datetime),
            "PERCENTUAL": ("percentage", to_float),
            "CODTABORIG": ("origin_table_code", to_int),
            "DTALTER": ("changed_at", to_datetime),
            "CODTAB": ("table_code", to_int),
        },
    ),
    TableSpec(
        name="price_exceptions",
        entity="Excecao",
        model=PriceException,
        key_fields=("NUTAB", "CODPROD", "CODLOCAL", "CONTROLE"),
        mapper={
            "NUTAB": ("table_number", to_int),
            "CODPROD": ("product_code", to_int),
            "CODLOCAL": ("location_code", to_int),
            "CONTROLE": ("control", key_text),
            "VLRVENDA": ("sale_price", to_float),
            "TIPO": ("kind", text(1)),
        },
    ),
    TableSpec(
        name="sellers",
        entity="Vendedor",
        model=Seller,
        key_fields=("CODVEND",),
        mapper={
            "CODVEND": ("seller_code", to_int),
            "APELIDO": ("nickname", text(100)),
            "ATIVO": ("active", text(1)),
            "CODEMP": ("company_code", to_int),
            "CODPARC": ("partner_code", to_int),
            "CODGER": ("manager_code", to_int),
            "CODREG": ("region_code", to_int),
            "EMAIL": ("email", text(255)),
            "TIPVEND": ("seller_type", text(1)),
            "DESCMAX": ("max_discount", to_float),
        },
    ),
    TableSpec(
        name="brands",
        entity="MarcaProduto",
        model=Brand,
        key_fields=("CODIGO",),
        mapper={
            "CODIGO": ("brand_code", to_int),
            "DESCRICAO": ("description", text(255)),
        },
    ),
    TableSpec(
        name="product_groups",
        entity="GrupoProduto",
        model=ProductGroup,
        key_fields=("CODGRUPOPROD",),
        mapper={
            "CODGRUPOPROD": ("group_code", to_int),
            "DESCRGRUPOPROD": ("description", text(255)),
        },
    ),
    TableSpec(
        name="neighborhoods",
        entity="Bairro",
        model=Neighborhood,
        key_fields=("CODBAI",),
        mapper={
            "CODBAI": ("neighborhood_code", to_int),
            "NOMEBAI": ("name", text(255)),
            "CODREG": ("region_code", to_int),
            "DESCRICAOCORREIO": ("postal_description", text(255)),
            "DTALTER": ("changed_at", to_datetime),
        },
    ),
    TableSpec(
        name="cities",
        entity="Cidade",
        model=City,
        key_fields=("CODCID",),
        mapper={
            "CODCID": ("city_code", to_int),
            "NOMECID": ("name", text(255)),
            "UF": ("state_code", to_int),
            "CODREG": ("region_code", to_int),
            "DESCRICAOCORREIO": ("postal_description", text(255)),
        },
    ),
    TableSpec(
        name="companies",
        entity="Empresa",
        model=Company,
        key_fields=("CODEMP",),
        mapper={
            "CODEMP": ("company_code", to_int),
            "NOMEFANTASIA": ("trade_name", text(255)),
            "RAZAOSOCIAL": ("legal_name", text(255)),
        },
    ),
    TableSpec(
        name="regions",
        entity="Regiao",
        model=Region,
        key_fields=("CODREG",),
        mapper={
            "CODREG": ("region_code", to_int),
            "NOMEREG": ("name", text(255)),
            "ATIVA": ("active", text(1)),
            "CODTAB": ("price_table_code", to_int),
            "CODVEND": ("seller_code", to_int),
            "CODREGPAI": ("parent_region_code", to_int),
        },
    ),
    TableSpec(
        name="states",
        entity="UnidadeFederativa",
        model=State,
        key_fields=("CODUF",),
        mapper={
            "CODUF": ("state_code", to_int),
            "UF": ("abbreviation", text(2)),
            "DESCRICAO": ("name", text(100)),
        },
    ),
]

_BY_NAME = {spec.name: spec for spec in CATALOG}


def get_table(name: str) -> Optional[TableSpec]:
    return _BY_NAME.get(name)


def table_names() -> list[str]:
    return [spec.name for spec in CATALOG]
