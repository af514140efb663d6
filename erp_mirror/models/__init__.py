"""SQLAlchemy models."""
from erp_mirror.models.contract import Contract
from erp_mirror.models.sync_log import SyncLog
from erp_mirror.models.mirror import (
    MirrorMixin,
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

__all__ = [
    "Contract",
    "SyncLog",
    "MirrorMixin",
    "Partner",
    "Product",
    "NegotiationType",
    "OperationType",
    "StockLevel",
    "PriceTable",
    "PriceException",
    "Seller",
    "Brand",
    "ProductGroup",
    "Neighborhood",
    "City",
    "Company",
    "Region",
    "State",
]
