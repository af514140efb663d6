"""Mirrored ERP entity tables.

Every table is tenant-scoped: the primary key is (tenant_id, natural key).
Rows are never deleted here; a reconciliation pass flips ``current`` off for
everything it does not observe upstream.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, ForeignKey
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func

from erp_mirror.database import Base


class MirrorMixin:
    """Columns shared by all mirrored tables."""

    @declared_attr
    def tenant_id(cls):
        return Column(Integer, ForeignKey("contracts.id"), primary_key=True, index=True)

    current = Column(Boolean, default=True, nullable=False, index=True)
    loaded_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Partner(MirrorMixin, Base):
    __tablename__ = "mirror_partners"

    partner_code = Column(Integer, primary_key=True)
    name = Column(String(255))
    tax_id = Column(String(20))
    city_code = Column(Integer)
    active = Column(String(1))
    person_type = Column(String(1))
    legal_name = Column(String(255))
    state_registration = Column(String(30))
    zip_code = Column(String(10))
    address_code = Column(Integer)
    address_number = Column(String(20))
    complement = Column(String(100))
    neighborhood_code = Column(Integer)
    latitude = Column(String(50))
    longitude = Column(String(50))
    is_customer = Column(String(1))
    seller_code = Column(Integer)
    region_code = Column(Integer)
    price_table_code = Column(Integer)


class Product(MirrorMixin, Base):
    __tablename__ = "mirror_products"

    product_code = Column(Integer, primary_key=True)
    description = Column(String(255))
    active = Column(String(1))
    location = Column(String(100))
    brand = Column(String(100))
    features = Column(String(500))
    unit = Column(String(10))
    commercial_value = Column(Float)
    product_group_code = Column(Integer)
    brand_code = Column(Integer)


class NegotiationType(MirrorMixin, Base):
    __tablename__ = "mirror_negotiation_types"

    type_code = Column(Integer, primary_key=True)
    description = Column(String(255))


class OperationType(MirrorMixin, Base):
    __tablename__ = "mirror_operation_types"

    operation_code = Column(Integer, primary_key=True)
    description = Column(String(255))
    active = Column(String(1))


class StockLevel(MirrorMixin, Base):
    __tablename__ = "mirror_stock_levels"

    company_code = Column(Integer, primary_key=True)
    product_code = Column(Integer, primary_key=True)
    location_code = Column(Integer, primary_key=True)
    control = Column(String(50), primary_key=True, default="")
    quantity = Column(Float)
    reserved = Column(Float)
    active = Column(String(1))


class PriceTable(MirrorMixin, Base):
    __tablename__ = "mirror_price_tables"

    table_number = Column(Integer, primary_key=True)
    table_code = Column(Integer)
    origin_table_code = Column(Integer)
    effective_at = Column(DateTime)
    percentage = Column(Float)
    changed_at = Column(DateTime)


class PriceException(MirrorMixin, Base):
    __tablename__ = "mirror_price_exceptions"

    table_number = Column(Integer, primary_key=True)
    product_code = Column(Integer, primary_key=True)
    location_code = Column(Integer, primary_key=True)
    control = Column(String(50), primary_key=True, default="")
    sale_price = Column(Float)
    kind = Column(String(1))


class Seller(MirrorMixin, Base):
    __tablename__ = "mirror_sellers"

    seller_code = Column(Integer, primary_key=True)
    nickname = Column(String(100))
    active = Column(String(1))
    company_code = Column(Integer)
    partner_code = Column(Integer)
    manager_code = Column(Integer)
    region_code = Column(Integer)
    email = Column(String(255))
    seller_type = Column(String(1))
    max_discount = Column(Float)


class Brand(MirrorMixin, Base):
    __tablename__ = "mirror_brands"

    brand_code = Column(Integer, primary_key=True)
    description = Column(String(255))


class ProductGroup(MirrorMixin, Base):
    __tablename__ = "mirror_product_groups"

    group_code = Column(Integer, primary_key=True)
    description = Column(String(255))


class Neighborhood(MirrorMixin, Base):
    __tablename__ = "mirror_neighborhoods"

    neighborhood_code = Column(Integer, primary_key=True)
    name = Column(String(255))
    region_code = Column(Integer)
    postal_description = Column(String(255))
    changed_at = Column(DateTime)


class City(MirrorMixin, Base):
    __tablename__ = "mirror_cities"

    city_code = Column(Integer, primary_key=True)
    name = Column(String(255))
    state_code = Column(Integer)
    region_code = Column(Integer)
    postal_description = Column(String(255))


class Company(MirrorMixin, Base):
    __tablename__ = "mirror_companies"

    company_code = Column(Integer, primary_key=True)
    trade_name = Column(String(255))
    legal_name = Column(String(255))


class Region(MirrorMixin, Base):
    __tablename__ = "mirror_regions"

    region_code = Column(Integer, primary_key=True)
    name = Column(String(255))
    active = Column(String(1))
    price_table_code = Column(Integer)
    seller_code = Column(Integer)
    parent_region_code = Column(Integer)


class State(MirrorMixin, Base):
    __tablename__ = "mirror_states"

    state_code = Column(Integer, primary_key=True)
    abbreviation = Column(String(2))
    name = Column(String(100))
