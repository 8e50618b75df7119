"""
Shopify fact tables.

Every table is keyed by brand plus the platform-native id (and sub-entity id
for child rows) so repeated imports converge on the same rows.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from storesync.db.models.connections import Base


class ShopifyOrder(Base):
    __tablename__ = "shopify_orders"

    brand_id = Column(Text, nullable=False)
    order_id = Column(Text, nullable=False)
    connection_id = Column(Text, nullable=False, index=True)

    name = Column(Text, nullable=True)
    order_number = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    currency = Column(Text, nullable=True)
    total_price = Column(Float, nullable=False, default=0)
    subtotal_price = Column(Float, nullable=False, default=0)
    total_tax = Column(Float, nullable=False, default=0)
    total_discounts = Column(Float, nullable=False, default=0)
    financial_status = Column(Text, nullable=True)
    fulfillment_status = Column(Text, nullable=True)
    customer_id = Column(Text, nullable=True)
    customer_email = Column(Text, nullable=True)
    customer_first_name = Column(Text, nullable=True)
    customer_last_name = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    shipping_city = Column(Text, nullable=True)
    shipping_province = Column(Text, nullable=True)
    shipping_country = Column(Text, nullable=True)
    shipping_country_code = Column(Text, nullable=True)
    line_items_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("brand_id", "order_id", name="shopify_orders_pk"),)


class ShopifyLineItem(Base):
    __tablename__ = "shopify_line_items"

    brand_id = Column(Text, nullable=False)
    order_id = Column(Text, nullable=False)
    line_item_id = Column(Text, nullable=False)
    connection_id = Column(Text, nullable=False)

    name = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Float, nullable=False, default=0)
    total_discount = Column(Float, nullable=False, default=0)
    sku = Column(Text, nullable=True)
    product_id = Column(Text, nullable=True)
    variant_id = Column(Text, nullable=True)
    variant_title = Column(Text, nullable=True)
    vendor = Column(Text, nullable=True)
    requires_shipping = Column(Boolean, nullable=True)
    taxable = Column(Boolean, nullable=True)
    fulfillment_status = Column(Text, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("brand_id", "order_id", "line_item_id", name="shopify_line_items_pk"),
    )


class ShopifyCustomer(Base):
    __tablename__ = "shopify_customers"

    brand_id = Column(Text, nullable=False)
    customer_id = Column(Text, nullable=False)
    connection_id = Column(Text, nullable=False)

    email = Column(Text, nullable=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    orders_count = Column(Integer, nullable=False, default=0)
    total_spent = Column(Float, nullable=False, default=0)
    currency = Column(Text, nullable=True)
    last_order_id = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    email_marketing_consent = Column(Text, nullable=True)
    sms_marketing_consent = Column(Text, nullable=True)
    addresses = Column(JSONB, nullable=True)
    default_address = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("brand_id", "customer_id", name="shopify_customers_pk"),)


class ShopifyProduct(Base):
    __tablename__ = "shopify_products"

    brand_id = Column(Text, nullable=False)
    product_id = Column(Text, nullable=False)
    connection_id = Column(Text, nullable=False)

    title = Column(Text, nullable=True)
    handle = Column(Text, nullable=True)
    vendor = Column(Text, nullable=True)
    product_type = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    total_inventory = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("brand_id", "product_id", name="shopify_products_pk"),)


class ShopifyProductVariant(Base):
    __tablename__ = "shopify_product_variants"

    brand_id = Column(Text, nullable=False)
    product_id = Column(Text, nullable=False)
    variant_id = Column(Text, nullable=False)
    connection_id = Column(Text, nullable=False)

    title = Column(Text, nullable=True)
    sku = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0)
    compare_at_price = Column(Float, nullable=True)
    inventory_quantity = Column(Integer, nullable=False, default=0)
    synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("brand_id", "product_id", "variant_id", name="shopify_product_variants_pk"),
    )
