"""Initial schema: job queue, ETL ledger, connections and Shopify fact tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "background_job",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),  # queued, running, succeeded, failed, cancelled
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resource_key", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column("max_concurrency", sa.Integer, nullable=True),
        sa.Column("lease_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("idempotency_key", sa.Text, nullable=True),
        sa.Column("payload", sa.JSON, nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("background_job_status_run_idx", "background_job", ["status", "run_at"])
    op.create_index("background_job_brand_idx", "background_job", ["brand_id"])
    op.create_index("background_job_type_status_idx", "background_job", ["job_type", "status"])
    op.create_index("background_job_resource_idx", "background_job", ["resource_key"])
    op.create_index("background_job_lease_idx", "background_job", ["lease_until"])
    # Uniqueness for idempotency keys (Postgres allows multiple NULLs).
    op.create_unique_constraint(
        "background_job_brand_idempotency_uq",
        "background_job",
        ["brand_id", "idempotency_key"],
    )

    op.create_table(
        "platform_connections",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("platform_type", sa.String(50), nullable=False),
        sa.Column("shop", sa.Text, nullable=True),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="not_started"),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("platform_connections_brand_idx", "platform_connections", ["brand_id"])
    op.create_index("platform_connections_platform_idx", "platform_connections", ["platform_type"])
    op.create_index("platform_connections_status_idx", "platform_connections", ["status"])

    op.create_table(
        "etl_job",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=True),
        sa.Column("entity", sa.String(20), nullable=False),
        sa.Column("job_type", sa.String(30), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("external_bulk_handle", sa.Text, nullable=True),
        sa.Column("rows_written", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_rows", sa.Integer, nullable=True),
        sa.Column("progress_pct", sa.Float, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("etl_job_brand_idx", "etl_job", ["brand_id", "id"])
    op.create_index("etl_job_open_idx", "etl_job", ["connection_id", "entity", "job_type", "status"])

    op.create_table(
        "shopify_orders",
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("order_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=True),
        sa.Column("order_number", sa.Text, nullable=True),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("currency", sa.Text, nullable=True),
        sa.Column("total_price", sa.Float, nullable=False, server_default="0"),
        sa.Column("subtotal_price", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_tax", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_discounts", sa.Float, nullable=False, server_default="0"),
        sa.Column("financial_status", sa.Text, nullable=True),
        sa.Column("fulfillment_status", sa.Text, nullable=True),
        sa.Column("customer_id", sa.Text, nullable=True),
        sa.Column("customer_email", sa.Text, nullable=True),
        sa.Column("customer_first_name", sa.Text, nullable=True),
        sa.Column("customer_last_name", sa.Text, nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("shipping_city", sa.Text, nullable=True),
        sa.Column("shipping_province", sa.Text, nullable=True),
        sa.Column("shipping_country", sa.Text, nullable=True),
        sa.Column("shipping_country_code", sa.Text, nullable=True),
        sa.Column("line_items_count", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("brand_id", "order_id", name="shopify_orders_pk"),
    )
    op.create_index("shopify_orders_brand_created_idx", "shopify_orders", ["brand_id", "created_at"])
    op.create_index("shopify_orders_connection_idx", "shopify_orders", ["connection_id"])

    op.create_table(
        "shopify_line_items",
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("order_id", sa.Text, nullable=False),
        sa.Column("line_item_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=True),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("price", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_discount", sa.Float, nullable=False, server_default="0"),
        sa.Column("sku", sa.Text, nullable=True),
        sa.Column("product_id", sa.Text, nullable=True),
        sa.Column("variant_id", sa.Text, nullable=True),
        sa.Column("variant_title", sa.Text, nullable=True),
        sa.Column("vendor", sa.Text, nullable=True),
        sa.Column("requires_shipping", sa.Boolean, nullable=True),
        sa.Column("taxable", sa.Boolean, nullable=True),
        sa.Column("fulfillment_status", sa.Text, nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("brand_id", "order_id", "line_item_id", name="shopify_line_items_pk"),
    )

    op.create_table(
        "shopify_customers",
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("customer_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=False),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("first_name", sa.Text, nullable=True),
        sa.Column("last_name", sa.Text, nullable=True),
        sa.Column("phone", sa.Text, nullable=True),
        sa.Column("orders_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Float, nullable=False, server_default="0"),
        sa.Column("currency", sa.Text, nullable=True),
        sa.Column("last_order_id", sa.Text, nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("email_marketing_consent", sa.Text, nullable=True),
        sa.Column("sms_marketing_consent", sa.Text, nullable=True),
        sa.Column("addresses", postgresql.JSONB, nullable=True),
        sa.Column("default_address", postgresql.JSONB, nullable=True),
        *_timestamps(),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("brand_id", "customer_id", name="shopify_customers_pk"),
    )

    op.create_table(
        "shopify_products",
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("product_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("handle", sa.Text, nullable=True),
        sa.Column("vendor", sa.Text, nullable=True),
        sa.Column("product_type", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=True),
        sa.Column("tags", sa.Text, nullable=True),
        sa.Column("total_inventory", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("brand_id", "product_id", name="shopify_products_pk"),
    )

    op.create_table(
        "shopify_product_variants",
        sa.Column("brand_id", sa.Text, nullable=False),
        sa.Column("product_id", sa.Text, nullable=False),
        sa.Column("variant_id", sa.Text, nullable=False),
        sa.Column("connection_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("sku", sa.Text, nullable=True),
        sa.Column("price", sa.Float, nullable=False, server_default="0"),
        sa.Column("compare_at_price", sa.Float, nullable=True),
        sa.Column("inventory_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("brand_id", "product_id", "variant_id", name="shopify_product_variants_pk"),
    )


def downgrade() -> None:
    op.drop_table("shopify_product_variants")
    op.drop_table("shopify_products")
    op.drop_table("shopify_customers")
    op.drop_table("shopify_line_items")
    op.drop_index("shopify_orders_connection_idx", table_name="shopify_orders")
    op.drop_index("shopify_orders_brand_created_idx", table_name="shopify_orders")
    op.drop_table("shopify_orders")
    op.drop_index("etl_job_open_idx", table_name="etl_job")
    op.drop_index("etl_job_brand_idx", table_name="etl_job")
    op.drop_table("etl_job")
    op.drop_index("platform_connections_status_idx", table_name="platform_connections")
    op.drop_index("platform_connections_platform_idx", table_name="platform_connections")
    op.drop_index("platform_connections_brand_idx", table_name="platform_connections")
    op.drop_table("platform_connections")
    op.drop_constraint("background_job_brand_idempotency_uq", "background_job", type_="unique")
    op.drop_index("background_job_lease_idx", table_name="background_job")
    op.drop_index("background_job_resource_idx", table_name="background_job")
    op.drop_index("background_job_type_status_idx", table_name="background_job")
    op.drop_index("background_job_brand_idx", table_name="background_job")
    op.drop_index("background_job_status_run_idx", table_name="background_job")
    op.drop_table("background_job")
