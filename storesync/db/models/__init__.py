"""Database models."""

from storesync.db.models.connections import (
    Base,
    PlatformConnection,
)
from storesync.db.models.background_jobs import (
    BackgroundJob,
)
from storesync.db.models.etl_jobs import (
    EtlJobRecord,
)
from storesync.db.models.shopify import (
    ShopifyCustomer,
    ShopifyLineItem,
    ShopifyOrder,
    ShopifyProduct,
    ShopifyProductVariant,
)

__all__ = [
    "Base",
    "PlatformConnection",
    "BackgroundJob",
    "EtlJobRecord",
    "ShopifyCustomer",
    "ShopifyLineItem",
    "ShopifyOrder",
    "ShopifyProduct",
    "ShopifyProductVariant",
]
