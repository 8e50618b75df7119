"""Shopify platform clients: bulk exports and recent REST reads."""

from storesync.shopify.bulk_client import BulkOperationClient, ShopifyBulkClient
from storesync.shopify.models import BulkOperationHandle, BulkOperationStatus, ProcessResult
from storesync.shopify.recent import RecentOrdersClient

__all__ = [
    "BulkOperationClient",
    "BulkOperationHandle",
    "BulkOperationStatus",
    "ProcessResult",
    "RecentOrdersClient",
    "ShopifyBulkClient",
]
