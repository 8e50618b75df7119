"""Sync orchestration: job handlers, triggers and dependent post-processing."""

from storesync.sync.inventory import InventoryReconciler
from storesync.sync.orchestrator import PlatformClients, ShopifySyncOrchestrator
from storesync.sync.triggers import on_connection_created, trigger_sync

__all__ = [
    "InventoryReconciler",
    "PlatformClients",
    "ShopifySyncOrchestrator",
    "on_connection_created",
    "trigger_sync",
]
