"""Dependent inventory reconciliation, triggered after the products stage."""

from __future__ import annotations

import httpx
import structlog

from storesync.config import Settings, get_settings

logger = structlog.get_logger()


class InventoryReconciler:
    """
    Notifies the inventory service that product data is fresh.

    Fire-and-forget: failures are logged and never fail the sync.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings | None = None) -> None:
        self.http = http_client
        self.settings = settings or get_settings()

    async def trigger(self, *, brand_id: str, connection_id: str) -> bool:
        url = self.settings.inventory_sync_url
        if not url:
            logger.debug("Inventory sync not configured", brand_id=brand_id)
            return False

        headers = {}
        if self.settings.internal_api_secret:
            headers["X-Internal-Secret"] = self.settings.internal_api_secret

        try:
            response = await self.http.post(
                url,
                json={"brandId": brand_id, "connectionId": connection_id},
                headers=headers,
                timeout=self.settings.shopify_http_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Inventory sync trigger failed",
                brand_id=brand_id,
                connection_id=connection_id,
                error=str(exc),
            )
            return False

        if response.status_code >= 400:
            logger.warning(
                "Inventory sync trigger rejected",
                brand_id=brand_id,
                connection_id=connection_id,
                status_code=response.status_code,
            )
            return False

        logger.info("Inventory sync triggered", brand_id=brand_id, connection_id=connection_id)
        return True
