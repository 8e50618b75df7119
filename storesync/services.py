"""Wiring of the runtime services shared by the worker, the API and the CLI."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from storesync.backfill import BackfillService, GapDetector
from storesync.config import Settings, get_settings
from storesync.connections import Connection, PostgresConnectionRepository
from storesync.jobs.queue import PostgresJobQueue
from storesync.jobs.types import JobType
from storesync.jobs.worker import JobHandler
from storesync.ledger import PostgresEtlJobLedger
from storesync.shopify import RecentOrdersClient, ShopifyBulkClient
from storesync.storage import PostgresFactStore
from storesync.sync import InventoryReconciler, PlatformClients, ShopifySyncOrchestrator


@dataclass
class Services:
    settings: Settings
    http_client: httpx.AsyncClient
    queue: PostgresJobQueue
    ledger: PostgresEtlJobLedger
    connections: PostgresConnectionRepository
    fact_store: PostgresFactStore
    orchestrator: ShopifySyncOrchestrator
    detector: GapDetector
    backfill: BackfillService

    def handlers(self) -> dict[str, JobHandler]:
        orchestrator = self.orchestrator
        return {
            JobType.RECENT_SYNC.value: orchestrator.handle_recent_sync,
            JobType.BULK_ORDERS.value: orchestrator.handle_bulk_export,
            JobType.BULK_CUSTOMERS.value: orchestrator.handle_bulk_export,
            JobType.BULK_PRODUCTS.value: orchestrator.handle_bulk_export,
            JobType.POLL_BULK.value: orchestrator.handle_poll_bulk,
            JobType.REFRESH_RANGE.value: orchestrator.handle_refresh_range,
            JobType.BACKFILL_SCAN.value: self.backfill.handle_backfill_scan,
        }

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_services(settings: Settings | None = None, *, http_client: httpx.AsyncClient | None = None) -> Services:
    settings = settings or get_settings()
    http_client = http_client or httpx.AsyncClient(timeout=settings.shopify_http_timeout_seconds)

    queue = PostgresJobQueue()
    ledger = PostgresEtlJobLedger()
    connections = PostgresConnectionRepository()
    fact_store = PostgresFactStore()

    def bulk_client(connection: Connection) -> ShopifyBulkClient:
        return ShopifyBulkClient(connection, fact_store, http_client=http_client, settings=settings)

    def recent_client(connection: Connection) -> RecentOrdersClient:
        return RecentOrdersClient(connection, fact_store, http_client=http_client, settings=settings)

    orchestrator = ShopifySyncOrchestrator(
        queue=queue,
        ledger=ledger,
        connections=connections,
        clients=PlatformClients(bulk=bulk_client, recent=recent_client),
        inventory=InventoryReconciler(http_client, settings),
        settings=settings,
    )
    detector = GapDetector(fact_store, connections, settings=settings)
    backfill = BackfillService(
        queue=queue,
        detector=detector,
        connections=connections,
        settings=settings,
    )
    return Services(
        settings=settings,
        http_client=http_client,
        queue=queue,
        ledger=ledger,
        connections=connections,
        fact_store=fact_store,
        orchestrator=orchestrator,
        detector=detector,
        backfill=backfill,
    )
