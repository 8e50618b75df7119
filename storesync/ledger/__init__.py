"""ETL job ledger: persisted record of each unit of sync work."""

from storesync.ledger.models import EtlJob, EtlJobStatus, Milestone, SyncStatus
from storesync.ledger.repository import EtlJobLedger, PostgresEtlJobLedger
from storesync.ledger.status import compute_sync_status

__all__ = [
    "EtlJob",
    "EtlJobLedger",
    "EtlJobStatus",
    "Milestone",
    "PostgresEtlJobLedger",
    "SyncStatus",
    "compute_sync_status",
]
