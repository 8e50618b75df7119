"""Platform connection registry."""

from storesync.connections.repository import (
    Connection,
    ConnectionRepository,
    PostgresConnectionRepository,
    require_syncable,
)

__all__ = [
    "Connection",
    "ConnectionRepository",
    "PostgresConnectionRepository",
    "require_syncable",
]
