"""
storesync

Orchestrates historical and ongoing ingestion of commerce platform data:
durable job queue, bulk export client, staged sync worker, and gap/staleness
repair.
"""

__version__ = "0.1.0"
