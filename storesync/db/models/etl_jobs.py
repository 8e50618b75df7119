"""ETL job ledger model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, String, Text

from storesync.db.models.connections import Base


class EtlJobRecord(Base):
    __tablename__ = "etl_job"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    brand_id = Column(Text, nullable=False, index=True)
    connection_id = Column(Text, nullable=True, index=True)
    entity = Column(String(20), nullable=False)  # orders, customers, products, recent
    job_type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, running, completed, failed

    external_bulk_handle = Column(Text, nullable=True)
    rows_written = Column(Integer, nullable=False, default=0)
    total_rows = Column(Integer, nullable=True)
    progress_pct = Column(Float, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
