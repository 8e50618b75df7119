"""
Connection Database Models

Platform connections and the shared declarative base.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PlatformConnection(Base):
    """
    A brand's connection to an external commerce or ads platform.

    Holds the credential used by sync jobs and the aggregate sync status shown
    on dashboards.
    """

    __tablename__ = "platform_connections"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    brand_id = Column(Text, nullable=False, index=True)
    platform_type = Column(String(50), nullable=False, index=True)  # shopify, meta
    shop = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default="active", index=True)  # active, inactive, revoked
    sync_status = Column(String(20), nullable=False, default="not_started")  # not_started, in_progress, completed, failed
    metadata_ = Column("metadata", JSONB, nullable=False, default=dict)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<PlatformConnection {self.platform_type}:{self.shop} ({self.status})>"
