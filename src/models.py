"""Database models for the persistent bucket store."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()


class StorageBucket(Base):
    """One named, serialized bucket of application data."""

    __tablename__ = "storage_buckets"

    name = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
