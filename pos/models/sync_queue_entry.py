"""Sync queue entry model (local store only)."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from pos.database import Base
import enum


class SyncOperation(enum.Enum):
    """Write kind recorded in the queue."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStatus(enum.Enum):
    """Entry lifecycle: pending -> synced."""
    PENDING = "pending"
    SYNCED = "synced"


class SyncTarget(enum.Enum):
    """Store the entry still has to be applied to."""
    REMOTE = "remote"
    LOCAL = "local"


class SyncQueueEntry(Base):
    """Durable record of a write not yet applied to one of the stores."""

    __tablename__ = 'sync_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(50), nullable=False)
    operation = Column(Enum(SyncOperation, name='sync_operation'), nullable=False)
    target = Column(Enum(SyncTarget, name='sync_target'), nullable=False, default=SyncTarget.REMOTE, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(Enum(SyncStatus, name='sync_status'), nullable=False, default=SyncStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    synced_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<SyncQueueEntry(id={self.id}, {self.operation.value} {self.table_name}, "
            f"target={self.target.value}, status={self.status.value})>"
        )
