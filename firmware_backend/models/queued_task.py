# firmware_backend/models/queued_task.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, DateTime, Index

from firmware_backend.core.database import Base

STATUS_PENDING = "pending"
STATUS_DEAD = "dead"


class QueuedTask(Base):
    """Work-queue journal: a delivery stays here until it is acked."""
    __tablename__ = "queued_tasks"
    __table_args__ = (
        Index("idx_queued_tasks_queue_status", "queue_name", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_name: Mapped[str] = mapped_column(String(50))
    payload: Mapped[str] = mapped_column(Text)

    # pending -> deleted on ack, or dead after max deliveries
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
