# firmware_backend/models/project.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime

from firmware_backend.core.database import Base


class Project(Base):
    """Firmware project, upserted from GitHub release webhooks."""
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # URL-safe, derived from the repository name ("acme/widget-fw" -> "widget-fw")
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    repository_slug: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
