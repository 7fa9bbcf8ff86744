# firmware_backend/models/release.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, DateTime, UniqueConstraint, Index

from firmware_backend.core.database import Base


class Release(Base):
    """One (project, variant, version) whose artifacts are fully stored."""
    __tablename__ = "releases"
    __table_args__ = (
        UniqueConstraint("project_id", "variant", "version", name="uq_releases_project_variant_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"))
    variant: Mapped[str] = mapped_column(String(100))

    # raw version for display, components for ordering
    version: Mapped[str] = mapped_column(String(64))
    major: Mapped[int] = mapped_column(Integer)
    minor: Mapped[int] = mapped_column(Integer)
    patch: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# latest-version lookup per (project, variant)
Index(
    "idx_releases_latest",
    Release.project_id,
    Release.variant,
    Release.major.desc(),
    Release.minor.desc(),
    Release.patch.desc(),
)
