# firmware_backend/models/processed_asset.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import BigInteger, Integer, ForeignKey, DateTime

from firmware_backend.core.database import Base


class ProcessedAsset(Base):
    """Ingestion ledger - a row means every side effect of the asset is done."""
    __tablename__ = "processed_assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # GitHub release asset id
    asset_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
