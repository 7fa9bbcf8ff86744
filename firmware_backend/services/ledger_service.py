# FILE: firmware_backend/services/ledger_service.py
from typing import Iterable, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.models.processed_asset import ProcessedAsset
from firmware_backend.services.db_utils import insert_ignore


async def processed_ids(db: AsyncSession, asset_ids: Iterable[int]) -> Set[int]:
    """Which of these upstream asset ids already completed ingestion."""
    ids = list(set(asset_ids))
    if not ids:
        return set()

    rows = (
        await db.execute(
            select(ProcessedAsset.asset_id).where(ProcessedAsset.asset_id.in_(ids))
        )
    ).scalars().all()
    return set(rows)


async def is_processed(db: AsyncSession, asset_id: int) -> bool:
    return asset_id in await processed_ids(db, [asset_id])


async def mark_processed(db: AsyncSession, asset_id: int, project_id: int) -> None:
    """Record the asset as done. Repeating it is a no-op."""
    await insert_ignore(db, ProcessedAsset, {"asset_id": asset_id, "project_id": project_id})
    await db.commit()
