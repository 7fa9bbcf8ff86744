# FILE: firmware_backend/api/ota.py
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.api.deps import get_store, get_public_base_url
from firmware_backend.core.database import get_db
from firmware_backend.core.errors import ValidationError
from firmware_backend.schemas.ota import FirmwareUpdateResponse
from firmware_backend.services import ota_service
from firmware_backend.services.storage_service import LocalBlobStore

router = APIRouter(tags=["ota"])


@router.get("/", response_model=FirmwareUpdateResponse, response_model_exclude_none=True)
async def check_for_update(
    x_firmware_project: Optional[str] = Header(None),
    x_firmware_version: Optional[str] = Header(None),
    x_firmware_variant: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    store: LocalBlobStore = Depends(get_store),
    base_url: str = Depends(get_public_base_url),
):
    """OTA update check, driven by x-firmware-* headers sent by the device."""
    if not x_firmware_project:
        raise ValidationError("Missing x-firmware-project header")
    if not x_firmware_version:
        raise ValidationError("Missing x-firmware-version header")

    return await ota_service.resolve_update(
        db,
        store,
        x_firmware_project,
        x_firmware_version,
        variant=x_firmware_variant,
        base_url=base_url,
    )
