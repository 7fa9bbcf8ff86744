# FILE: firmware_backend/api/coredump.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.api.deps import get_store, get_public_base_url
from firmware_backend.core.database import get_db
from firmware_backend.core.errors import NotFoundError, ValidationError
from firmware_backend.schemas.coredump import CoredumpRequest, CoredumpResponse
from firmware_backend.services import release_service
from firmware_backend.services.coredump_service import parse_coredump
from firmware_backend.services.storage_service import (
    LocalBlobStore,
    build_firmware_key,
    public_firmware_url,
)
from firmware_backend.services.version_service import is_safe_identifier, is_safe_version

logger = logging.getLogger("firmware-backend.coredump")

router = APIRouter(tags=["coredump"])


@router.post("/coredump", response_model=CoredumpResponse, response_model_exclude_none=True)
async def analyze_coredump(
    req: CoredumpRequest,
    db: AsyncSession = Depends(get_db),
    store: LocalBlobStore = Depends(get_store),
    base_url: str = Depends(get_public_base_url),
):
    """Decode an ESP-IDF core dump. Addresses are raw; symbolize them with the .elf locally."""
    for label, value in (("project", req.project), ("variant", req.variant)):
        if not is_safe_identifier(value, max_len=100):
            raise ValidationError(f"Invalid {label}")
    if not is_safe_version(req.version):
        raise ValidationError("Invalid version")

    project = await release_service.get_project_by_slug(db, req.project)
    if project is None:
        raise NotFoundError(f"Project {req.project} not found")

    result = parse_coredump(req.coredump)
    if not result.success:
        logger.warning(f"Coredump from {req.project}/{req.variant}@{req.version} not decoded: {result.error}")
        return result

    elf_name = f"{req.variant}.elf"
    if await store.exists(build_firmware_key(project.slug, req.variant, req.version, elf_name)):
        result.elf_download_url = public_firmware_url(
            project.slug, req.variant, req.version, elf_name, base_url=base_url
        )
    return result
