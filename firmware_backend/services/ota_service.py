# FILE: firmware_backend/services/ota_service.py
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.core.config import PUBLIC_BASE_URL
from firmware_backend.core.errors import NotFoundError, ValidationError
from firmware_backend.schemas.manifest import Manifest
from firmware_backend.schemas.ota import FirmwareUpdateResponse
from firmware_backend.services import release_service
from firmware_backend.services.manifest_service import select_app_part, is_absolute_url
from firmware_backend.services.storage_service import LocalBlobStore, StorageError, get_manifest, public_firmware_url
from firmware_backend.services.version_service import Semver, compare_semver, is_safe_identifier, parse_semver

logger = logging.getLogger("firmware-backend.ota")

DEFAULT_VARIANT = "default"

# Devices that never recorded a real version report the factory placeholder;
# they are always told they are up to date.
FACTORY_PLACEHOLDER_VERSION = "0.0.1"


async def resolve_update(
    db: AsyncSession,
    store: LocalBlobStore,
    project_slug: str,
    current_version: str,
    variant: Optional[str] = None,
    base_url: str = PUBLIC_BASE_URL,
) -> FirmwareUpdateResponse:
    variant = variant or DEFAULT_VARIANT
    if not is_safe_identifier(project_slug, max_len=100):
        raise ValidationError("Invalid x-firmware-project header")
    if not is_safe_identifier(variant):
        raise ValidationError("Invalid x-firmware-variant header")

    project = await release_service.get_project_by_slug(db, project_slug)
    if project is None:
        raise NotFoundError(f"Project {project_slug} not found")

    if current_version.strip() == FACTORY_PLACEHOLDER_VERSION:
        return FirmwareUpdateResponse.up_to_date()

    current = parse_semver(current_version)
    if current is None:
        raise ValidationError(f"Invalid x-firmware-version header: {current_version}")

    latest = await release_service.get_latest_release(db, project.id, variant)
    if latest is None:
        raise NotFoundError(f"No releases for {project_slug}/{variant}")

    if compare_semver(current, Semver(latest.major, latest.minor, latest.patch)) >= 0:
        return FirmwareUpdateResponse.up_to_date()

    try:
        raw = await get_manifest(store, project.slug, variant, latest.version)
    except StorageError as e:
        logger.error(str(e))
        return FirmwareUpdateResponse.failed(
            f"Stored manifest is invalid for {project.slug}/{variant}@{latest.version}"
        )
    if raw is None:
        return FirmwareUpdateResponse.failed(
            f"Manifest not found for {project.slug}/{variant}@{latest.version}"
        )
    try:
        manifest = Manifest.model_validate(raw)
    except PydanticValidationError:
        return FirmwareUpdateResponse.failed(
            f"Stored manifest is invalid for {project.slug}/{variant}@{latest.version}"
        )

    part = select_app_part(manifest, project.slug, variant)
    if part is None:
        return FirmwareUpdateResponse.failed(
            f"No application binary found in manifest for {project.slug}/{variant}@{latest.version}"
        )

    if is_absolute_url(part.path):
        ota_url = part.path
    else:
        ota_url = public_firmware_url(project.slug, variant, latest.version, part.path, base_url=base_url)
    logger.info(f"{project.slug}/{variant}: {current} -> {latest.version}")
    return FirmwareUpdateResponse.available(ota_url)
