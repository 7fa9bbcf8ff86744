# =========================================================
# FILE: firmware_backend/api/projects.py
# =========================================================

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.api.deps import get_store, get_public_base_url
from firmware_backend.core.database import get_db
from firmware_backend.core.errors import NotFoundError, ValidationError
from firmware_backend.models.project import Project
from firmware_backend.schemas.projects import ProjectItem, ProjectDetailResponse, VersionListResponse
from firmware_backend.services import release_service
from firmware_backend.services.manifest_service import rewrite_manifest_urls
from firmware_backend.services.storage_service import (
    LocalBlobStore,
    get_firmware,
    get_manifest,
    public_firmware_url,
)
from firmware_backend.services.version_service import is_safe_identifier, is_safe_version

router = APIRouter(tags=["projects"])
logger = logging.getLogger("firmware-backend.projects")


def _require_identifier(label: str, value: str, max_len: int = 64) -> None:
    if not is_safe_identifier(value, max_len=max_len):
        raise ValidationError(f"Invalid {label}")


async def _load_project(db: AsyncSession, slug: str) -> Project:
    _require_identifier("project", slug, max_len=100)
    project = await release_service.get_project_by_slug(db, slug)
    if not project:
        raise NotFoundError(f"Project {slug} not found")
    return project


@router.get("/projects", response_model=List[ProjectItem])
async def list_projects(db: AsyncSession = Depends(get_db)):
    return [ProjectItem.model_validate(p) for p in await release_service.list_projects(db)]


@router.get("/projects/{slug}", response_model=ProjectDetailResponse)
async def project_detail(slug: str, db: AsyncSession = Depends(get_db)):
    project = await _load_project(db, slug)
    return ProjectDetailResponse(
        slug=project.slug,
        repository_slug=project.repository_slug,
        name=project.name,
        variants=await release_service.get_variants_with_latest(db, project.id),
    )


@router.get("/projects/{slug}/{variant}/versions", response_model=VersionListResponse)
async def project_variant_versions(slug: str, variant: str, db: AsyncSession = Depends(get_db)):
    project = await _load_project(db, slug)
    _require_identifier("variant", variant)
    versions = await release_service.get_versions(db, project.id, variant)
    if not versions:
        raise NotFoundError(f"Variant {variant} not found for {slug}")
    return VersionListResponse(project=project.slug, variant=variant, versions=versions)


@router.get("/projects/{slug}/{variant}")
async def project_variant_manifest(
    slug: str,
    variant: str,
    db: AsyncSession = Depends(get_db),
    store: LocalBlobStore = Depends(get_store),
    base_url: str = Depends(get_public_base_url),
) -> Dict[str, Any]:
    """Latest manifest for a variant, part paths rewritten to absolute download URLs."""
    project = await _load_project(db, slug)
    _require_identifier("variant", variant)

    latest = await release_service.get_latest_release(db, project.id, variant)
    if not latest:
        raise NotFoundError(f"Variant {variant} not found for {slug}")

    manifest = await get_manifest(store, project.slug, variant, latest.version)
    if manifest is None:
        raise NotFoundError(f"Manifest not found for {slug}/{variant}@{latest.version}")

    return rewrite_manifest_urls(
        manifest, public_firmware_url(project.slug, variant, latest.version, base_url=base_url)
    )


@router.get("/firmware/{project}/{variant}/{version}/{filename}")
async def download_firmware(
    project: str,
    variant: str,
    version: str,
    filename: str,
    store: LocalBlobStore = Depends(get_store),
):
    """Serve a stored artifact. Versioned keys never change, so responses are immutable."""
    _require_identifier("project", project, max_len=100)
    _require_identifier("variant", variant)
    if not is_safe_version(version):
        raise ValidationError("Invalid version")
    _require_identifier("filename", filename, max_len=128)

    obj = await get_firmware(store, project, variant, version, filename)
    if obj is None:
        raise NotFoundError("Firmware not found")

    return Response(
        content=obj.data,
        media_type=obj.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "public, max-age=31536000, immutable",
        },
    )
