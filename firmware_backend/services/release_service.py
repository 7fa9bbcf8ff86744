# FILE: firmware_backend/services/release_service.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.core.errors import ValidationError
from firmware_backend.models.project import Project
from firmware_backend.models.release import Release
from firmware_backend.schemas.projects import VariantInfo, VersionInfo
from firmware_backend.services.db_utils import insert_ignore
from firmware_backend.services.version_service import parse_semver

logger = logging.getLogger("firmware-backend.releases")

FIRMWARE_SUFFIX = "-fw"


# ---------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------

def project_slug_from_repository(repository_slug: str) -> str:
    # "acme/widget-fw" -> "widget-fw"
    return repository_slug.rstrip("/").split("/")[-1]


def display_name_for(repository_slug: str, release_name: Optional[str] = None) -> str:
    if release_name and release_name.strip():
        return release_name.strip()
    name = project_slug_from_repository(repository_slug)
    if name.lower().endswith(FIRMWARE_SUFFIX):
        name = name[: -len(FIRMWARE_SUFFIX)]
    return name.upper()


async def get_project_by_slug(db: AsyncSession, slug: str) -> Optional[Project]:
    return (
        await db.execute(select(Project).where(Project.slug == slug))
    ).scalar_one_or_none()


async def get_project_by_repository(db: AsyncSession, repository_slug: str) -> Optional[Project]:
    return (
        await db.execute(select(Project).where(Project.repository_slug == repository_slug))
    ).scalar_one_or_none()


async def list_projects(db: AsyncSession) -> List[Project]:
    return list((await db.execute(select(Project).order_by(Project.name))).scalars().all())


async def upsert_project(db: AsyncSession, repository_slug: str, name: str) -> Project:
    """Create the project for a repository, or refresh its display name."""
    existing = await get_project_by_repository(db, repository_slug)
    if existing:
        existing.name = name
        existing.updated_at = datetime.utcnow()
        await db.commit()
        return existing

    project = Project(
        slug=project_slug_from_repository(repository_slug),
        repository_slug=repository_slug,
        name=name,
    )
    db.add(project)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent webhook for the same repository won the insert
        await db.rollback()
        existing = await get_project_by_repository(db, repository_slug)
        if not existing:
            raise
        existing.name = name
        existing.updated_at = datetime.utcnow()
        await db.commit()
        return existing

    logger.info(f"Created project {project.slug} for {repository_slug}")
    return project


# ---------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------

async def insert_release(db: AsyncSession, project_id: int, variant: str, version: str) -> None:
    """Record a (project, variant, version); a duplicate tuple is ignored."""
    semver = parse_semver(version)
    if semver is None:
        raise ValidationError(f"Invalid semver: {version}")

    await insert_ignore(db, Release, {
        "project_id": project_id,
        "variant": variant,
        "version": version,
        "major": semver.major,
        "minor": semver.minor,
        "patch": semver.patch,
    })
    await db.commit()


def _latest_first(stmt):
    return stmt.order_by(Release.major.desc(), Release.minor.desc(), Release.patch.desc())


async def get_latest_release(db: AsyncSession, project_id: int, variant: str) -> Optional[Release]:
    return (
        await db.execute(
            _latest_first(
                select(Release).where(Release.project_id == project_id, Release.variant == variant)
            ).limit(1)
        )
    ).scalar_one_or_none()


async def get_variants_with_latest(db: AsyncSession, project_id: int) -> List[VariantInfo]:
    counts = (
        await db.execute(
            select(Release.variant, func.count(Release.id))
            .where(Release.project_id == project_id)
            .group_by(Release.variant)
            .order_by(Release.variant)
        )
    ).all()

    items: List[VariantInfo] = []
    for variant, count in counts:
        latest = await get_latest_release(db, project_id, variant)
        items.append(VariantInfo(variant=variant, latest_version=latest.version, release_count=int(count)))
    return items


async def get_versions(db: AsyncSession, project_id: int, variant: str) -> List[VersionInfo]:
    rows = (
        await db.execute(
            _latest_first(
                select(Release).where(Release.project_id == project_id, Release.variant == variant)
            )
        )
    ).scalars().all()
    return [VersionInfo(version=r.version, created_at=r.created_at.isoformat()) for r in rows]
