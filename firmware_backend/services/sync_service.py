# FILE: firmware_backend/services/sync_service.py
"""
Release ingestion.

Webhook stage: upsert the project and fan out one IngestionTask per
"<variant>_manifest.json" asset onto the work queue.

Consumer stage: one task = one manifest. Every step is either gated by the
ledger or overwrite-idempotent, so a redelivered task can start from scratch.
Errors propagate so the queue retries; only mark_processed is final.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from firmware_backend.core import config
from firmware_backend.core.errors import UpstreamError, ValidationError
from firmware_backend.schemas.github import GitHubReleaseEvent, IngestionTask, TaskAsset, WebhookResponse
from firmware_backend.services import github_app_service, github_service, ledger_service, release_service
from firmware_backend.services.manifest_service import (
    CANONICAL_MANIFEST_NAME,
    canonicalize_manifest,
    collect_part_paths,
    dump_manifest,
    parse_manifest,
    variant_from_manifest_name,
)
from firmware_backend.services.queue_service import WorkQueue
from firmware_backend.services.storage_service import LocalBlobStore, store_firmware
from firmware_backend.services.version_service import (
    is_safe_identifier,
    is_safe_version,
    normalize_version,
    parse_semver,
)

logger = logging.getLogger("firmware-backend.sync")

ACCEPTED_ACTIONS = {"published", "edited"}


# ---------------------------------------------------------------------
# Webhook stage
# ---------------------------------------------------------------------

async def handle_release_event(db: AsyncSession, event: GitHubReleaseEvent, queue: WorkQueue) -> WebhookResponse:
    if event.action not in ACCEPTED_ACTIONS or event.release is None:
        return WebhookResponse(message=f"Ignored action: {event.action}")
    if event.repository is None:
        raise ValidationError("Release event without repository")

    release = event.release
    repository_slug = event.repository.full_name
    version = normalize_version(release.tag_name)
    if parse_semver(version) is None:
        raise ValidationError(f"Release tag is not a semantic version: {release.tag_name}")

    slug = release_service.project_slug_from_repository(repository_slug)
    if not is_safe_identifier(slug, max_len=100) or not is_safe_version(version):
        raise ValidationError(f"Unsafe project or version identifier: {slug}@{version}")

    project = await release_service.upsert_project(
        db, repository_slug, release_service.display_name_for(repository_slug, release.name)
    )

    manifest_assets = [a for a in release.assets if variant_from_manifest_name(a.name)]
    done = await ledger_service.processed_ids(db, [a.id for a in manifest_assets])

    all_assets = [
        TaskAsset(name=a.name, url=a.browser_download_url, api_url=a.url, content_type=a.content_type)
        for a in release.assets
    ]
    installation_id = event.installation.id if event.installation else None

    response = WebhookResponse(message="Release queued", project=project.slug, version=version)
    for asset in manifest_assets:
        variant = variant_from_manifest_name(asset.name)
        if asset.id in done:
            response.skipped += 1
            continue
        if not is_safe_identifier(variant):
            response.errors.append(f"Invalid variant name in {asset.name}")
            continue

        await queue.enqueue(IngestionTask(
            project_id=project.id,
            project_slug=project.slug,
            version=version,
            manifest_asset_id=asset.id,
            manifest_url=asset.browser_download_url,
            manifest_api_url=asset.url,
            manifest_filename=asset.name,
            assets=all_assets,
            installation_id=installation_id,
        ))
        response.queued.append(variant)

    logger.info(
        f"Release {repository_slug}@{version}: queued={response.queued} "
        f"skipped={response.skipped} errors={len(response.errors)}"
    )
    return response


# ---------------------------------------------------------------------
# Consumer stage
# ---------------------------------------------------------------------

@dataclass
class IngestionResult:
    variant: str
    version: str
    stored: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    already_processed: bool = False


async def _resolve_token(task: IngestionTask, client: httpx.AsyncClient) -> Optional[str]:
    if task.installation_id is None or not config.github_app_configured():
        return None
    return await github_app_service.get_installation_token(
        config.GITHUB_APP_ID, config.GITHUB_APP_PRIVATE_KEY, task.installation_id, client=client
    )


async def process_ingestion_task(
    task: IngestionTask,
    session_factory: async_sessionmaker,
    store: LocalBlobStore,
    client: Optional[httpx.AsyncClient] = None,
) -> IngestionResult:
    variant = variant_from_manifest_name(task.manifest_filename)
    if variant is None:
        raise ValidationError(f"Not a manifest asset: {task.manifest_filename}")
    result = IngestionResult(variant=variant, version=task.version)

    async with session_factory() as db:
        if await ledger_service.is_processed(db, task.manifest_asset_id):
            logger.info(f"Manifest asset {task.manifest_asset_id} already processed, skipping")
            result.already_processed = True
            return result

    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as own_client:
            await _ingest(task, variant, session_factory, store, own_client, result)
    else:
        await _ingest(task, variant, session_factory, store, client, result)
    return result


async def _ingest(
    task: IngestionTask,
    variant: str,
    session_factory: async_sessionmaker,
    store: LocalBlobStore,
    client: httpx.AsyncClient,
    result: IngestionResult,
) -> None:
    token = await _resolve_token(task, client)
    assets: Dict[str, TaskAsset] = {a.name: a for a in task.assets}

    async def fetch(url: str, api_url: str) -> bytes:
        return await github_service.fetch_release_asset(url, api_url=api_url, token=token, client=client)

    # manifest, canonicalized and stored under its canonical name
    manifest = canonicalize_manifest(parse_manifest(await fetch(task.manifest_url, task.manifest_api_url)))
    await store_firmware(
        store, task.project_slug, variant, task.version,
        CANONICAL_MANIFEST_NAME, dump_manifest(manifest), "application/json",
    )
    result.stored.append(CANONICAL_MANIFEST_NAME)

    # referenced parts, one at a time to bound memory
    for filename in collect_part_paths(manifest):
        asset = assets.get(filename)
        if asset is None or not is_safe_identifier(filename, max_len=128):
            result.errors.append(f"Referenced file not found in release: {filename}")
            continue
        data = await fetch(asset.url, asset.api_url)
        await store_firmware(store, task.project_slug, variant, task.version, filename, data, asset.content_type)
        result.stored.append(filename)

    # debug symbols for coredump analysis, best-effort
    elf_name = f"{variant}.elf"
    elf_asset = assets.get(elf_name)
    if elf_asset is not None:
        try:
            data = await fetch(elf_asset.url, elf_asset.api_url)
            await store_firmware(store, task.project_slug, variant, task.version, elf_name, data, elf_asset.content_type)
            result.stored.append(elf_name)
        except UpstreamError as e:
            logger.warning(f"Skipping {elf_name}: {e}")

    async with session_factory() as db:
        await release_service.insert_release(db, task.project_id, variant, task.version)
        await ledger_service.mark_processed(db, task.manifest_asset_id, task.project_id)

    for error in result.errors:
        logger.warning(f"{task.project_slug}/{variant}@{task.version}: {error}")
    logger.info(f"Ingested {task.project_slug}/{variant}@{task.version}: {len(result.stored)} file(s)")


def make_ingestion_handler(session_factory: async_sessionmaker, store: LocalBlobStore):
    """Queue handler; exceptions are left to the queue for redelivery."""

    async def handle(task: IngestionTask) -> IngestionResult:
        return await process_ingestion_task(task, session_factory, store)

    return handle
