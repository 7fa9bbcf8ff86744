# FILE: firmware_backend/services/storage_service.py
import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from firmware_backend.core.config import PUBLIC_BASE_URL
from firmware_backend.services.manifest_service import CANONICAL_MANIFEST_NAME

logger = logging.getLogger("firmware-backend.storage")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_META_SUFFIX = ".meta.json"


class StorageError(Exception):
    pass


@dataclass
class StoredObject:
    key: str
    data: bytes
    content_type: str


def build_firmware_key(project: str, variant: str, version: str, filename: str) -> str:
    """firmware/{project}/{variant}/{version}/{filename}"""
    return f"firmware/{project}/{variant}/{version}/{filename}"


def public_firmware_url(project: str, variant: str, version: str, filename: str = "", base_url: str = PUBLIC_BASE_URL) -> str:
    """Absolute URL of a stored artifact; filename="" gives the directory prefix."""
    return f"{base_url.rstrip('/')}/{build_firmware_key(project, variant, version, filename)}"


class LocalBlobStore:
    """
    Filesystem object store. Writes go through a temp file and os.replace,
    so storing the same key twice simply overwrites it.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        # Prevent path traversal: resolve must stay within root
        root = self.root.resolve()
        p = (root / key).resolve()
        if root in p.parents:
            return p
        raise StorageError(f"Unsafe storage key: {key}")

    def _put_sync(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        for target, payload in (
            (path, data),
            (path.with_name(path.name + _META_SUFFIX), json.dumps({"content_type": content_type}).encode()),
        ):
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp, target)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise

    def _get_sync(self, key: str) -> Optional[StoredObject]:
        path = self._path(key)
        if not path.is_file():
            return None
        content_type = DEFAULT_CONTENT_TYPE
        meta = path.with_name(path.name + _META_SUFFIX)
        if meta.is_file():
            content_type = json.loads(meta.read_text()).get("content_type") or DEFAULT_CONTENT_TYPE
        return StoredObject(key=key, data=path.read_bytes(), content_type=content_type)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        await asyncio.to_thread(self._put_sync, key, data, content_type or DEFAULT_CONTENT_TYPE)
        logger.debug(f"Stored {key} ({len(data)} bytes)")

    async def get(self, key: str) -> Optional[StoredObject]:
        return await asyncio.to_thread(self._get_sync, key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(lambda: self._path(key).is_file())


async def store_firmware(
    store: LocalBlobStore,
    project: str,
    variant: str,
    version: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
) -> str:
    key = build_firmware_key(project, variant, version, filename)
    await store.put(key, data, content_type)
    return key


async def get_firmware(store: LocalBlobStore, project: str, variant: str, version: str, filename: str) -> Optional[StoredObject]:
    return await store.get(build_firmware_key(project, variant, version, filename))


async def get_manifest(store: LocalBlobStore, project: str, variant: str, version: str) -> Optional[Dict[str, Any]]:
    """Canonical (unrewritten) manifest document, or None."""
    obj = await get_firmware(store, project, variant, version, CANONICAL_MANIFEST_NAME)
    if obj is None:
        return None
    try:
        return json.loads(obj.data.decode("utf-8"))
    except ValueError as e:
        raise StorageError(f"Corrupt manifest at {obj.key}: {e}")
