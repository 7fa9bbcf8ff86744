# FILE: firmware_backend/services/manifest_service.py
import copy
import json
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from firmware_backend.core.errors import UpstreamError
from firmware_backend.schemas.manifest import Manifest, ManifestPart

MANIFEST_SUFFIX = "_manifest.json"
CANONICAL_MANIFEST_NAME = "manifest.json"

_CHIP_FAMILY = re.compile(r"^esp32([a-z][0-9])?$", re.IGNORECASE)
_URL_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def variant_from_manifest_name(filename: str) -> Optional[str]:
    """"WIDGET_manifest.json" -> "WIDGET"; None for anything else."""
    if not filename.endswith(MANIFEST_SUFFIX):
        return None
    return filename[: -len(MANIFEST_SUFFIX)]


def parse_manifest(data: bytes) -> Manifest:
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise UpstreamError(f"Manifest is not valid JSON: {e}")
    try:
        return Manifest.model_validate(raw)
    except PydanticValidationError as e:
        raise UpstreamError(f"Manifest has unexpected shape: {e.errors()[:3]}")


def dump_manifest(manifest: Manifest) -> bytes:
    return json.dumps(manifest.model_dump(exclude_none=True), indent=2).encode("utf-8")


def canonicalize_chip_family(value: Optional[str]) -> Optional[str]:
    """ "esp32c3" -> "ESP32-C3", "esp32" -> "ESP32", anything else unchanged."""
    if not isinstance(value, str):
        return value
    m = _CHIP_FAMILY.match(value)
    if not m:
        return value
    suffix = m.group(1)
    return f"ESP32-{suffix.upper()}" if suffix else "ESP32"


def canonicalize_manifest(manifest: Manifest) -> Manifest:
    for build in manifest.builds:
        if build.chipFamily is not None:
            build.chipFamily = canonicalize_chip_family(build.chipFamily)
    return manifest


def collect_part_paths(manifest: Manifest) -> List[str]:
    """Distinct part paths across all builds, first-seen order."""
    seen: List[str] = []
    for build in manifest.builds:
        for part in build.parts:
            if part.path and part.path not in seen:
                seen.append(part.path)
    return seen


def is_absolute_url(path: str) -> bool:
    return bool(_URL_SCHEME.match(path))


def rewrite_manifest_urls(manifest: Dict[str, Any], base_url: str) -> Dict[str, Any]:
    """
    Served form of a stored manifest: relative part paths prefixed with base_url.
    Works on a deep copy; the canonical document is never modified.
    """
    served = copy.deepcopy(manifest)
    for build in served.get("builds") or []:
        for part in build.get("parts") or []:
            path = part.get("path")
            if isinstance(path, str) and not is_absolute_url(path):
                part["path"] = f"{base_url}{path}"
    return served


def _normalize_for_match(value: str) -> str:
    return value.lower().replace("-", "_")


def select_app_part(manifest: Manifest, project_slug: str, variant: Optional[str] = None) -> Optional[ManifestPart]:
    """
    Pick the application binary (not bootloader / partition table) from the first build.

    1. the first part whose normalized path (lower-case, "-" -> "_") contains the
       normalized project slug, e.g. "matrx-fw.bin" for project "MATRX-fw";
    2. otherwise the first part named "<variant>_app.bin" or "app.bin".

    When several parts match a rule, array order decides.
    """
    if not manifest.builds:
        return None
    parts = manifest.builds[0].parts

    needle = _normalize_for_match(project_slug)
    for part in parts:
        if needle in _normalize_for_match(part.path):
            return part

    app_names = {"app.bin"}
    if variant:
        app_names.add(f"{variant}_app.bin".lower())
    for part in parts:
        if part.path.rsplit("/", 1)[-1].lower() in app_names:
            return part
    return None
