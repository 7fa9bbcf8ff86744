# FILE: firmware_backend/services/version_service.py
import re
from typing import NamedTuple, Optional

_SUFFIX_SPLIT = re.compile(r"[+-]")
_DIGITS = re.compile(r"^[0-9]+$")
_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_.-]+$")
# versions may also carry semver build metadata ("1.2.3+7")
_SAFE_VERSION = re.compile(r"^[A-Za-z0-9_.+-]+$")


class Semver(NamedTuple):
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def normalize_version(tag: str) -> str:
    """Release tag -> stored version ("v1.2.0" -> "1.2.0")."""
    tag = tag.strip()
    if tag[:1] in ("v", "V"):
        return tag[1:]
    return tag


def parse_semver(value: str) -> Optional[Semver]:
    """
    Parse "v1.2.3" / "1.2" / "1.2.3-beta+7" into (major, minor, patch).
    Pre-release and build metadata are ignored; missing minor/patch are 0.
    Returns None for anything that isn't 1-3 non-negative integer components.
    """
    if not isinstance(value, str):
        return None
    normalized = _SUFFIX_SPLIT.split(normalize_version(value), 1)[0]
    parts = normalized.split(".")
    if len(parts) > 3:
        return None
    parts += ["0"] * (3 - len(parts))
    if not all(_DIGITS.match(p) for p in parts):
        return None
    return Semver(*(int(p) for p in parts))


def compare_semver(a: Semver, b: Semver) -> int:
    """Negative if a < b, 0 if equal, positive if a > b (numeric, per component)."""
    if a.major != b.major:
        return a.major - b.major
    if a.minor != b.minor:
        return a.minor - b.minor
    return a.patch - b.patch


def is_safe_identifier(value: str, max_len: int = 64) -> bool:
    if not value or len(value) > max_len:
        return False
    # allow: a-z A-Z 0-9 _ - .
    return bool(_SAFE_IDENTIFIER.match(value)) and value not in (".", "..")


def is_safe_version(value: str, max_len: int = 64) -> bool:
    if not value or len(value) > max_len:
        return False
    return bool(_SAFE_VERSION.match(value)) and value not in (".", "..")
