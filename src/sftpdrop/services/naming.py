"""Filename sanitization and remote name generation."""

import re
import secrets
from pathlib import PurePosixPath

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def sanitize_filename(filename: str) -> str:
    """Replace everything outside ``[A-Za-z0-9._-]`` and collapse dot runs."""
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    safe = re.sub(r"\.{2,}", "_", safe)
    return safe[:255]


def generate_remote_name(original_name: str) -> str:
    """Collision-resistant name keeping the sanitized extension."""
    extension = PurePosixPath(sanitize_filename(original_name)).suffix
    return f"{secrets.token_hex(16)}{extension}"


def is_valid_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def mime_type_allowed(mime_type: str, allowed: list[str] | None) -> bool:
    """Match against an allow-list that may contain ``type/*`` wildcards."""
    if not allowed:
        return True
    for pattern in allowed:
        if pattern.endswith("/*"):
            if mime_type.startswith(pattern[:-1]):
                return True
        elif mime_type == pattern:
            return True
    return False
