"""
Unit identity and naming.

Maps (source address, unit definition filename) to a stable unit id and to
the location of its descriptor store inside a snapshot directory.
"""

import hashlib
import re
from pathlib import Path
from typing import Union

SOURCE_ID_LENGTH = 8
DEFAULT_COMPOSE_FILE = "docker-compose.yml"

PathLike = Union[str, Path]

_INVALID_PROJECT_CHARS = re.compile(r"[^a-z0-9_-]")


def source_id(address: str) -> str:
    """
    Derive the identity of a source from its address.

    Args:
        address: Repository address exactly as declared

    Returns:
        First 8 hex characters of the SHA-256 digest of the address
    """
    return hashlib.sha256(address.encode("utf-8")).hexdigest()[:SOURCE_ID_LENGTH]


def unit_name(definition_path: PathLike) -> str:
    """Short unit name: the definition filename without its extension."""
    return Path(definition_path).stem


def unit_id(name: str, owner_source_id: str) -> str:
    if not name:
        raise ValueError("Unit name must not be empty")
    return f"{name}-{owner_source_id}"


def unit_store_path(snapshot_path: PathLike, uid: str) -> Path:
    return Path(snapshot_path) / uid


def descriptor_path(
    snapshot_path: PathLike,
    uid: str,
    compose_file: str = DEFAULT_COMPOSE_FILE,
) -> Path:
    """Path of the persisted descriptor for a unit inside a snapshot."""
    return unit_store_path(snapshot_path, uid) / compose_file


def project_name(uid: str) -> str:
    """
    docker compose project name for a unit.

    Compose only accepts lowercase letters, digits, '-' and '_', starting
    with a letter or digit. Unit ids that don't qualify are normalized and
    get a digest of the raw id appended, so `MyApp-...` and `myapp-...`
    remain separate projects.
    """
    name = _INVALID_PROJECT_CHARS.sub("_", uid.lower()).lstrip("-_")
    if name == uid:
        return uid
    digest = hashlib.sha256(uid.encode("utf-8")).hexdigest()[:6]
    return f"{name}-{digest}"
