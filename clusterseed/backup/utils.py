"""Utility functions for backup capture and restore."""

import hashlib
import json
import re
from pathlib import Path
from typing import Dict, Any, Iterable
from datetime import datetime, timezone

from .._utils import logger
from ..errors import ConfigurationError

MANIFEST_FILE = "manifest.json"

_BACKUP_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def compute_text_checksum(text: str) -> str:
    """SHA-256 checksum of a text payload, 'sha256:' prefixed."""
    return f"sha256:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


def compute_directory_checksum(directory: Path, exclude: Iterable[str] = (MANIFEST_FILE,)) -> str:
    """Compute SHA-256 checksum of directory contents.

    Files are hashed in sorted order together with their relative paths, so
    the checksum is deterministic. Top-level files named in ``exclude`` are
    skipped, which lets the manifest carry the checksum of its own payload.

    Args:
        directory: Directory to compute checksum for
        exclude: Top-level file names left out of the checksum

    Returns:
        SHA-256 checksum as hex string with 'sha256:' prefix
    """
    sha256 = hashlib.sha256()
    excluded = set(exclude)

    for file_path in sorted(directory.rglob("*")):
        if not file_path.is_file():
            continue
        relative_path = file_path.relative_to(directory)
        if str(relative_path) in excluded:
            continue

        sha256.update(str(relative_path).encode('utf-8'))
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)

    return f"sha256:{sha256.hexdigest()}"


def generate_backup_name() -> str:
    """Generate backup name with timestamp.

    Returns:
        Backup name in format: snapshot_YYYY-MM-DDTHH-MM-SSZ
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
    return f"snapshot_{timestamp}"


def validate_backup_name(name: str) -> str:
    """Reject names that are empty, hidden or escape the backup root."""
    if not name or not _BACKUP_NAME.match(name):
        raise ConfigurationError(
            f"Invalid backup name {name!r}: use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit"
        )
    return name


def save_manifest(manifest: Dict[str, Any], output_path: Path) -> None:
    """Save manifest JSON to file.

    Args:
        manifest: Manifest dictionary
        output_path: Output file path
    """
    with open(output_path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)

    logger.debug(f"Manifest saved: {output_path}")


def load_manifest(manifest_path: Path) -> Dict[str, Any]:
    """Load manifest JSON from file.

    Args:
        manifest_path: Manifest file path

    Returns:
        Manifest dictionary
    """
    with open(manifest_path, "r") as f:
        manifest = json.load(f)

    logger.debug(f"Manifest loaded: {manifest_path}")
    return manifest
