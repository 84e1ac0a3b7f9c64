"""Directory of named, immutable backup artifacts on the seeding host."""

import os
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .._storage.graph_store import DATA_FILES
from .._utils import logger
from ..errors import CorruptionError, DestinationConflictError
from .models import BackupArtifact, BackupManifest
from .utils import (
    MANIFEST_FILE,
    compute_directory_checksum,
    load_manifest,
    validate_backup_name,
)

STAGING_PREFIX = ".staging-"


class BackupStore:
    """Bookkeeping for one backup root: one subdirectory per named backup."""

    def __init__(self, backup_dir: Path):
        """Initialize backup store.

        Args:
            backup_dir: Root directory holding backup artifacts
        """
        self.backup_dir = Path(backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.backup_dir / validate_backup_name(name)

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def load(self, name: str) -> BackupArtifact:
        """Load a published artifact by name.

        Raises:
            FileNotFoundError: No backup with that name
            CorruptionError: Manifest missing or invalid
        """
        path = self.path_for(name)
        if not path.is_dir():
            raise FileNotFoundError(f"Backup not found: {name}")
        return self.load_path(path)

    @staticmethod
    def load_path(path: Path) -> BackupArtifact:
        """Load an artifact from its directory, wherever it lives."""
        path = Path(path)
        if not path.is_dir():
            raise FileNotFoundError(f"Backup not found: {path}")

        manifest_path = path / MANIFEST_FILE
        if not manifest_path.exists():
            raise CorruptionError(f"Backup {path} has no manifest; it is incomplete")

        try:
            manifest = BackupManifest(**load_manifest(manifest_path))
        except (ValueError, ValidationError) as e:
            raise CorruptionError(f"Backup {path} has an invalid manifest: {e}") from e

        return BackupArtifact.from_manifest(manifest, path)

    @staticmethod
    def verify(artifact: BackupArtifact) -> None:
        """Check payload presence and checksum.

        Raises:
            CorruptionError: Payload missing or checksum mismatch
        """
        for data_file in DATA_FILES:
            if not (artifact.path / data_file).is_file():
                raise CorruptionError(f"Backup {artifact.name} is missing {data_file}")

        computed = compute_directory_checksum(artifact.path)
        if computed != artifact.checksum:
            raise CorruptionError(
                f"Checksum mismatch for backup {artifact.name}: "
                f"expected {artifact.checksum}, got {computed}"
            )
        logger.debug(f"Payload checksum verified for {artifact.name}: {computed}")

    def list_artifacts(self) -> List[BackupArtifact]:
        """List all published backups, newest first."""
        artifacts = []

        for path in self.backup_dir.iterdir():
            if not path.is_dir() or path.name.startswith("."):
                continue
            try:
                artifacts.append(self.load_path(path))
            except CorruptionError as e:
                logger.warning(f"Failed to read backup {path.name}: {e}")

        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    def delete(self, name: str) -> bool:
        """Delete a backup.

        Returns:
            True if deleted, False if not found
        """
        path = self.path_for(name)
        if not path.exists():
            return False

        shutil.rmtree(path)
        logger.info(f"Deleted backup: {name}")
        return True

    def staging_dir(self, name: str) -> Path:
        """Create a hidden directory to assemble a backup in before publishing."""
        validate_backup_name(name)
        staging = self.backup_dir / f"{STAGING_PREFIX}{name}-{uuid.uuid4().hex[:8]}"
        staging.mkdir(parents=True)
        return staging

    def publish(self, staging: Path, name: str) -> Path:
        """Move a fully written staging directory to its final name.

        Raises:
            DestinationConflictError: A backup with that name already exists
        """
        target = self.path_for(name)
        if target.exists():
            raise DestinationConflictError(target)
        try:
            os.rename(staging, target)
        except OSError as e:
            if target.exists():
                raise DestinationConflictError(target) from e
            raise
        return target

    def discard(self, staging: Optional[Path]) -> None:
        if staging is not None and staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
