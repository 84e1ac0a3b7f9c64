"""Data models for backup capture and restore."""

from datetime import datetime
from pathlib import Path
from typing import Dict
from pydantic import BaseModel, ConfigDict, Field

from .._storage import StoreIdentity


class SnapshotPayload(BaseModel):
    """Consistent snapshot served by a running member's backup endpoint."""

    identity: StoreIdentity = Field(..., description="Source store identity at snapshot time")
    format_version: str = Field(..., description="On-disk store format version")
    graphml: str = Field(..., description="Graph data serialized as GraphML")
    checksum: str = Field(..., description="SHA-256 checksum of the graphml payload")
    statistics: Dict[str, int] = Field(..., description="Node and relationship counts")
    taken_at: datetime = Field(..., description="Snapshot timestamp")


class BackupManifest(BaseModel):
    """Manifest stored alongside the payload of every backup artifact."""

    backup_name: str = Field(..., description="Unique name within the backup root")
    created_at: datetime = Field(..., description="Backup creation timestamp")
    clusterseed_version: str = Field(..., description="clusterseed version")
    source_address: str = Field(..., description="Backup address of the source member")
    source_member_id: int = Field(..., description="Source member id")
    source_cluster_id: str = Field(..., description="Cluster the source member belonged to")
    store_id: str = Field(..., description="Store id of the captured data")
    store_format: str = Field(..., description="Store format selector")
    format_version: str = Field(..., description="Store format version")
    log_index: int = Field(..., ge=0, description="Committed log index the snapshot reflects")
    statistics: Dict[str, int] = Field(..., description="Data statistics")
    checksum: str = Field(..., description="SHA-256 checksum of the payload files")


class BackupArtifact(BaseModel):
    """Immutable, named snapshot of one member's store on local disk."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    created_at: datetime
    source_address: str
    source_member_id: int
    source_cluster_id: str
    store_id: str
    store_format: str
    format_version: str
    log_index: int
    statistics: Dict[str, int]
    checksum: str

    @classmethod
    def from_manifest(cls, manifest: BackupManifest, path: Path) -> "BackupArtifact":
        return cls(
            name=manifest.backup_name,
            path=Path(path),
            created_at=manifest.created_at,
            source_address=manifest.source_address,
            source_member_id=manifest.source_member_id,
            source_cluster_id=manifest.source_cluster_id,
            store_id=manifest.store_id,
            store_format=manifest.store_format,
            format_version=manifest.format_version,
            log_index=manifest.log_index,
            statistics=manifest.statistics,
            checksum=manifest.checksum,
        )
