from .models import BackupArtifact, BackupManifest, SnapshotPayload
from .store import BackupStore
from .capture import capture
from .restore import RestoreDatabaseCommand, IdentityRewriter, install

__all__ = [
    "BackupArtifact",
    "BackupManifest",
    "SnapshotPayload",
    "BackupStore",
    "capture",
    "RestoreDatabaseCommand",
    "IdentityRewriter",
    "install",
]
