"""Capture a consistent backup from a running member into the backup root."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
from pydantic import ValidationError

from .._storage import StoreIdentity, write_identity
from .._storage.graph_store import GRAPH_FILE
from .._utils import logger
from ..errors import (
    DestinationConflictError,
    InconsistentSnapshotError,
    SourceUnreachableError,
    TransportError,
)
from .models import BackupArtifact, BackupManifest, SnapshotPayload
from .store import BackupStore
from .utils import (
    MANIFEST_FILE,
    compute_directory_checksum,
    compute_text_checksum,
    save_manifest,
)


async def capture(
    source_address: str,
    backup_dir: Path,
    backup_name: str,
    connect_timeout: float = 10.0,
    transfer_timeout: float = 120.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BackupArtifact:
    """Pull a consistent snapshot of a running member into ``backup_dir/backup_name``.

    Args:
        source_address: Backup address of the source member (host:port)
        backup_dir: Backup root directory
        backup_name: Name of the new backup, unique within the root
        connect_timeout: Seconds allowed to connect to the source
        transfer_timeout: Seconds allowed for the snapshot transfer
        transport: Optional httpx transport, used instead of the network

    Returns:
        The published BackupArtifact

    Raises:
        DestinationConflictError: A backup with that name exists
        SourceUnreachableError: The source cannot be reached
        TransportError: The source answered with an error
        InconsistentSnapshotError: The snapshot failed consistency checks
    """
    store = BackupStore(backup_dir)
    if store.exists(backup_name):
        raise DestinationConflictError(store.path_for(backup_name))

    logger.info(f"Starting backup {backup_name} from {source_address}")
    identity, snapshot = await _fetch_snapshot(
        source_address, connect_timeout, transfer_timeout, transport
    )
    _check_consistency(identity, snapshot)

    staging = store.staging_dir(backup_name)
    try:
        (staging / GRAPH_FILE).write_text(snapshot.graphml, encoding="utf-8")
        write_identity(staging, snapshot.identity)

        manifest = BackupManifest(
            backup_name=backup_name,
            created_at=datetime.now(timezone.utc),
            clusterseed_version=_get_version(),
            source_address=source_address,
            source_member_id=snapshot.identity.member_id,
            source_cluster_id=snapshot.identity.cluster_id,
            store_id=snapshot.identity.store_id,
            store_format=snapshot.identity.store_format,
            format_version=snapshot.format_version,
            log_index=snapshot.identity.log_index,
            statistics=snapshot.statistics,
            checksum=compute_directory_checksum(staging),
        )
        save_manifest(manifest.model_dump(mode="json"), staging / MANIFEST_FILE)

        path = store.publish(staging, backup_name)
    except BaseException:
        store.discard(staging)
        raise

    logger.info(
        f"Backup complete: {backup_name} (log index {manifest.log_index}, "
        f"{manifest.statistics.get('nodes', 0)} nodes)"
    )
    return BackupArtifact.from_manifest(manifest, path)


async def _fetch_snapshot(
    source_address: str,
    connect_timeout: float,
    transfer_timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
):
    timeout = httpx.Timeout(transfer_timeout, connect=connect_timeout)
    try:
        async with httpx.AsyncClient(
            base_url=f"http://{source_address}", timeout=timeout, transport=transport
        ) as client:
            identity_response = await client.get("/backup/identity")
            _raise_for_status(source_address, identity_response)
            snapshot_response = await client.get("/backup/snapshot")
            _raise_for_status(source_address, snapshot_response)
    except (httpx.ConnectError, httpx.ConnectTimeout) as e:
        raise SourceUnreachableError(source_address, str(e) or type(e).__name__) from e
    except httpx.HTTPError as e:
        raise TransportError(f"Transfer from {source_address} failed: {e}") from e

    try:
        identity = StoreIdentity.model_validate(identity_response.json())
        snapshot = SnapshotPayload.model_validate(snapshot_response.json())
    except (ValueError, ValidationError) as e:
        raise InconsistentSnapshotError(
            f"Malformed snapshot from {source_address}: {e}"
        ) from e
    return identity, snapshot


def _raise_for_status(source_address: str, response: httpx.Response) -> None:
    if response.status_code != 200:
        raise TransportError(
            f"{source_address} answered {response.status_code} for {response.url.path}: "
            f"{response.text[:200]}"
        )


def _check_consistency(identity: StoreIdentity, snapshot: SnapshotPayload) -> None:
    """Reject torn transfers and sources that changed identity mid-transfer."""
    if compute_text_checksum(snapshot.graphml) != snapshot.checksum:
        raise InconsistentSnapshotError("Snapshot payload does not match its checksum")
    if snapshot.identity.store_id != identity.store_id:
        raise InconsistentSnapshotError(
            f"Source store changed during transfer: {identity.store_id} -> "
            f"{snapshot.identity.store_id}"
        )
    if snapshot.identity.log_index < identity.log_index:
        raise InconsistentSnapshotError(
            f"Snapshot at log index {snapshot.identity.log_index} is behind the "
            f"identity fetched before it ({identity.log_index})"
        )


def _get_version() -> str:
    from .. import __version__
    return __version__
