"""Test utilities for clusterseed tests."""
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import networkx as nx

from clusterseed import __version__
from clusterseed._storage import StoreIdentity, write_identity
from clusterseed._storage.graph_store import graph_to_graphml, write_graph
from clusterseed.backup.models import BackupArtifact, BackupManifest, SnapshotPayload
from clusterseed.backup.utils import (
    MANIFEST_FILE,
    compute_directory_checksum,
    compute_text_checksum,
    save_manifest,
)
from clusterseed.config import ClusterConfig, ConvergenceConfig, STORE_FORMATS

CLUSTER_CONFIG = ClusterConfig(join_timeout=15.0)
CONVERGENCE_CONFIG = ConvergenceConfig(timeout=15.0, poll_interval=0.05)


def build_graph() -> nx.DiGraph:
    """Small graph with properties of every supported type."""
    graph = nx.DiGraph()
    graph.add_node("alice", label="Person", age=31, score=0.5, active=True)
    graph.add_node("bob", label="Person", age=42, score=1.5, active=False)
    graph.add_node("acme", label="Company")
    graph.add_edge("alice", "acme", type="WORKS_AT", since=2019)
    graph.add_edge("bob", "alice", type="KNOWS", since=2001)
    return graph


def write_artifact(
    backup_dir: Path,
    name: str,
    graph: Optional[nx.DiGraph] = None,
    store_id: str = "store-a",
    cluster_id: str = "source-cluster",
    member_id: int = 0,
    log_index: int = 5,
    store_format: str = "standard",
    created_at: Optional[datetime] = None,
) -> BackupArtifact:
    """Write a complete artifact directory the way capture publishes one."""
    graph = build_graph() if graph is None else graph
    path = Path(backup_dir) / name
    path.mkdir(parents=True)

    write_graph(path, graph)
    write_identity(path, StoreIdentity.bind(store_id, cluster_id, member_id, store_format, log_index))

    manifest = BackupManifest(
        backup_name=name,
        created_at=created_at or datetime.now(timezone.utc),
        clusterseed_version=__version__,
        source_address="127.0.0.1:7000",
        source_member_id=member_id,
        source_cluster_id=cluster_id,
        store_id=store_id,
        store_format=store_format,
        format_version=STORE_FORMATS[store_format],
        log_index=log_index,
        statistics={"nodes": graph.number_of_nodes(), "relationships": graph.number_of_edges()},
        checksum=compute_directory_checksum(path),
    )
    save_manifest(manifest.model_dump(mode="json"), path / MANIFEST_FILE)
    return BackupArtifact.from_manifest(manifest, path)


class FakeSource:
    """Snapshot source with a fixed graph, served by the backup app in tests."""

    def __init__(self, graph: Optional[nx.DiGraph] = None, identity: Optional[StoreIdentity] = None, member_id: int = 0):
        self.member_id = member_id
        self.graph = build_graph() if graph is None else graph
        self._identity = identity

    def identity(self) -> Optional[StoreIdentity]:
        return self._identity

    def snapshot(self) -> SnapshotPayload:
        graphml = graph_to_graphml(self.graph)
        return SnapshotPayload(
            identity=self._identity,
            format_version=STORE_FORMATS[self._identity.store_format],
            graphml=graphml,
            checksum=compute_text_checksum(graphml),
            statistics={"nodes": self.graph.number_of_nodes(), "relationships": self.graph.number_of_edges()},
            taken_at=datetime.now(timezone.utc),
        )


def source_identity(log_index: int = 5, store_id: str = "store-a") -> StoreIdentity:
    return StoreIdentity.bind(store_id, "source-cluster", 0, "standard", log_index)
