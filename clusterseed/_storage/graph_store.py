"""File-backed graph store standing in for a member's storage engine.

A database directory holds two regions:

- ``graph.graphml``: the graph data (networkx DiGraph persisted as GraphML)
- ``identity.json``: store identity metadata (store id, cluster binding,
  last applied log index), rewritable without touching the data file
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

import networkx as nx
import xxhash
from pydantic import BaseModel, Field, ValidationError

from .._utils import logger
from ..errors import CorruptionError, StoreLockedError
from .transactions import LogEntry

GRAPH_FILE = "graph.graphml"
IDENTITY_FILE = "identity.json"
DATA_FILES = (GRAPH_FILE,)


def binding_token(cluster_id: str, store_id: str, member_id: int) -> str:
    """Digest binding a store to one member of one cluster."""
    return xxhash.xxh64(f"{cluster_id}:{store_id}:{member_id}".encode("utf-8")).hexdigest()


class StoreIdentity(BaseModel):
    """Store identity metadata persisted next to the graph data."""

    store_id: str = Field(..., description="Data lineage identifier")
    cluster_id: str = Field(..., description="Cluster the store is bound to")
    member_id: int = Field(..., description="Member the store is bound to")
    log_index: int = Field(0, ge=0, description="Last applied committed log index")
    store_format: str = Field(..., description="Store format selector")
    binding_token: str = Field(..., description="xxh64 of cluster, store and member ids")

    @classmethod
    def bind(
        cls,
        store_id: str,
        cluster_id: str,
        member_id: int,
        store_format: str,
        log_index: int = 0,
    ) -> "StoreIdentity":
        return cls(
            store_id=store_id,
            cluster_id=cluster_id,
            member_id=member_id,
            log_index=log_index,
            store_format=store_format,
            binding_token=binding_token(cluster_id, store_id, member_id),
        )

    def is_bound_to(self, cluster_id: str, member_id: int) -> bool:
        return (
            self.cluster_id == cluster_id
            and self.member_id == member_id
            and self.binding_token == binding_token(cluster_id, self.store_id, member_id)
        )


def is_store_empty(database_dir: Path) -> bool:
    """True when the database directory is absent or has no entries."""
    database_dir = Path(database_dir)
    if not database_dir.exists():
        return True
    return not any(database_dir.iterdir())


def read_identity(database_dir: Path) -> Optional[StoreIdentity]:
    identity_path = Path(database_dir) / IDENTITY_FILE
    if not identity_path.exists():
        return None
    try:
        return StoreIdentity.model_validate_json(identity_path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise CorruptionError(f"Invalid store identity in {identity_path}: {e}") from e


def write_identity(database_dir: Path, identity: StoreIdentity) -> None:
    _atomic_write_text(Path(database_dir) / IDENTITY_FILE, identity.model_dump_json(indent=2))


def read_graph(database_dir: Path) -> nx.DiGraph:
    graph_path = Path(database_dir) / GRAPH_FILE
    if not graph_path.exists():
        return nx.DiGraph()
    try:
        return nx.DiGraph(nx.read_graphml(graph_path))
    except Exception as e:
        raise CorruptionError(f"Unreadable graph data in {graph_path}: {e}") from e


def write_graph(database_dir: Path, graph: nx.DiGraph) -> None:
    _atomic_write_text(Path(database_dir) / GRAPH_FILE, graph_to_graphml(graph))


def graph_to_graphml(graph: nx.DiGraph) -> str:
    return "\n".join(nx.generate_graphml(graph))


def graph_from_graphml(text: str) -> nx.DiGraph:
    return nx.DiGraph(nx.parse_graphml(text))


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class StoreLock:
    """Exclusive ownership of one database directory.

    The lock is a sibling ``<database>.lock`` directory created with an atomic
    ``mkdir``, so the database directory itself can be swapped while held.
    """

    def __init__(self, database_dir: Path):
        self.database_dir = Path(database_dir)
        self.lock_path = self.database_dir.parent / f"{self.database_dir.name}.lock"
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> "StoreLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.mkdir(self.lock_path)
        except FileExistsError:
            raise StoreLockedError(self.database_dir) from None
        self._held = True
        return self

    def release(self) -> None:
        if self._held:
            shutil.rmtree(self.lock_path, ignore_errors=True)
            self._held = False

    def __enter__(self) -> "StoreLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class GraphStore:
    """In-memory graph of one database, flushed to its directory on demand."""

    def __init__(self, database_dir: Path):
        self.database_dir = Path(database_dir)
        self._graph = nx.DiGraph()
        self._identity: Optional[StoreIdentity] = None

    @classmethod
    def open(cls, database_dir: Path) -> "GraphStore":
        store = cls(database_dir)
        store._identity = read_identity(store.database_dir)
        if store._identity is None and not is_store_empty(store.database_dir):
            raise CorruptionError(
                f"Database directory {store.database_dir} has data but no identity metadata"
            )
        store._graph = read_graph(store.database_dir)
        return store

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    @property
    def identity(self) -> Optional[StoreIdentity]:
        return self._identity

    @property
    def is_empty(self) -> bool:
        return self._identity is None

    @property
    def log_index(self) -> int:
        return self._identity.log_index if self._identity else 0

    def initialize(self, identity: StoreIdentity) -> None:
        """Bind an empty store to a cluster and persist it."""
        if self._identity is not None:
            raise CorruptionError(f"Store {self.database_dir} is already initialized")
        self._identity = identity
        self._graph = nx.DiGraph()
        self.flush()
        logger.debug(f"Initialized store {self.database_dir} for cluster {identity.cluster_id}")

    def apply(self, entry: LogEntry) -> bool:
        """Apply one committed entry; returns False when already applied."""
        if self._identity is None:
            raise CorruptionError(f"Cannot apply to uninitialized store {self.database_dir}")
        if entry.index <= self._identity.log_index:
            return False
        if entry.index != self._identity.log_index + 1:
            raise CorruptionError(
                f"Log gap in {self.database_dir}: at {self._identity.log_index}, got {entry.index}"
            )

        graph = self._graph
        for op in entry.operations:
            if op.kind == "create_node":
                graph.add_node(op.node_id, **op.properties)
            elif op.kind == "set_property":
                if op.node_id in graph:
                    graph.nodes[op.node_id][op.key] = op.value
            elif op.kind == "delete_node":
                if op.node_id in graph:
                    graph.remove_node(op.node_id)
            elif op.kind == "create_relationship":
                if op.node_id in graph and op.end_node_id in graph:
                    graph.add_edge(op.node_id, op.end_node_id, type=op.rel_type, **op.properties)

        self._identity = self._identity.model_copy(update={"log_index": entry.index})
        return True

    def flush(self) -> None:
        """Write graph data, then identity, so the index never runs ahead of data."""
        if self._identity is None:
            return
        write_graph(self.database_dir, self._graph)
        write_identity(self.database_dir, self._identity)

    def to_graphml(self) -> str:
        return graph_to_graphml(self._graph)

    def statistics(self) -> Dict[str, int]:
        return {
            "nodes": self._graph.number_of_nodes(),
            "relationships": self._graph.number_of_edges(),
        }

    def __repr__(self) -> str:
        return f"GraphStore({self.database_dir}, log_index={self.log_index})"
