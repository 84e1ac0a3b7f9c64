"""Comparable logical snapshot of a store's graph content."""

import json
from pathlib import Path
from typing import Any, Dict

import networkx as nx
import xxhash
from pydantic import BaseModel, ConfigDict, Field

from .graph_store import read_graph
from .transactions import RELATIONSHIP_SEPARATOR


class DataRepresentation(BaseModel):
    """Logical content of a store, compared with full structural equality.

    Built from a database directory on disk (no running process), from a backup
    artifact, or from a live member's graph. Byte layout plays no part.
    """

    model_config = ConfigDict(frozen=True)

    nodes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    relationships: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_graph(cls, graph: nx.DiGraph) -> "DataRepresentation":
        relationships = {}
        for start, end, attrs in graph.edges(data=True):
            key = f"{start}{RELATIONSHIP_SEPARATOR}{end}"
            if key in relationships:
                raise ValueError(f"Relationship key {key!r} is ambiguous: node ids contain {RELATIONSHIP_SEPARATOR!r}")
            relationships[key] = dict(attrs)
        return cls(
            nodes={str(node): dict(attrs) for node, attrs in graph.nodes(data=True)},
            relationships=relationships,
        )

    @classmethod
    def of_store(cls, database_dir: Path) -> "DataRepresentation":
        """Representation of a database directory read straight from disk."""
        return cls.from_graph(read_graph(Path(database_dir)))

    @property
    def fingerprint(self) -> str:
        canonical = json.dumps(
            {"nodes": self.nodes, "relationships": self.relationships},
            sort_keys=True,
            default=str,
        )
        return xxhash.xxh64(canonical.encode("utf-8")).hexdigest()

    def summary(self) -> str:
        return (
            f"{len(self.nodes)} nodes, {len(self.relationships)} relationships "
            f"[{self.fingerprint}]"
        )

    def diff(self, other: "DataRepresentation") -> Dict[str, Any]:
        """Keys present on one side only and keys whose properties differ."""
        result = {}
        for section in ("nodes", "relationships"):
            mine, theirs = getattr(self, section), getattr(other, section)
            result[section] = {
                "missing": sorted(set(mine) - set(theirs)),
                "unexpected": sorted(set(theirs) - set(mine)),
                "changed": sorted(k for k in set(mine) & set(theirs) if mine[k] != theirs[k]),
            }
        return result
