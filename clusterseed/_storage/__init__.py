from .graph_store import (
    GraphStore,
    StoreIdentity,
    StoreLock,
    binding_token,
    is_store_empty,
    read_identity,
    write_identity,
)
from .representation import DataRepresentation
from .transactions import LogEntry, Operation

__all__ = [
    "GraphStore",
    "StoreIdentity",
    "StoreLock",
    "binding_token",
    "is_store_empty",
    "read_identity",
    "write_identity",
    "DataRepresentation",
    "LogEntry",
    "Operation",
]
