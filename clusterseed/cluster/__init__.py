from .discovery import SharedDiscoveryService, ReplicatedLog
from .member import MemberConfig, ClusterMember
from .cluster import Cluster
from .verifier import await_convergence, data_matches_eventually
from .data import create_empty_nodes, create_some_data

__all__ = [
    "SharedDiscoveryService",
    "ReplicatedLog",
    "MemberConfig",
    "ClusterMember",
    "Cluster",
    "await_convergence",
    "data_matches_eventually",
    "create_empty_nodes",
    "create_some_data",
]
