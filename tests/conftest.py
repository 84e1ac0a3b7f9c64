"""Global pytest configuration and fixtures."""

import pytest
import pytest_asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clusterseed.cluster import Cluster, SharedDiscoveryService
from tests.utils import CLUSTER_CONFIG


@pytest.fixture
def discovery():
    """Discovery service shared by the clusters of one test."""
    return SharedDiscoveryService()


@pytest_asyncio.fixture
async def make_cluster(tmp_path, discovery):
    """Factory for clusters that are shut down when the test ends."""
    clusters = []

    def _make(name: str = "cluster", member_count: int = 3, **kwargs) -> Cluster:
        kwargs.setdefault("config", CLUSTER_CONFIG)
        kwargs.setdefault("discovery", discovery)
        cluster = Cluster(tmp_path / name, member_count, **kwargs)
        clusters.append(cluster)
        return cluster

    yield _make

    for cluster in clusters:
        await cluster.shutdown()


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path
