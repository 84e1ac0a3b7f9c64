"""Helpers that write data into a running cluster."""

import uuid

from .._storage import Operation
from .cluster import Cluster
from .member import ClusterMember


async def create_empty_nodes(cluster: Cluster, count: int) -> ClusterMember:
    """Commit ``count`` transactions of one property-less node each."""
    leader = cluster.leader()
    entry = None
    for _ in range(count):
        entry = await leader.commit([Operation.create_node(uuid.uuid4().hex)])
    if entry is not None:
        await leader.wait_for_index(entry.index, cluster.config.join_timeout)
    return leader


async def create_some_data(cluster: Cluster) -> ClusterMember:
    """Commit a small labelled graph and wait until the committing member has it."""
    leader = cluster.leader()
    person_ids = [uuid.uuid4().hex for _ in range(3)]
    operations = [
        Operation.create_node(node_id, label="Person", name=name, rank=rank)
        for rank, (node_id, name) in enumerate(zip(person_ids, ("alice", "bob", "carol")))
    ]
    operations += [
        Operation.create_relationship(person_ids[0], person_ids[1], "KNOWS", since=2015),
        Operation.create_relationship(person_ids[1], person_ids[2], "KNOWS", since=2019),
    ]
    await leader.commit(operations)
    followup = await leader.commit([Operation.set_property(person_ids[2], "active", True)])
    await leader.wait_for_index(followup.index, cluster.config.join_timeout)
    return leader
