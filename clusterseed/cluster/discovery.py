"""In-process discovery service and committed log shared by cluster members.

The consensus engine itself is out of scope: entries appended to a
``ReplicatedLog`` are treated as committed. What this module does own is the
admission decision for joining members, which is where store identity
metadata matters.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .._storage import LogEntry, Operation, StoreIdentity
from .._utils import logger
from ..errors import ConfigurationError, JoinRejectedError, MemberLifecycleError


class ReplicatedLog:
    """Append-only committed log starting after ``base_index``."""

    def __init__(self, base_index: int = 0):
        self.base_index = base_index
        self._entries: List[LogEntry] = []
        self._condition = asyncio.Condition()

    @property
    def last_index(self) -> int:
        return self.base_index + len(self._entries)

    async def append(self, operations: Iterable[Operation]) -> LogEntry:
        async with self._condition:
            entry = LogEntry(index=self.last_index + 1, operations=list(operations))
            self._entries.append(entry)
            self._condition.notify_all()
        return entry

    def entries_after(self, index: int) -> List[LogEntry]:
        if index < self.base_index:
            raise LookupError(
                f"Log starts after index {self.base_index}; index {index} is not available"
            )
        return self._entries[index - self.base_index:]

    async def wait_for_entries_after(self, index: int) -> List[LogEntry]:
        """Block until at least one entry past ``index`` is committed."""
        async with self._condition:
            await self._condition.wait_for(lambda: self.last_index > index)
            return self.entries_after(index)


@dataclass
class ClusterState:
    """What discovery knows about one cluster."""
    cluster_id: str
    topology: Set[int] = field(default_factory=set)
    store_id: Optional[str] = None
    log: Optional[ReplicatedLog] = None
    members: Dict[int, Dict[str, str]] = field(default_factory=dict)

    @property
    def bound(self) -> bool:
        return self.store_id is not None


class SharedDiscoveryService:
    """Membership registry shared by every member of one or more clusters."""

    def __init__(self):
        self._clusters: Dict[str, ClusterState] = {}

    def declare_topology(self, cluster_id: str, member_ids: Iterable[int]) -> ClusterState:
        state = self._clusters.setdefault(cluster_id, ClusterState(cluster_id))
        state.topology.update(member_ids)
        return state

    def add_to_topology(self, cluster_id: str, member_id: int) -> None:
        self.state(cluster_id).topology.add(member_id)

    def state(self, cluster_id: str) -> ClusterState:
        try:
            return self._clusters[cluster_id]
        except KeyError:
            raise ConfigurationError(f"Unknown cluster: {cluster_id}") from None

    def log(self, cluster_id: str) -> ReplicatedLog:
        state = self.state(cluster_id)
        if state.log is None:
            raise ConfigurationError(f"Cluster {cluster_id} has not been bootstrapped")
        return state.log

    def members(self, cluster_id: str) -> Dict[int, Dict[str, str]]:
        return dict(self.state(cluster_id).members)

    def join(
        self,
        cluster_id: str,
        member_id: int,
        identity: Optional[StoreIdentity],
        addresses: Optional[Dict[str, str]] = None,
    ) -> ClusterState:
        """Admit a member, bootstrapping the cluster on first join.

        A populated store must carry the cluster's store id and a log index the
        cluster log can continue from; an empty store can only join while the
        log still reaches back to index 0.
        """
        state = self.state(cluster_id)

        if member_id not in state.topology:
            raise JoinRejectedError(
                f"Member {member_id} is not part of the topology of cluster {cluster_id}"
            )
        if member_id in state.members:
            raise JoinRejectedError(f"Member {member_id} already joined cluster {cluster_id}")

        if not state.bound:
            if identity is None:
                state.store_id = uuid.uuid4().hex
                state.log = ReplicatedLog(0)
            else:
                state.store_id = identity.store_id
                state.log = ReplicatedLog(identity.log_index)
            logger.info(
                f"Cluster {cluster_id} bootstrapped by member {member_id}: "
                f"store {state.store_id} from log index {state.log.base_index}"
            )
        elif identity is None:
            if state.log.base_index > 0:
                raise JoinRejectedError(
                    f"Cluster {cluster_id} history starts after index {state.log.base_index}; "
                    f"member {member_id} must be seeded from a backup"
                )
        else:
            if identity.store_id != state.store_id:
                raise JoinRejectedError(
                    f"Member {member_id} holds store {identity.store_id}, "
                    f"cluster {cluster_id} is bound to store {state.store_id}"
                )
            if not state.log.base_index <= identity.log_index <= state.log.last_index:
                raise JoinRejectedError(
                    f"Member {member_id} is at log index {identity.log_index}, outside the "
                    f"cluster log range [{state.log.base_index}, {state.log.last_index}]"
                )

        state.members[member_id] = dict(addresses or {})
        return state

    def unbind(self, cluster_id: str) -> None:
        """Forget a cluster's store binding and log so its next joiner re-bootstraps it.

        Used when every member's store has been replaced from a backup.

        Raises:
            MemberLifecycleError: A member of the cluster is still joined
        """
        state = self.state(cluster_id)
        if state.members:
            raise MemberLifecycleError(
                f"Cannot unbind cluster {cluster_id}: members {sorted(state.members)} are joined"
            )
        state.store_id = None
        state.log = None
        logger.info(f"Cluster {cluster_id} unbound from its store")

    def remove_from_topology(self, cluster_id: str, member_id: int) -> None:
        state = self.state(cluster_id)
        if member_id in state.members:
            raise MemberLifecycleError(
                f"Member {member_id} of cluster {cluster_id} is joined and cannot be removed"
            )
        state.topology.discard(member_id)

    def leave(self, cluster_id: str, member_id: int) -> None:
        state = self._clusters.get(cluster_id)
        if state is not None:
            state.members.pop(member_id, None)
