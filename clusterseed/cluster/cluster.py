"""Cluster topology and member lifecycle controller."""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .._storage import LogEntry, Operation
from .._utils import find_free_port, format_address, logger, loopback_host
from ..config import ClusterConfig
from ..errors import ConfigurationError, JoinTimeoutError, MemberLifecycleError
from .discovery import SharedDiscoveryService
from .member import (
    ACTIVE_DATABASE,
    BACKUP_ADDRESS,
    BACKUP_ENABLED,
    DISCOVERY_ADDRESS,
    STORE_FORMAT,
    ClusterMember,
    MemberConfig,
)


class Cluster:
    """A set of members forming one logical cluster.

    Members live under ``parent_dir/member-<id>``. The topology is fixed at
    construction apart from ``add_member_with_id``.
    """

    def __init__(
        self,
        parent_dir: Path,
        member_count: Optional[int] = None,
        discovery: Optional[SharedDiscoveryService] = None,
        config: Optional[ClusterConfig] = None,
        member_settings: Optional[Dict[int, Dict[str, str]]] = None,
    ):
        self.parent_dir = Path(parent_dir)
        self.config = config or ClusterConfig()
        self.discovery = discovery or SharedDiscoveryService()
        self.cluster_id = uuid.uuid4().hex
        self._member_settings = member_settings or {}
        self._members: Dict[int, ClusterMember] = {}

        count = self.config.member_count if member_count is None else member_count
        self.discovery.declare_topology(self.cluster_id, range(count))
        for member_id in range(count):
            self._create_member(member_id)

    def _create_member(self, member_id: int) -> ClusterMember:
        host = loopback_host(self.config.ip_family)
        settings = {
            ACTIVE_DATABASE: self.config.default_database,
            STORE_FORMAT: self.config.store_format,
            BACKUP_ENABLED: str(self.config.backup_enabled).lower(),
            BACKUP_ADDRESS: format_address(host, find_free_port(host)),
            DISCOVERY_ADDRESS: format_address(host, find_free_port(host)),
        }
        settings.update(self._member_settings.get(member_id, {}))

        member_config = MemberConfig(
            member_id=member_id,
            cluster_id=self.cluster_id,
            member_dir=self.parent_dir / f"member-{member_id}",
            settings=settings,
        )
        member = ClusterMember(member_config, self.discovery, self.config.join_timeout)
        self._members[member_id] = member
        return member

    def add_member_with_id(self, member_id: int) -> ClusterMember:
        """Extend the topology with a new, not yet started member."""
        if member_id in self._members:
            raise ConfigurationError(f"Member {member_id} already exists in cluster {self.cluster_id}")
        self.discovery.add_to_topology(self.cluster_id, member_id)
        member = self._create_member(member_id)
        logger.info(f"Added member {member_id} to cluster {self.cluster_id}")
        return member

    def core_members(self) -> List[ClusterMember]:
        return [self._members[member_id] for member_id in sorted(self._members)]

    def running_members(self) -> List[ClusterMember]:
        return [member for member in self.core_members() if member.is_running]

    def get_member_by_id(self, member_id: int) -> ClusterMember:
        try:
            return self._members[member_id]
        except KeyError:
            raise ConfigurationError(f"No member {member_id} in cluster {self.cluster_id}") from None

    def config_of(self, member_id: int) -> Dict[str, Any]:
        return self.get_member_by_id(member_id).config.config_of()

    async def remove_member_with_id(self, member_id: int) -> None:
        """Stop a member and drop it from the topology."""
        member = self.get_member_by_id(member_id)
        await member.stop()
        self.discovery.remove_from_topology(self.cluster_id, member_id)
        del self._members[member_id]
        logger.info(f"Removed member {member_id} from cluster {self.cluster_id}")

    async def _start_within_timeout(self, member: ClusterMember) -> None:
        timeout = self.config.join_timeout
        try:
            await asyncio.wait_for(member.start(), timeout)
        except asyncio.TimeoutError:
            raise JoinTimeoutError(
                f"Member {member.member_id} did not join cluster {self.cluster_id} within {timeout}s"
            ) from None

    async def start_member(self, member_id: int) -> ClusterMember:
        member = self.get_member_by_id(member_id)
        await self._start_within_timeout(member)
        return member

    async def stop_member(self, member_id: int) -> None:
        await self.get_member_by_id(member_id).stop()

    async def start(self) -> None:
        """Start every stopped member and wait for each to acknowledge its join."""
        pending = [member for member in self.core_members() if not member.is_running]
        results = await asyncio.gather(
            *(self._start_within_timeout(member) for member in pending),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            for member in reversed(pending):
                await member.stop()
            raise errors[0]
        logger.info(f"Cluster {self.cluster_id} started with {len(pending)} member(s)")

    async def shutdown(self) -> None:
        for member in reversed(self.core_members()):
            await member.stop()

    def leader(self) -> ClusterMember:
        """Member through which transactions are committed."""
        running = self.running_members()
        if not running:
            raise MemberLifecycleError(f"Cluster {self.cluster_id} has no running members")
        return running[0]

    async def commit(self, operations: Iterable[Operation]) -> LogEntry:
        return await self.leader().commit(operations)

    def backup_address(self) -> str:
        """Backup address of a running member with backups enabled."""
        for member in self.running_members():
            if member.config.backup_enabled:
                return member.config.backup_address
        raise MemberLifecycleError(
            f"Cluster {self.cluster_id} has no running member serving backups"
        )

    def __repr__(self) -> str:
        return f"Cluster({self.cluster_id}, members={sorted(self._members)})"
