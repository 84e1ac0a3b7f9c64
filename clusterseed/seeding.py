"""Seeding orchestration: capture, install, start, verify convergence."""

import asyncio
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from ._storage import DataRepresentation
from ._utils import logger
from .backup.models import BackupArtifact
from .backup.restore import install
from .backup.store import BackupStore
from .cluster.cluster import Cluster
from .cluster.member import ClusterMember
from .cluster.verifier import await_convergence
from .config import SeedingConfig
from .errors import (
    MemberLifecycleError,
    UnsupportedSeedingError,
    error_for_exit_code,
)

BACKUP_TOOL_MODULE = "clusterseed.backup.cli"


class SeedingOrchestrator:
    """Sequence backup capture, restore, member start and convergence checks.

    Capture and install failures are never retried here: the sequence aborts
    before any member is started from a known-bad state.
    """

    def __init__(self, config: Optional[SeedingConfig] = None):
        self.config = config or SeedingConfig()

    async def run_backup_tool(self, args: List[str]) -> int:
        """Run the backup tool in its own process and return its exit code."""
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-m", BACKUP_TOOL_MODULE, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output, _ = await process.communicate()
        if process.returncode != 0:
            logger.warning(
                f"Backup tool exited with {process.returncode}: "
                f"{output.decode('utf-8', errors='replace').strip()}"
            )
        return process.returncode

    async def create_backup(
        self,
        cluster: Cluster,
        backup_name: str,
        backup_dir: Optional[Path] = None,
    ) -> BackupArtifact:
        """Back up a running cluster through the backup tool.

        Raises:
            SeedingError subclass matching the tool's exit code
        """
        backup_dir = Path(backup_dir or self.config.backup.backup_dir)
        exit_code = await self.run_backup_tool([
            "--from", cluster.backup_address(),
            "--backup-dir", str(backup_dir),
            "--name", backup_name,
            "--timeout", str(self.config.backup.transfer_timeout),
            "--connect-timeout", str(self.config.backup.connect_timeout),
        ])
        if exit_code != 0:
            raise error_for_exit_code(
                exit_code, f"Backup {backup_name} of cluster {cluster.cluster_id} failed"
            )
        return BackupStore(backup_dir).load(backup_name)

    async def seed_all_members(self, cluster: Cluster, artifact: BackupArtifact) -> None:
        """Restore every member from ``artifact``, start them, wait for convergence."""
        members = cluster.core_members()
        if any(member.is_running for member in members):
            raise UnsupportedSeedingError(
                f"All members of cluster {cluster.cluster_id} must be stopped before seeding them"
            )

        reference = await asyncio.to_thread(DataRepresentation.of_store, artifact.path)
        await self._install_all(artifact, members)
        # Every store now holds the artifact; the old log must not be replayed over it
        cluster.discovery.unbind(cluster.cluster_id)
        await cluster.start()

        await await_convergence(
            reference,
            members,
            self.config.convergence.timeout,
            self.config.convergence.poll_interval,
        )
        logger.info(f"Seeded {len(members)} member(s) of cluster {cluster.cluster_id} from {artifact.name}")

    async def seed_new_member(
        self,
        cluster: Cluster,
        artifact: BackupArtifact,
        new_member_id: int,
    ) -> ClusterMember:
        """Seed one new member into a running cluster.

        The cluster may have moved past the backup, so convergence is checked
        against the live state of an existing member, not the artifact.
        """
        existing = cluster.running_members()
        if not existing:
            raise MemberLifecycleError(
                f"Cluster {cluster.cluster_id} must be running to seed a new member"
            )

        new_member = cluster.add_member_with_id(new_member_id)
        try:
            database_name = new_member.config.active_database
            await install(artifact, new_member.config, database_name, force_overwrite=True)
            await cluster.start_member(new_member_id)
        except BaseException:
            await cluster.remove_member_with_id(new_member_id)
            raise

        await await_convergence(
            existing[0],
            cluster.core_members(),
            self.config.convergence.timeout,
            self.config.convergence.poll_interval,
        )
        logger.info(f"Seeded new member {new_member_id} into cluster {cluster.cluster_id}")
        return new_member

    async def seed_members(
        self,
        cluster: Cluster,
        artifact: BackupArtifact,
        member_ids: Iterable[int],
    ) -> None:
        """Seed the given members, allowing only the supported shapes.

        Supported: every member of a stopped cluster, or exactly one member not
        yet in a running cluster. Seeding a subset of a stopped topology is
        rejected until it is proven safe.
        """
        member_ids = sorted(set(member_ids))
        all_ids = [member.member_id for member in cluster.core_members()]
        running = cluster.running_members()

        if not running and member_ids == all_ids:
            await self.seed_all_members(cluster, artifact)
        elif running and len(member_ids) == 1 and member_ids[0] not in all_ids:
            await self.seed_new_member(cluster, artifact, member_ids[0])
        else:
            raise UnsupportedSeedingError(
                f"Seeding members {member_ids} of cluster {cluster.cluster_id} is unsupported: "
                "seed all members of a stopped cluster, or one new member of a running cluster"
            )

    async def _install_all(self, artifact: BackupArtifact, members: List[ClusterMember]) -> None:
        results = await asyncio.gather(
            *(
                install(artifact, member.config, member.config.active_database, force_overwrite=True)
                for member in members
            ),
            return_exceptions=True,
        )
        failures = [
            (member.member_id, result)
            for member, result in zip(members, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            for member_id, error in failures:
                logger.error(f"Restore into member {member_id} failed: {error}")
            raise failures[0][1]
