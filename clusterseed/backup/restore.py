"""Install a backup artifact into a member's database directory."""

import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from .._storage import StoreIdentity, StoreLock, is_store_empty, read_identity, write_identity
from .._storage.graph_store import DATA_FILES
from .._utils import logger
from ..errors import (
    ConfigurationError,
    CorruptionError,
    IdentityError,
    NonEmptyTargetError,
)
from .models import BackupArtifact
from .store import BackupStore

if TYPE_CHECKING:
    from ..cluster.member import MemberConfig


class IdentityRewriter:
    """Re-derives the identity region of a restored store for its new owner.

    Data lineage (store id, log index) comes from the artifact; cluster
    binding, member id and binding token come from the target member, so a
    restored store never presents itself as the member it was copied from.
    """

    def __init__(self, member_config: "MemberConfig"):
        self.member_config = member_config

    def derive(self, artifact: BackupArtifact) -> StoreIdentity:
        return StoreIdentity.bind(
            store_id=artifact.store_id,
            cluster_id=self.member_config.cluster_id,
            member_id=self.member_config.member_id,
            store_format=self.member_config.store_format,
            log_index=artifact.log_index,
        )

    def rewrite(self, database_dir: Path, artifact: BackupArtifact) -> StoreIdentity:
        identity = self.derive(artifact)
        try:
            write_identity(database_dir, identity)
            written = read_identity(database_dir)
        except (OSError, CorruptionError) as e:
            raise IdentityError(f"Could not write store identity in {database_dir}: {e}") from e
        if written != identity:
            raise IdentityError(f"Store identity in {database_dir} did not persist as written")
        return identity


class RestoreDatabaseCommand:
    """Restore a backup into one member's database, replacing it atomically."""

    def __init__(
        self,
        backup_dir: Path,
        member_config: "MemberConfig",
        database_name: str,
        force: bool = False,
    ):
        """Initialize restore command.

        Args:
            backup_dir: Directory of the backup artifact to install
            member_config: Configuration of the target member
            database_name: Database to install into
            force: Overwrite a populated database directory
        """
        self.backup_dir = Path(backup_dir)
        self.member_config = member_config
        self.database_name = database_name
        self.force = force

    async def execute(self) -> None:
        await asyncio.to_thread(self._execute)

    def _execute(self) -> None:
        if not self.database_name:
            raise ConfigurationError(
                f"No database name given for member {self.member_config.member_id}"
            )
        if not self.member_config.cluster_id:
            raise ConfigurationError(f"Member {self.member_config.member_id} has no cluster id")

        try:
            artifact = BackupStore.load_path(self.backup_dir)
        except FileNotFoundError as e:
            raise ConfigurationError(str(e)) from e
        BackupStore.verify(artifact)

        store_format = self.member_config.store_format
        if artifact.store_format != store_format:
            raise ConfigurationError(
                f"Backup {artifact.name} has store format {artifact.store_format}, "
                f"member {self.member_config.member_id} uses {store_format}"
            )

        database_dir = self.member_config.database_dir(self.database_name)
        logger.info(
            f"Restoring backup {artifact.name} into member {self.member_config.member_id} "
            f"database {self.database_name}"
        )

        with StoreLock(database_dir):
            if not is_store_empty(database_dir) and not self.force:
                raise NonEmptyTargetError(database_dir)

            staging = database_dir.parent / f".{database_dir.name}.restore-{uuid.uuid4().hex[:8]}"
            try:
                staging.mkdir(parents=True)
                for data_file in DATA_FILES:
                    shutil.copy2(artifact.path / data_file, staging / data_file)
                identity = IdentityRewriter(self.member_config).rewrite(staging, artifact)
                self._swap(staging, database_dir)
            finally:
                if staging.exists():
                    shutil.rmtree(staging, ignore_errors=True)

        logger.info(
            f"Restore complete: member {identity.member_id} holds store {identity.store_id} "
            f"at log index {identity.log_index}"
        )

    @staticmethod
    def _swap(staging: Path, database_dir: Path) -> None:
        replaced = None
        if database_dir.exists():
            replaced = database_dir.parent / f".{database_dir.name}.replaced-{uuid.uuid4().hex[:8]}"
            os.rename(database_dir, replaced)
        try:
            os.rename(staging, database_dir)
        except BaseException:
            if replaced is not None:
                os.rename(replaced, database_dir)
            raise
        if replaced is not None:
            shutil.rmtree(replaced, ignore_errors=True)


async def install(
    artifact: BackupArtifact,
    member_config: "MemberConfig",
    database_name: str,
    force_overwrite: bool = False,
) -> None:
    """Install ``artifact`` into ``member_config``'s ``database_name`` database."""
    await RestoreDatabaseCommand(artifact.path, member_config, database_name, force_overwrite).execute()
