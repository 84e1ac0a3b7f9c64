"""Cluster member configuration and lifecycle."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .._storage import (
    DataRepresentation,
    GraphStore,
    LogEntry,
    Operation,
    StoreIdentity,
    StoreLock,
)
from .._utils import logger, parse_address
from ..backup.models import SnapshotPayload
from ..backup.server import BackupServer, create_backup_app
from ..backup.utils import compute_text_checksum
from ..config import STORE_FORMATS
from ..errors import (
    AlreadyRunningError,
    ConfigurationError,
    JoinRejectedError,
    MemberLifecycleError,
)
from .discovery import ReplicatedLog, SharedDiscoveryService

# Setting keys every member exposes
ACTIVE_DATABASE = "active_database"
BACKUP_ADDRESS = "backup_address"
DISCOVERY_ADDRESS = "discovery_address"
STORE_FORMAT = "store_format"
BACKUP_ENABLED = "backup_enabled"


@dataclass
class MemberConfig:
    """Identity and key-value configuration of one cluster member."""
    member_id: int
    cluster_id: str
    member_dir: Path
    settings: Dict[str, str] = field(default_factory=dict)

    def require(self, key: str) -> str:
        value = self.settings.get(key)
        if not value:
            raise ConfigurationError(f"Member {self.member_id} has no '{key}' setting")
        return value

    @property
    def active_database(self) -> str:
        return self.require(ACTIVE_DATABASE)

    @property
    def store_dir(self) -> Path:
        return Path(self.member_dir) / "data" / "databases"

    def database_dir(self, database_name: Optional[str] = None) -> Path:
        return self.store_dir / (database_name or self.active_database)

    @property
    def store_format(self) -> str:
        store_format = self.require(STORE_FORMAT)
        if store_format not in STORE_FORMATS:
            raise ConfigurationError(f"Member {self.member_id} has unknown store format {store_format}")
        return store_format

    @property
    def backup_enabled(self) -> bool:
        return self.settings.get(BACKUP_ENABLED, "true").lower() == "true"

    @property
    def backup_address(self) -> str:
        return self.require(BACKUP_ADDRESS)

    def addresses(self) -> Dict[str, str]:
        return {
            name: self.settings[key]
            for name, key in (("backup", BACKUP_ADDRESS), ("discovery", DISCOVERY_ADDRESS))
            if key in self.settings
        }

    def config_of(self) -> Dict[str, Any]:
        return {
            "active_database": self.active_database,
            "store_dir": self.store_dir,
            "database_dir": self.database_dir(),
            "addresses": self.addresses(),
        }


class ClusterMember:
    """One member: owns its store while running and applies the cluster log."""

    def __init__(
        self,
        config: MemberConfig,
        discovery: SharedDiscoveryService,
        join_timeout: float = 30.0,
    ):
        self.config = config
        self.discovery = discovery
        self.join_timeout = join_timeout
        self._store: Optional[GraphStore] = None
        self._lock: Optional[StoreLock] = None
        self._log: Optional[ReplicatedLog] = None
        self._server: Optional[BackupServer] = None
        self._apply_task: Optional[asyncio.Task] = None
        self._applied: Optional[asyncio.Condition] = None
        self.joined = asyncio.Event()

    @property
    def member_id(self) -> int:
        return self.config.member_id

    @property
    def is_running(self) -> bool:
        return self._store is not None

    def database(self) -> GraphStore:
        if self._store is None:
            raise MemberLifecycleError(f"Member {self.member_id} is not running")
        return self._store

    async def start(self) -> None:
        """Join the cluster from whatever the store directory holds.

        Raises:
            AlreadyRunningError: Member is already running
            StoreLockedError: Another install or member owns the store
            JoinRejectedError: Store identity or topology does not fit the cluster
            BindFailureError: Backup endpoint address cannot be bound
        """
        if self.is_running:
            raise AlreadyRunningError(f"Member {self.member_id} is already running")

        config = self.config
        database_dir = config.database_dir()
        lock = StoreLock(database_dir).acquire()
        joined = False
        try:
            store = GraphStore.open(database_dir)
            identity = store.identity
            if identity is not None:
                if not identity.is_bound_to(config.cluster_id, config.member_id):
                    raise JoinRejectedError(
                        f"Store {database_dir} is bound to member {identity.member_id} of "
                        f"cluster {identity.cluster_id}, not member {config.member_id} of "
                        f"cluster {config.cluster_id}"
                    )
                if identity.store_format != config.store_format:
                    raise JoinRejectedError(
                        f"Store {database_dir} uses format {identity.store_format}, "
                        f"member is configured for {config.store_format}"
                    )

            state = self.discovery.join(
                config.cluster_id, config.member_id, identity, config.addresses()
            )
            joined = True

            if store.is_empty:
                store.initialize(
                    StoreIdentity.bind(
                        store_id=state.store_id,
                        cluster_id=config.cluster_id,
                        member_id=config.member_id,
                        store_format=config.store_format,
                    )
                )

            if config.backup_enabled:
                host, port = parse_address(config.backup_address)
                server = BackupServer.bind(create_backup_app(self), host, port)
                await server.start(self.join_timeout)
                self._server = server
        except BaseException:
            if joined:
                self.discovery.leave(config.cluster_id, config.member_id)
            lock.release()
            raise

        self._store, self._lock, self._log = store, lock, state.log
        self._applied = asyncio.Condition()
        self._apply_task = asyncio.create_task(
            self._apply_loop(), name=f"apply-member-{self.member_id}"
        )
        self.joined.set()
        logger.info(
            f"Member {self.member_id} joined cluster {config.cluster_id} "
            f"at log index {store.log_index}"
        )

    async def stop(self) -> None:
        if not self.is_running:
            return

        if self._apply_task is not None:
            self._apply_task.cancel()
            await asyncio.gather(self._apply_task, return_exceptions=True)
            self._apply_task = None
        if self._server is not None:
            await self._server.stop()
            self._server = None

        try:
            self._store.flush()
        finally:
            self.discovery.leave(self.config.cluster_id, self.member_id)
            self._lock.release()
            self._store = self._lock = self._log = None
            self.joined.clear()
        logger.info(f"Member {self.member_id} stopped")

    async def _apply_loop(self) -> None:
        store = self._store
        while True:
            entries = await self._log.wait_for_entries_after(store.log_index)
            try:
                for entry in entries:
                    store.apply(entry)
                store.flush()
            except Exception as e:
                logger.error(f"Member {self.member_id} stopped applying the log: {e}")
                raise
            async with self._applied:
                self._applied.notify_all()
            logger.debug(f"Member {self.member_id} applied up to index {store.log_index}")

    async def wait_for_index(self, index: int, timeout: Optional[float] = None) -> None:
        """Wait until this member has applied the log up to ``index``."""
        store = self.database()

        async def _wait():
            async with self._applied:
                await self._applied.wait_for(lambda: store.log_index >= index)

        await asyncio.wait_for(_wait(), timeout)

    async def commit(self, operations: Iterable[Operation]) -> LogEntry:
        """Commit a transaction through this member."""
        if not self.is_running:
            raise MemberLifecycleError(f"Member {self.member_id} is not running")
        return await self._log.append(operations)

    def identity(self) -> Optional[StoreIdentity]:
        return self._store.identity if self._store is not None else None

    def representation(self) -> DataRepresentation:
        return DataRepresentation.from_graph(self.database().graph)

    def snapshot(self) -> SnapshotPayload:
        """Consistent snapshot: graph and identity are read without yielding."""
        store = self.database()
        graphml = store.to_graphml()
        identity = store.identity
        return SnapshotPayload(
            identity=identity,
            format_version=STORE_FORMATS[identity.store_format],
            graphml=graphml,
            checksum=compute_text_checksum(graphml),
            statistics=store.statistics(),
            taken_at=datetime.now(timezone.utc),
        )

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"ClusterMember({self.member_id}, {state})"
