"""Configuration management for clusterseed."""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any


# Store format selector -> on-disk format version
STORE_FORMATS: Dict[str, str] = {
    "standard": "SF4.3.0",
    "high_limit": "HL4.3.0",
}

IP_FAMILIES = ("ipv4", "ipv6")


@dataclass(frozen=True)
class ClusterConfig:
    """Cluster topology and member defaults."""
    member_count: int = 3
    default_database: str = "graph.db"
    store_format: str = "standard"  # standard, high_limit
    ip_family: str = "ipv4"  # ipv4, ipv6
    backup_enabled: bool = True
    join_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> 'ClusterConfig':
        """Create config from environment variables."""
        return cls(
            member_count=int(os.getenv("CLUSTER_MEMBER_COUNT", "3")),
            default_database=os.getenv("CLUSTER_DEFAULT_DATABASE", "graph.db"),
            store_format=os.getenv("CLUSTER_STORE_FORMAT", "standard"),
            ip_family=os.getenv("CLUSTER_IP_FAMILY", "ipv4"),
            backup_enabled=os.getenv("CLUSTER_BACKUP_ENABLED", "true").lower() == "true",
            join_timeout=float(os.getenv("CLUSTER_JOIN_TIMEOUT", "30.0"))
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.member_count < 0:
            raise ValueError(f"member_count must not be negative, got {self.member_count}")
        if not self.default_database:
            raise ValueError("default_database must not be empty")
        if self.store_format not in STORE_FORMATS:
            raise ValueError(f"Unknown store_format: {self.store_format}")
        if self.ip_family not in IP_FAMILIES:
            raise ValueError(f"ip_family must be one of {IP_FAMILIES}, got {self.ip_family}")
        if self.join_timeout <= 0:
            raise ValueError(f"join_timeout must be positive, got {self.join_timeout}")


@dataclass(frozen=True)
class BackupConfig:
    """Backup capture configuration."""
    backup_dir: str = "./backups"
    connect_timeout: float = 10.0
    transfer_timeout: float = 120.0

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        return cls(
            backup_dir=os.getenv("BACKUP_DIR", "./backups"),
            connect_timeout=float(os.getenv("BACKUP_CONNECT_TIMEOUT", "10.0")),
            transfer_timeout=float(os.getenv("BACKUP_TRANSFER_TIMEOUT", "120.0"))
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.connect_timeout <= 0:
            raise ValueError(f"connect_timeout must be positive, got {self.connect_timeout}")
        if self.transfer_timeout <= 0:
            raise ValueError(f"transfer_timeout must be positive, got {self.transfer_timeout}")


@dataclass(frozen=True)
class ConvergenceConfig:
    """Convergence polling configuration.

    The verifier polls on ``poll_interval`` until every peer matches or
    ``timeout`` seconds have passed since the first round.
    """
    timeout: float = 60.0
    poll_interval: float = 0.1

    @classmethod
    def from_env(cls) -> 'ConvergenceConfig':
        """Create config from environment variables."""
        return cls(
            timeout=float(os.getenv("CONVERGENCE_TIMEOUT", "60.0")),
            poll_interval=float(os.getenv("CONVERGENCE_POLL_INTERVAL", "0.1"))
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.poll_interval > self.timeout:
            raise ValueError("poll_interval must not exceed timeout")


@dataclass(frozen=True)
class SeedingConfig:
    """Main configuration aggregating all sub-configs."""
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)

    @classmethod
    def from_env(cls) -> 'SeedingConfig':
        """Create complete config from environment variables."""
        return cls(
            cluster=ClusterConfig.from_env(),
            backup=BackupConfig.from_env(),
            convergence=ConvergenceConfig.from_env()
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
