from .errors import (
    SeedingError,
    TransportError,
    ConflictError,
    CorruptionError,
    IdentityError,
    ConvergenceTimeoutError,
    ConfigurationError,
)
from .config import SeedingConfig, ClusterConfig, BackupConfig, ConvergenceConfig

__version__ = "0.3.0"
__author__ = "clusterseed"
__url__ = ""

__all__ = [
    "SeedingError",
    "TransportError",
    "ConflictError",
    "CorruptionError",
    "IdentityError",
    "ConvergenceTimeoutError",
    "ConfigurationError",
    "SeedingConfig",
    "ClusterConfig",
    "BackupConfig",
    "ConvergenceConfig",
]
