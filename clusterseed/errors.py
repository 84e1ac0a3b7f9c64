"""Error taxonomy for seeding operations.

Every error carries the process exit code the backup tool reports for it, so
the CLI boundary and the orchestrator can translate in both directions.
"""

from typing import Any, Dict, Optional, Type


class SeedingError(Exception):
    """Base class for all clusterseed errors."""
    exit_code = 1


class TransportError(SeedingError):
    """Network or reachability failure while capturing a backup."""
    exit_code = 3


class SourceUnreachableError(TransportError):
    def __init__(self, address: str, reason: str = ""):
        self.address = address
        detail = f": {reason}" if reason else ""
        super().__init__(f"Backup source {address} is unreachable{detail}")


class ConflictError(SeedingError):
    """Naming or non-empty target conflict."""
    exit_code = 4


class DestinationConflictError(ConflictError):
    def __init__(self, path: Any):
        self.path = path
        super().__init__(f"Backup destination already exists: {path}")


class NonEmptyTargetError(ConflictError):
    def __init__(self, path: Any):
        self.path = path
        super().__init__(
            f"Database directory {path} is not empty; pass force to overwrite it"
        )


class StoreLockedError(ConflictError):
    def __init__(self, path: Any):
        self.path = path
        super().__init__(f"Store {path} is in use by another member or install")


class CorruptionError(SeedingError):
    """Artifact or snapshot fails consistency checks."""
    exit_code = 5


class InconsistentSnapshotError(CorruptionError):
    pass


class IdentityError(SeedingError):
    """Store identity metadata could not be rewritten."""
    exit_code = 6


class ConvergenceTimeoutError(SeedingError):
    """Peers did not match the reference before the deadline.

    ``mismatches`` maps member id to the last representation observed for that
    member, or None when the member was not running.
    """
    exit_code = 7

    def __init__(self, mismatches: Dict[int, Any], reference: Any, timeout: float):
        self.mismatches = mismatches
        self.reference = reference
        self.timeout = timeout
        details = ", ".join(
            f"member {member_id}: {_describe(rep)}"
            for member_id, rep in sorted(mismatches.items())
        )
        super().__init__(
            f"Members did not converge within {timeout}s "
            f"(expected {_describe(reference)}); mismatching {details}"
        )


class ConfigurationError(SeedingError):
    """Missing or invalid member configuration."""
    exit_code = 8


class UnsupportedSeedingError(ConfigurationError):
    pass


class MemberLifecycleError(SeedingError):
    exit_code = 9


class AlreadyRunningError(MemberLifecycleError):
    pass


class BindFailureError(MemberLifecycleError):
    pass


class JoinRejectedError(MemberLifecycleError):
    pass


class JoinTimeoutError(MemberLifecycleError):
    pass


# Exit code -> error class raised when a backup tool run fails with it
EXIT_CODE_ERRORS: Dict[int, Type[SeedingError]] = {
    TransportError.exit_code: TransportError,
    ConflictError.exit_code: ConflictError,
    CorruptionError.exit_code: InconsistentSnapshotError,
    ConfigurationError.exit_code: ConfigurationError,
}


def error_for_exit_code(exit_code: int, message: Optional[str] = None) -> SeedingError:
    """Build the typed error matching a non-zero backup tool exit code."""
    error_class = EXIT_CODE_ERRORS.get(exit_code, SeedingError)
    return error_class(message or f"Backup tool failed with exit code {exit_code}")


def _describe(rep: Any) -> str:
    if rep is None:
        return "not running"
    summary = getattr(rep, "summary", None)
    return summary() if callable(summary) else repr(rep)
