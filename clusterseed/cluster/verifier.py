"""Convergence verification by polling members against a reference.

Replicated state converges eventually, with no bound on when. Checking once
after a fixed delay is flaky, so members are polled until they all match in
the same round or the deadline passes.
"""

from typing import Dict, Iterable, List, Optional, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_fixed

from .._storage import DataRepresentation
from .._utils import logger
from ..config import ConvergenceConfig
from ..errors import ConvergenceTimeoutError
from .member import ClusterMember

Reference = Union[DataRepresentation, ClusterMember]


class _NotConverged(Exception):
    def __init__(
        self,
        mismatches: Dict[int, Optional[DataRepresentation]],
        reference: Optional[DataRepresentation],
    ):
        self.mismatches = mismatches
        self.reference = reference
        super().__init__(f"{len(mismatches)} member(s) do not match yet")


def observe(member: ClusterMember) -> Optional[DataRepresentation]:
    """Current representation of a member, None when it is not running."""
    return member.representation() if member.is_running else None


def _check_round(reference: Reference, peers: List[ClusterMember]) -> None:
    if isinstance(reference, DataRepresentation):
        expected = reference
    else:
        expected = observe(reference)

    mismatches = {}
    for peer in peers:
        current = observe(peer)
        if expected is None or current != expected:
            mismatches[peer.member_id] = current

    if mismatches:
        logger.debug(f"Convergence round: members {sorted(mismatches)} differ from reference")
        raise _NotConverged(mismatches, expected)


async def await_convergence(
    reference: Reference,
    peers: Iterable[ClusterMember],
    timeout: float = 60.0,
    poll_interval: float = 0.1,
) -> None:
    """Wait until every peer's data equals the reference in one observation round.

    Args:
        reference: Expected data, or a live member re-sampled every round
        peers: Members that must all match
        timeout: Seconds before giving up
        poll_interval: Seconds between rounds

    Raises:
        ConvergenceTimeoutError: Deadline passed; carries the last mismatching
            members and what they looked like
    """
    peers = list(peers)
    retrying = AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(poll_interval),
        retry=retry_if_exception_type(_NotConverged),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                _check_round(reference, peers)
    except _NotConverged as e:
        logger.warning(f"Members {sorted(e.mismatches)} did not converge within {timeout}s")
        raise ConvergenceTimeoutError(e.mismatches, e.reference, timeout) from None

    logger.info(f"Members {[peer.member_id for peer in peers]} converged")


async def data_matches_eventually(
    reference: Reference,
    members: Iterable[ClusterMember],
    config: Optional[ConvergenceConfig] = None,
) -> None:
    config = config or ConvergenceConfig()
    await await_convergence(reference, members, config.timeout, config.poll_interval)
