"""Tests for convergence verification."""

import asyncio

import pytest

from clusterseed._storage import DataRepresentation
from clusterseed.cluster.verifier import await_convergence, data_matches_eventually, observe
from clusterseed.config import ConvergenceConfig
from clusterseed.errors import ConvergenceTimeoutError
from tests.utils import build_graph

EXPECTED = DataRepresentation.from_graph(build_graph())
EMPTY = DataRepresentation()


class FakeMember:
    """Stands in for a ClusterMember: only what the verifier observes."""

    def __init__(self, member_id, rep=None, running=True):
        self.member_id = member_id
        self.rep = rep if rep is not None else EMPTY
        self.is_running = running

    def representation(self):
        return self.rep


async def _set_later(member, delay, **attrs):
    await asyncio.sleep(delay)
    for name, value in attrs.items():
        setattr(member, name, value)


def test_observe_stopped_member():
    assert observe(FakeMember(0, EXPECTED, running=False)) is None
    assert observe(FakeMember(0, EXPECTED)) == EXPECTED


@pytest.mark.asyncio
async def test_already_converged():
    peers = [FakeMember(i, EXPECTED) for i in range(3)]
    await await_convergence(EXPECTED, peers, timeout=1.0, poll_interval=0.01)


@pytest.mark.asyncio
async def test_converges_once_every_peer_matches():
    peers = [FakeMember(0, EXPECTED), FakeMember(1), FakeMember(2, running=False)]
    updates = asyncio.gather(
        _set_later(peers[1], 0.05, rep=EXPECTED),
        _set_later(peers[2], 0.1, rep=EXPECTED, is_running=True),
    )
    await await_convergence(EXPECTED, peers, timeout=5.0, poll_interval=0.01)
    await updates


@pytest.mark.asyncio
async def test_timeout_reports_mismatches():
    peers = [FakeMember(0, EXPECTED), FakeMember(1), FakeMember(2, running=False)]

    with pytest.raises(ConvergenceTimeoutError) as exc_info:
        await await_convergence(EXPECTED, peers, timeout=0.2, poll_interval=0.05)

    error = exc_info.value
    assert error.exit_code == 7
    assert error.mismatches == {1: EMPTY, 2: None}
    assert error.reference == EXPECTED
    assert "member 2: not running" in str(error)


@pytest.mark.asyncio
async def test_live_reference_is_resampled():
    reference = FakeMember(0, EMPTY)
    peer = FakeMember(1, EXPECTED)
    update = asyncio.create_task(_set_later(reference, 0.05, rep=EXPECTED))

    await await_convergence(reference, [reference, peer], timeout=5.0, poll_interval=0.01)
    await update


@pytest.mark.asyncio
async def test_stopped_reference_never_converges():
    reference = FakeMember(0, EXPECTED, running=False)
    with pytest.raises(ConvergenceTimeoutError):
        await await_convergence(reference, [FakeMember(1, EXPECTED)], timeout=0.1, poll_interval=0.02)


@pytest.mark.asyncio
async def test_data_matches_eventually_uses_config():
    config = ConvergenceConfig(timeout=0.1, poll_interval=0.02)
    with pytest.raises(ConvergenceTimeoutError) as exc_info:
        await data_matches_eventually(EXPECTED, [FakeMember(0)], config)
    assert exc_info.value.timeout == 0.1
