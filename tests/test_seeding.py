"""End-to-end seeding tests: capture from one cluster, seed another, verify."""

import pytest

from clusterseed._storage import DataRepresentation, is_store_empty
from clusterseed._storage.graph_store import GRAPH_FILE
from clusterseed._utils import find_free_port
from clusterseed.cluster import await_convergence, create_empty_nodes, create_some_data
from clusterseed.config import BackupConfig, SeedingConfig
from clusterseed.errors import (
    ConflictError,
    ConvergenceTimeoutError,
    CorruptionError,
    MemberLifecycleError,
    UnsupportedSeedingError,
)
from clusterseed.seeding import SeedingOrchestrator
from tests.utils import CLUSTER_CONFIG, CONVERGENCE_CONFIG, write_artifact


@pytest.fixture
def orchestrator(backup_dir):
    return SeedingOrchestrator(SeedingConfig(
        cluster=CLUSTER_CONFIG,
        backup=BackupConfig(backup_dir=str(backup_dir), connect_timeout=2.0, transfer_timeout=30.0),
        convergence=CONVERGENCE_CONFIG,
    ))


@pytest.mark.asyncio
async def test_seed_all_members_from_another_cluster(make_cluster, orchestrator):
    source = make_cluster("source")
    await source.start()
    source_leader = await create_some_data(source)
    expected = source_leader.representation()

    artifact = await orchestrator.create_backup(source, "seed")
    assert artifact.store_id == source_leader.identity().store_id

    target = make_cluster("target")
    await orchestrator.seed_members(target, artifact, [0, 1, 2])

    for member in target.core_members():
        assert member.is_running
        assert member.representation() == expected
        identity = member.identity()
        assert identity.is_bound_to(target.cluster_id, member.member_id)
        assert identity.store_id == artifact.store_id

    # Seeded members continue from the snapshot instead of replaying history
    log = target.discovery.log(target.cluster_id)
    assert log.base_index == artifact.log_index
    leader = await create_empty_nodes(target, 2)
    await await_convergence(leader, target.core_members(), timeout=10.0, poll_interval=0.05)
    assert leader.identity().log_index == artifact.log_index + 2


@pytest.mark.asyncio
async def test_seed_new_member_into_idle_cluster(make_cluster, orchestrator):
    cluster = make_cluster()
    await cluster.start()
    artifact = await orchestrator.create_backup(cluster, "idle")

    new_member = await orchestrator.seed_new_member(cluster, artifact, 3)

    assert new_member.is_running
    assert [member.member_id for member in cluster.running_members()] == [0, 1, 2, 3]
    assert new_member.representation() == cluster.get_member_by_id(0).representation()


@pytest.mark.asyncio
async def test_seed_new_member_into_active_cluster(make_cluster, orchestrator):
    cluster = make_cluster()
    await cluster.start()
    await create_empty_nodes(cluster, 100)
    artifact = await orchestrator.create_backup(cluster, "active")
    assert artifact.statistics["nodes"] == 100

    # The cluster moves on after the backup was taken
    leader = await create_empty_nodes(cluster, 10)

    await orchestrator.seed_members(cluster, artifact, [3])

    new_member = cluster.get_member_by_id(3)
    assert len(new_member.representation().nodes) == 110
    assert new_member.representation() == leader.representation()
    assert DataRepresentation.of_store(artifact.path) != leader.representation()


@pytest.mark.asyncio
async def test_convergence_timeout_names_stopped_peer(make_cluster):
    cluster = make_cluster()
    await cluster.start()
    leader = await create_some_data(cluster)
    await cluster.stop_member(2)

    with pytest.raises(ConvergenceTimeoutError) as exc_info:
        await await_convergence(leader, cluster.core_members(), timeout=0.5, poll_interval=0.05)

    assert exc_info.value.mismatches == {2: None}


@pytest.mark.asyncio
async def test_partial_seeding_is_rejected(make_cluster, orchestrator, backup_dir):
    artifact = write_artifact(backup_dir, "seed")
    cluster = make_cluster()

    with pytest.raises(UnsupportedSeedingError):
        await orchestrator.seed_members(cluster, artifact, [0])
    for member in cluster.core_members():
        assert is_store_empty(member.config.database_dir())

    await cluster.start()
    with pytest.raises(UnsupportedSeedingError):
        await orchestrator.seed_members(cluster, artifact, [3, 4])
    with pytest.raises(UnsupportedSeedingError):
        await orchestrator.seed_members(cluster, artifact, [1])
    with pytest.raises(UnsupportedSeedingError):
        await orchestrator.seed_all_members(cluster, artifact)


@pytest.mark.asyncio
async def test_seed_new_member_requires_running_cluster(make_cluster, orchestrator, backup_dir):
    artifact = write_artifact(backup_dir, "seed")
    cluster = make_cluster()

    with pytest.raises(MemberLifecycleError):
        await orchestrator.seed_new_member(cluster, artifact, 3)


@pytest.mark.asyncio
async def test_corrupt_artifact_aborts_before_start(make_cluster, orchestrator, backup_dir):
    artifact = write_artifact(backup_dir, "seed")
    (artifact.path / GRAPH_FILE).write_text("<graphml/>")
    cluster = make_cluster()

    with pytest.raises(CorruptionError):
        await orchestrator.seed_all_members(cluster, artifact)

    assert cluster.running_members() == []
    for member in cluster.core_members():
        assert is_store_empty(member.config.database_dir())


@pytest.mark.asyncio
async def test_backup_tool_failures_become_typed_errors(make_cluster, orchestrator, backup_dir):
    cluster = make_cluster(member_count=1)
    await cluster.start()
    await orchestrator.create_backup(cluster, "nightly")

    with pytest.raises(ConflictError):
        await orchestrator.create_backup(cluster, "nightly")

    address = f"127.0.0.1:{find_free_port('127.0.0.1')}"
    exit_code = await orchestrator.run_backup_tool([
        "--from", address, "--backup-dir", str(backup_dir), "--name", "other",
        "--connect-timeout", "1",
    ])
    assert exit_code == 3
    assert not (backup_dir / "other").exists()


@pytest.mark.asyncio
async def test_seed_all_members_restores_own_older_backup(make_cluster, orchestrator):
    cluster = make_cluster()
    await cluster.start()
    await create_some_data(cluster)
    artifact = await orchestrator.create_backup(cluster, "hist")
    expected = DataRepresentation.of_store(artifact.path)

    # Changes after the backup must not come back through the old log
    await create_empty_nodes(cluster, 5)
    await cluster.shutdown()

    await orchestrator.seed_all_members(cluster, artifact)

    for member in cluster.core_members():
        assert member.is_running
        assert member.representation() == expected
    assert cluster.discovery.log(cluster.cluster_id).base_index == artifact.log_index


@pytest.mark.asyncio
async def test_seed_all_members_of_previously_run_cluster(make_cluster, orchestrator):
    source = make_cluster("source")
    await source.start()
    expected = (await create_some_data(source)).representation()
    artifact = await orchestrator.create_backup(source, "seed")

    target = make_cluster("target")
    await target.start()
    await target.shutdown()

    await orchestrator.seed_all_members(target, artifact)

    for member in target.core_members():
        assert member.representation() == expected
        assert member.identity().store_id == artifact.store_id
    leader = await create_empty_nodes(target, 2)
    await await_convergence(leader, target.core_members(), timeout=10.0, poll_interval=0.05)


@pytest.mark.asyncio
async def test_failed_new_member_can_be_seeded_again(make_cluster, orchestrator, backup_dir):
    cluster = make_cluster()
    await cluster.start()
    await create_some_data(cluster)
    good = await orchestrator.create_backup(cluster, "good")
    bad = write_artifact(backup_dir, "bad")
    (bad.path / GRAPH_FILE).write_text("<graphml/>")

    with pytest.raises(CorruptionError):
        await orchestrator.seed_new_member(cluster, bad, 3)

    assert [member.member_id for member in cluster.core_members()] == [0, 1, 2]
    assert 3 not in cluster.discovery.state(cluster.cluster_id).topology

    new_member = await orchestrator.seed_new_member(cluster, good, 3)
    assert new_member.is_running
    assert new_member.representation() == cluster.get_member_by_id(0).representation()
