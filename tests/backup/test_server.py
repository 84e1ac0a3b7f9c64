"""Tests for the backup endpoint."""

import socket

import httpx
import pytest
from fastapi.testclient import TestClient

from clusterseed.backup.models import SnapshotPayload
from clusterseed.backup.server import BackupServer, create_backup_app
from clusterseed.backup.utils import compute_text_checksum
from clusterseed.errors import BindFailureError
from tests.utils import FakeSource, source_identity


@pytest.fixture
def source():
    return FakeSource(identity=source_identity(log_index=9), member_id=2)


@pytest.fixture
def client(source):
    return TestClient(create_backup_app(source))


def test_identity_endpoint(client):
    response = client.get("/backup/identity")
    assert response.status_code == 200
    data = response.json()
    assert data["store_id"] == "store-a"
    assert data["log_index"] == 9


def test_snapshot_endpoint(client):
    response = client.get("/backup/snapshot")
    assert response.status_code == 200
    snapshot = SnapshotPayload.model_validate(response.json())
    assert snapshot.identity.log_index == 9
    assert snapshot.format_version == "SF4.3.0"
    assert snapshot.checksum == compute_text_checksum(snapshot.graphml)
    assert snapshot.statistics == {"nodes": 3, "relationships": 2}


def test_health_endpoint(client):
    response = client.get("/backup/health")
    assert response.json() == {"status": "ok", "member_id": 2}


def test_uninitialized_store_is_unavailable():
    client = TestClient(create_backup_app(FakeSource(identity=None)))
    assert client.get("/backup/identity").status_code == 503
    assert client.get("/backup/snapshot").status_code == 503


def test_docs_are_disabled(client):
    assert client.get("/docs").status_code == 404


def test_bind_conflict():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        with pytest.raises(BindFailureError, match=str(port)):
            BackupServer.bind(create_backup_app(FakeSource()), "127.0.0.1", port)


@pytest.mark.asyncio
async def test_server_start_and_stop():
    server = BackupServer.bind(create_backup_app(FakeSource(identity=source_identity())), "127.0.0.1", 0)
    port = server._sock.getsockname()[1]
    await server.start(5.0)
    try:
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
            response = await client.get("/backup/health")
        assert response.status_code == 200
    finally:
        await server.stop()
    await server.stop()
