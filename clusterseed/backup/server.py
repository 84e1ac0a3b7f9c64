"""Backup endpoint served by every running member that has backups enabled."""

import asyncio
import contextlib
import socket
from typing import Any, Dict

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from .._storage import StoreIdentity
from .._utils import logger
from ..errors import BindFailureError
from .models import SnapshotPayload

router = APIRouter(prefix="/backup", tags=["backup"])


def get_source(request: Request) -> Any:
    """Dependency returning the member this endpoint serves."""
    return request.app.state.source


@router.get("/identity", response_model=StoreIdentity)
async def get_identity(source: Any = Depends(get_source)) -> StoreIdentity:
    """Store identity of the member, fetched before a snapshot transfer."""
    identity = source.identity()
    if identity is None:
        raise HTTPException(HTTP_503_SERVICE_UNAVAILABLE, "Store is not initialized")
    return identity


@router.get("/snapshot", response_model=SnapshotPayload)
async def get_snapshot(source: Any = Depends(get_source)) -> SnapshotPayload:
    """Transactionally consistent snapshot of the member's committed state."""
    if source.identity() is None:
        raise HTTPException(HTTP_503_SERVICE_UNAVAILABLE, "Store is not initialized")
    snapshot = source.snapshot()
    logger.info(
        f"Serving snapshot of member {snapshot.identity.member_id} "
        f"at log index {snapshot.identity.log_index}"
    )
    return snapshot


@router.get("/health")
async def health(source: Any = Depends(get_source)) -> Dict[str, Any]:
    return {"status": "ok", "member_id": source.member_id}


def create_backup_app(source: Any) -> FastAPI:
    """Create the backup application for one member.

    ``source`` must provide ``member_id``, ``identity()`` and ``snapshot()``.
    """
    app = FastAPI(
        title=f"clusterseed backup endpoint (member {source.member_id})",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.source = source
    app.include_router(router)
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to its host."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class BackupServer:
    """Runs a backup application on an already bound socket inside the event loop."""

    def __init__(self, app: FastAPI, sock: socket.socket):
        self._sock = sock
        config = uvicorn.Config(
            app,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = None

    @classmethod
    def bind(cls, app: FastAPI, host: str, port: int) -> "BackupServer":
        """Bind ``host:port`` now so address conflicts surface at start.

        Raises:
            BindFailureError: The address cannot be bound
        """
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise BindFailureError(f"Cannot bind backup endpoint to {host}:{port}: {e}") from e
        return cls(app, sock)

    async def start(self, timeout: float = 10.0) -> None:
        """Start serving and wait until the server accepts connections."""
        self._task = asyncio.create_task(self._server.serve(sockets=[self._sock]))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                self._sock.close()
                raise BindFailureError(f"Backup endpoint failed to start: {error}")
            if loop.time() > deadline:
                await self.stop()
                raise BindFailureError(f"Backup endpoint did not start within {timeout}s")
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        self._sock.close()
