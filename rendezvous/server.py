"""
Rendezvous Signaling Server

A WebSocket rendezvous point for peer-to-peer connection setup. Agents
connect, announce themselves, and exchange offers, answers and ICE
candidates through the server until they can talk to each other directly.

Architecture:
    ┌─────────────┐      ┌─────────────────┐      ┌─────────────┐
    │   Agent A   │─────▶│   Rendezvous    │◀─────│   Agent B   │
    │             │      │ (signaling only)│      │             │
    └─────────────┘      └─────────────────┘      └─────────────┘
           └──────────── direct connection ──────────────┘

The server never sees the direct connection, only the messages needed to
establish it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Config, get_config
from .dispatcher import Dispatcher, now_ms
from .registry import AgentRegistry

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStats:
    total_connections: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at


def create_app(
    config: Optional[Config] = None,
    registry: Optional[AgentRegistry] = None,
    clock: Optional[Callable[[], int]] = None,
) -> FastAPI:
    """
    Build the signaling application.

    ``clock`` returns the current time in milliseconds; tests pass their own
    to move time forward without sleeping.
    """
    config = config or get_config()
    registry = registry if registry is not None else AgentRegistry()
    dispatcher = Dispatcher(registry, max_expiry_ms=config.max_expiry_ms, clock=clock or now_ms)
    connections: Set[WebSocket] = set()
    stats = ConnectionStats()

    app = FastAPI(
        title="Rendezvous Signaling Server",
        description="WebSocket rendezvous for peer-to-peer connection setup",
        version=__version__,
    )

    # Add CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.connections = connections
    app.state.stats = stats

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "agents": len(registry),
            "connections": len(connections),
            "uptime_seconds": stats.uptime_seconds,
        }

    @app.get("/stats")
    async def get_stats():
        return {
            "uptime_seconds": stats.uptime_seconds,
            "total_connections": stats.total_connections,
            "active_connections": len(connections),
            "registered_agents": len(registry),
            "max_expiry_ms": dispatcher.max_expiry_ms,
            **dispatcher.stats.to_dict(),
        }

    @app.websocket("/")
    async def signaling_endpoint(websocket: WebSocket):
        """
        Signaling endpoint. Each frame is one request envelope and gets
        exactly one response envelope back on the same connection. Binary
        frames are decoded like text ones.
        """
        await websocket.accept()
        connections.add(websocket)
        stats.total_connections += 1

        client = websocket.client
        peer = f"{client.host}:{client.port}" if client else "unknown"
        logger.info(f"Incoming connection from {peer} ({len(connections)} connected)")

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await dispatcher.handle(websocket, raw)
        except WebSocketDisconnect:
            # Registry entries stay until they expire
            logger.info(f"Connection from {peer} closed")
        except Exception as e:
            logger.error(f"Error on connection from {peer}: {e}")
        finally:
            connections.discard(websocket)

    return app


class SignalingServer:
    """
    Runs the signaling application on uvicorn inside the current event loop.

    Usage:
        server = SignalingServer(Config(port=0))
        await server.start()
        print(server.url)
        ...
        await server.stop()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        registry: Optional[AgentRegistry] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.config = config or get_config()
        self.app = create_app(self.config, registry=registry, clock=clock)
        self.host = self.config.host
        self.port = self.config.port
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def registry(self) -> AgentRegistry:
        return self.app.state.registry

    @property
    def url(self) -> str:
        host = "127.0.0.1" if self.host in ("0.0.0.0", "") else self.host
        return f"ws://{host}:{self.port}/"

    async def start(self) -> None:
        """Start serving and wait until the socket is bound."""
        uv_config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.config.log_level.lower(),
        )
        self._server = uvicorn.Server(uv_config)
        self._task = asyncio.create_task(self._server.serve())

        while not self._server.started:
            if self._task.done():
                try:
                    self._task.result()
                except SystemExit:
                    pass
                raise RuntimeError(f"Signaling server failed to start on {self.host}:{self.port}")
            await asyncio.sleep(0.01)

        # Port 0 means the OS picked one
        sockets = self._server.servers[0].sockets
        self.port = sockets[0].getsockname()[1]
        logger.info(f"Signaling server listening at {self.url}")

    async def stop(self) -> None:
        """Close all client connections and stop serving."""
        if self._server is None:
            return

        connections = list(self.app.state.connections)
        logger.info(f"Closing {len(connections)} client connection(s)")
        for websocket in connections:
            try:
                await websocket.close(1001)
            except Exception as e:
                logger.debug(f"Error closing connection: {e}")

        self._server.should_exit = True
        if self._task:
            await self._task
        self._server = None
        self._task = None
        logger.info("Signaling server closed")

    async def __aenter__(self) -> "SignalingServer":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()


def run(config: Optional[Config] = None) -> None:
    """Serve until interrupted."""
    config = config or get_config()
    logger.info(f"Starting signaling server on {config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
