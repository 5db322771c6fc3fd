import asyncio
import contextlib
import socket
import sys
import time
from pathlib import Path

import pytest
import pytest_asyncio
import websockets

from commtest.config import Settings
from commtest.models import Role, RoleConfig

PROJECT_ROOT = Path(__file__).resolve().parents[1]
HOST = "127.0.0.1"


def find_free_port() -> int:
    with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind((HOST, 0))
        return s.getsockname()[1]


def wait_for_port(host: str, port: int, timeout: float = 5.0) -> None:
    """Wait until a TCP port starts accepting connections or time out."""
    deadline = time.time() + timeout
    last_err = None
    while time.time() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                return
        except OSError as e:
            last_err = e
            time.sleep(0.05)
    raise TimeoutError(f"Port {host}:{port} not ready: {last_err}")


def python_command(script: str):
    """Peer command running an inline Python script; role flags land in sys.argv"""
    return [sys.executable, "-c", script]


@pytest.fixture
def role_config():
    return RoleConfig(
        role=Role.SELLER,
        p2p_port=find_free_port(),
        ws_port=find_free_port(),
        env_file=".seller-env",
        host=HOST,
    )


@pytest.fixture
def fast_settings():
    """Settings pointing at the stub peer on free ports with no fixed waits"""
    return Settings(
        PEER_COMMAND=[sys.executable, "-m", "commtest.stub_peer"],
        PEER_WORKDIR=str(PROJECT_ROOT),
        HOST=HOST,
        SELLER_P2P_PORT=find_free_port(),
        SELLER_WS_PORT=find_free_port(),
        BUYER_P2P_PORT=find_free_port(),
        BUYER_WS_PORT=find_free_port(),
        READY_TIMEOUT=15.0,
        POST_READY_DELAY=0.0,
        MESH_SETTLE_DELAY=0.0,
        MESSAGE_SETTLE_DELAY=0.0,
        CONNECT_TIMEOUT=2.0,
        RESPONSE_TIMEOUT=2.0,
        EXIT_GRACE=0.0,
        KILL_PORT_OWNERS=False,
        COLOR=False,
    )


@pytest_asyncio.fixture
async def ws_server():
    """Start throwaway WebSocket servers; yields a factory returning their URL"""
    servers = []

    async def start(handler, path: str = "/"):
        port = find_free_port()
        server = await websockets.serve(handler, HOST, port)
        servers.append(server)
        return f"ws://{HOST}:{port}{path}"

    yield start

    for server in servers:
        server.close()
        await server.wait_closed()


@pytest_asyncio.fixture
async def silent_tcp_server():
    """A TCP listener that accepts connections and never answers the handshake"""
    writers = []

    def on_connect(reader, writer):
        writers.append(writer)

    port = find_free_port()
    server = await asyncio.start_server(on_connect, HOST, port)

    yield port

    for writer in writers:
        writer.close()
    server.close()
    await server.wait_closed()
