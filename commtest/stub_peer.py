#!/usr/bin/env python3
"""
Stand-in for the peer application binary.

Accepts the same command line as the real peer, serves its two WebSocket
channels and answers control-plane requests the way the peer does. It has no
peer-to-peer network behind it: p2p messages are acknowledged, not delivered.

    python -m commtest.stub_peer --port=1354 --mode=peer --buyer-or-seller=seller \
        --envFile=.seller-env --use-local-address --ws-port=3001
"""
import argparse
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from commtest.models import MessageType, Role, WSMessage

logger = logging.getLogger(__name__)


def error_message(data: str, code: str) -> WSMessage:
    return WSMessage(type=MessageType.ERROR.value, data=data, error=code)


def handle_command(role: Role, message: WSMessage) -> WSMessage:
    """Reply to one message received on the commands channel"""
    if message.type == MessageType.SHOW_CURRENT_PEERS.value:
        return WSMessage(
            type=MessageType.CURRENT_PEERS.value,
            data={"role": role.value, "peers": []},
        )

    if message.type == MessageType.REPLACE_SELLERS.value:
        if role != Role.BUYER:
            return error_message(
                "replaceSellers is a buyer-only operation. Sellers cannot manage seller lists.",
                "BUYER_ONLY_OPERATION",
            )
        try:
            request = json.loads(message.data)
            sellers = list(request["sellerPublicKeys"])
        except (TypeError, ValueError, KeyError) as e:
            return error_message(f"Error parsing replaceSellers request: {e}", "PARSE_ERROR")
        return WSMessage(
            type=MessageType.SUCCESS.value,
            data=f"Successfully replaced sellers with {len(sellers)} new sellers",
        )

    return error_message(f"Unknown command type: {message.type}", "UNKNOWN_COMMAND")


def handle_p2p(message: WSMessage) -> WSMessage:
    """Reply to one message received on the p2p channel"""
    if not message.public_key:
        return error_message("No target public key specified in message", "MISSING_PUBLIC_KEY")
    return WSMessage(
        type=MessageType.SUCCESS.value,
        data=f"Successfully sent message to peer {message.public_key}",
    )


def create_app(role: Role) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Stub {role.value} peer starting")
        yield
        logger.info(f"Stub {role.value} peer stopped")

    app = FastAPI(title=f"Stub {role.value} peer", lifespan=lifespan)

    async def serve(websocket: WebSocket, handler):
        await websocket.accept()
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = WSMessage.model_validate_json(text)
                except ValidationError as e:
                    reply = error_message(f"Error reading message: {e.errors()[0]['msg']}", "PARSE_ERROR")
                else:
                    reply = handler(message)
                await websocket.send_text(reply.to_wire())
        except WebSocketDisconnect:
            logger.info(f"{role.value} client disconnected")

    @app.websocket(f"/{role.value}/commands")
    async def commands(websocket: WebSocket):
        await serve(websocket, lambda message: handle_command(role, message))

    @app.websocket(f"/{role.value}/p2p")
    async def p2p(websocket: WebSocket):
        await serve(websocket, handle_p2p)

    return app


class StubServer(uvicorn.Server):
    """Announces readiness on stdout only once the socket is bound"""

    async def startup(self, sockets=None):
        await super().startup(sockets=sockets)
        if self.started:
            print(f"WebSocket server started on :{self.config.port}", flush=True)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stub peer for the communication test harness")
    parser.add_argument("--port", type=int, default=0, help="P2P network port (accepted, unused)")
    parser.add_argument("--mode", default="peer")
    parser.add_argument("--buyer-or-seller", dest="role", choices=[r.value for r in Role], required=True)
    parser.add_argument("--envFile", dest="env_file", default="")
    parser.add_argument("--use-local-address", action="store_true")
    parser.add_argument("--list-of-sellers-source", dest="sellers_source", default="env")
    parser.add_argument("--ws-port", type=int, default=8080)
    parser.add_argument("--host", default="127.0.0.1")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )
    role = Role(args.role)
    config = uvicorn.Config(create_app(role), host=args.host, port=args.ws_port,
                            log_level="warning", lifespan="on")
    StubServer(config).run()


if __name__ == "__main__":
    main()
