import asyncio
import logging
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from commtest.errors import (
    ConnectError,
    ConnectTimeoutError,
    ResponseTimeoutError,
    SessionStateError,
    TransportError,
)
from commtest.log import success
from commtest.models import Response, SessionState, WSMessage

logger = logging.getLogger(__name__)

TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError)


class SocketSession:
    """
    One WebSocket connection to a peer endpoint.

    States: connecting -> open -> closed, with failed reachable from
    connecting or open on a transport error. closed and failed are terminal.
    A reply is the first message received after a request, so at most one
    request may be outstanding at a time.
    """

    def __init__(self,
                 url: str,
                 connect_timeout: float = 10.0,
                 response_timeout: float = 10.0):
        self.url = url
        self.connect_timeout = connect_timeout
        self.response_timeout = response_timeout
        self.state = SessionState.CONNECTING
        self.websocket = None
        self._in_flight = False

    @classmethod
    async def open(cls, url: str, connect_timeout: float = 10.0,
                   response_timeout: float = 10.0) -> "SocketSession":
        session = cls(url, connect_timeout=connect_timeout, response_timeout=response_timeout)
        await session.connect()
        return session

    async def connect(self):
        if self.state != SessionState.CONNECTING or self.websocket is not None:
            raise SessionStateError(f"Session to {self.url} is {self.state.value}, cannot connect again")
        try:
            self.websocket = await websockets.connect(self.url, open_timeout=self.connect_timeout)
        except TIMEOUT_ERRORS as e:
            self.state = SessionState.FAILED
            logger.error(f"Connection timeout to {self.url}")
            raise ConnectTimeoutError(
                f"Connection timeout to {self.url} after {self.connect_timeout:.1f}s") from e
        except (OSError, InvalidHandshake, InvalidURI) as e:
            self.state = SessionState.FAILED
            logger.error(f"Failed to connect to {self.url}: {e}")
            raise ConnectError(f"Failed to connect to {self.url}: {e}") from e

        self.state = SessionState.OPEN
        success(logger, f"Connected to {self.url}")

    async def request(self, message: WSMessage, timeout: Optional[float] = None,
                      description: Optional[str] = None) -> Response:
        """Send `message` and return the first message that arrives afterwards"""
        description = description or message.type
        if self.state != SessionState.OPEN:
            raise SessionStateError(f"Cannot send {description}: session to {self.url} is {self.state.value}")
        if self._in_flight:
            raise SessionStateError(f"Cannot send {description}: a request to {self.url} is already awaiting its reply")

        timeout = self.response_timeout if timeout is None else timeout
        self._in_flight = True
        try:
            logger.info(f"Sending {description}...")
            try:
                await self.websocket.send(message.to_wire())
            except (ConnectionClosed, OSError) as e:
                self.state = SessionState.FAILED
                raise TransportError(f"Sending {description} to {self.url} failed: {e}") from e

            try:
                raw = await asyncio.wait_for(self.websocket.recv(), timeout)
            except TIMEOUT_ERRORS as e:
                raise ResponseTimeoutError(
                    f"Timeout waiting for response from {description} after {timeout:.1f}s") from e
            except (ConnectionClosed, OSError) as e:
                self.state = SessionState.FAILED
                raise TransportError(f"Connection to {self.url} lost awaiting {description}: {e}") from e
        finally:
            self._in_flight = False

        response = Response.from_raw(raw)
        success(logger, f"Response from {description}: {response.raw}")
        return response

    async def close(self):
        """Release the connection; a failed session stays failed"""
        if self.websocket is not None:
            websocket, self.websocket = self.websocket, None
            await websocket.close()
        if self.state != SessionState.FAILED:
            self.state = SessionState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    async def __aenter__(self):
        if self.state == SessionState.CONNECTING and self.websocket is None:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False
