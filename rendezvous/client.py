"""
Client for the Rendezvous signaling server.

Wraps one WebSocket connection: requests are sent with increasing ids and
matched to their responses by id, whatever order they come back in.
Signaling messages pushed by other agents land on ``signals``.

Example:
    >>> async with SignalingClient("ws://localhost:8080/") as client:
    ...     await client.announce(make_agent("alice"))
    ...     await client.send_offer("bob", {"type": "offer", "sdp": sdp})
    ...     signaling = await client.signals.get()
"""

import asyncio
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .exceptions import (
    ConnectionClosedError,
    RendezvousError,
    RequestTimeoutError,
    SignalingError,
)
from .protocol import (
    Agent,
    AnnounceRequest,
    AnswerData,
    AnswerSignaling,
    ErrorResponse,
    GetAllAgentsRequest,
    IceCandidateData,
    IceCandidateSignaling,
    OfferData,
    OfferSignaling,
    RequestMessage,
    ResponseMessage,
    SendAnswerRequest,
    SendIceCandidateRequest,
    SendOfferRequest,
    SignalingMessage,
    decode_message,
    encode_message,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60 * 1000


def make_agent(agent_id: str, name: str = "", ttl_ms: int = DEFAULT_TTL_MS) -> Agent:
    """Build an Agent that expires ``ttl_ms`` from now."""
    return Agent(id=agent_id, name=name, expiry=int(time.time() * 1000) + ttl_ms)


class SignalingClient:
    """
    Async client for one agent's connection to the signaling server.

    Args:
        url: WebSocket URL of the server (ws://host:port/)
        request_timeout: Seconds to wait for each response
        on_signal: Optional callback for each pushed signaling envelope
    """

    def __init__(
        self,
        url: str,
        request_timeout: float = 10.0,
        on_signal: Optional[Callable[[Any], None]] = None,
    ):
        self.url = url
        self.request_timeout = request_timeout
        self.on_signal = on_signal
        self.agent: Optional[Agent] = None
        self.signals: asyncio.Queue = asyncio.Queue()

        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count()

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self.ws.closed

    async def connect(self, timeout: float = 10.0) -> None:
        """Open the WebSocket connection."""
        self._session = aiohttp.ClientSession()
        try:
            self.ws = await asyncio.wait_for(self._session.ws_connect(self.url), timeout=timeout)
        except Exception as e:
            logger.error(f"Failed to connect to signaling server {self.url}: {e}")
            await self._session.close()
            self._session = None
            raise

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info(f"Connected to signaling server: {self.url}")

    async def close(self) -> None:
        """Close the connection and fail any request still waiting."""
        if self.ws and not self.ws.closed:
            await self.ws.close()

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._session:
            await self._session.close()
            self._session = None

        self._fail_pending(ConnectionClosedError("Client closed"))

    async def wait_closed(self) -> None:
        """Wait until the server side ends the connection."""
        if self._receive_task:
            await asyncio.shield(self._receive_task)

    async def __aenter__(self) -> "SignalingClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ========================================================================
    # Requests
    # ========================================================================

    async def announce(self, agent: Agent) -> None:
        """Register (or refresh) ``agent`` on this connection."""
        await self.request(AnnounceRequest(data=agent))
        self.agent = agent

    async def get_all_agents(self) -> List[Agent]:
        response = await self.request(GetAllAgentsRequest())
        return response.data

    async def send_offer(self, receiver: str, offer: Any, sender: Optional[str] = None) -> None:
        data = OfferData(sender=self._sender(sender), receiver=receiver, offer=offer)
        await self.request(SendOfferRequest(data=OfferSignaling(data=data)))

    async def send_answer(self, receiver: str, answer: Any, sender: Optional[str] = None) -> None:
        data = AnswerData(sender=self._sender(sender), receiver=receiver, answer=answer)
        await self.request(SendAnswerRequest(data=AnswerSignaling(data=data)))

    async def send_ice_candidate(self, receiver: str, candidate: Any, sender: Optional[str] = None) -> None:
        data = IceCandidateData(sender=self._sender(sender), receiver=receiver, **{"iceCandidate": candidate})
        await self.request(SendIceCandidateRequest(data=IceCandidateSignaling(data=data)))

    async def request(self, request) -> Any:
        """
        Send one request and wait for its response.

        Raises:
            SignalingError: the server answered with an Error response
            RequestTimeoutError: no response within ``request_timeout``
            ConnectionClosedError: the connection is (or became) closed
        """
        if not self.connected:
            raise ConnectionClosedError("Not connected to signaling server")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self.ws.send_str(encode_message(RequestMessage(id=request_id, request=request)))
            response = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"No response to request {request_id} within {self.request_timeout}s"
            )
        finally:
            self._pending.pop(request_id, None)

        if isinstance(response, ErrorResponse):
            raise SignalingError(response.data, request_id)
        return response

    def _sender(self, sender: Optional[str]) -> str:
        if sender:
            return sender
        if self.agent is None:
            raise RendezvousError("Announce an agent before sending signaling messages")
        return self.agent.id

    # ========================================================================
    # Receiving
    # ========================================================================

    async def _receive_loop(self) -> None:
        try:
            async for msg in self.ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Signaling connection error: {self.ws.exception()}")
                    break
        finally:
            self._fail_pending(ConnectionClosedError("Connection to signaling server closed"))

    def _handle_text(self, data: str) -> None:
        try:
            message = decode_message(data)
        except RendezvousError as e:
            logger.warning(f"Ignoring undecodable message from server: {e}")
            return

        if isinstance(message, ResponseMessage):
            future = self._pending.pop(message.id, None)
            if future is None or future.done():
                logger.warning(f"Response for unknown request {message.id!r}")
                return
            future.set_result(message.response)

        elif isinstance(message, SignalingMessage):
            self.signals.put_nowait(message.signaling)
            if self.on_signal:
                self.on_signal(message.signaling)

        else:
            logger.warning(f"Unexpected {message.type} message from server")

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
