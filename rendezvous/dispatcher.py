"""
Request dispatch for the Rendezvous signaling server.

One call per inbound frame: decode, prune expired agents, then either
touch the registry (announce, list) or pick the connection a signaling
envelope has to be pushed to. Every request yields exactly one response
for its sender; signaling requests additionally yield one forward.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .config import MAX_EXPIRY_MS
from .exceptions import MalformedMessageError, UnknownRequestTypeError
from .protocol import (
    ErrorResponse,
    RequestMessage,
    RequestType,
    ResponseMessage,
    SignalingMessage,
    decode_message,
    encode_message,
    error_response,
    receiver_of,
    response_for,
    signaling_of,
)
from .registry import AgentRegistry, Connection

logger = logging.getLogger(__name__)

TARGET_NOT_REGISTERED = "Target agent not registered on server"


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def expiry_exceeded(max_expiry_ms: int) -> str:
    return f"Maximum expiry of {max_expiry_ms} ms exceeded"


@dataclass
class Forward:
    """A signaling message to push to another agent's connection."""
    connection: Connection
    receiver: str
    message: SignalingMessage


@dataclass
class DispatchResult:
    response: ResponseMessage
    forward: Optional[Forward] = None

    @property
    def is_error(self) -> bool:
        return isinstance(self.response.response, ErrorResponse)


def handle_inbound(
    registry: AgentRegistry,
    sender: Connection,
    message: RequestMessage,
    now: int,
    max_expiry_ms: int = MAX_EXPIRY_MS,
) -> DispatchResult:
    """
    Apply one decoded request to the registry.

    The caller must hold ``registry.session()`` and have pruned with the
    same ``now``. Nothing is sent from here; the result says what to send.
    """
    request = message.request

    if request.type == RequestType.ANNOUNCE:
        agent = request.data
        if agent.expiry > now + max_expiry_ms:
            logger.warning(f"Rejected announce of {agent.id}: expiry {agent.expiry} too far ahead")
            return DispatchResult(error_response(message.id, expiry_exceeded(max_expiry_ms)))
        registry.register(agent, sender)
        return DispatchResult(ResponseMessage(id=message.id, response=response_for(request.type)))

    if request.type == RequestType.GET_ALL_AGENTS:
        agents = registry.list_active()
        return DispatchResult(
            ResponseMessage(id=message.id, response=response_for(request.type, agents))
        )

    receiver = receiver_of(request)
    entry = registry.lookup(receiver)
    if entry is None:
        logger.error(f"Target agent {receiver} not registered on server")
        return DispatchResult(error_response(message.id, TARGET_NOT_REGISTERED))

    _, target = entry
    return DispatchResult(
        response=ResponseMessage(id=message.id, response=response_for(request.type)),
        forward=Forward(connection=target, receiver=receiver, message=signaling_of(request)),
    )


@dataclass
class DispatchStats:
    total_requests: int = 0
    total_forwards: int = 0
    failed_forwards: int = 0
    total_errors: int = 0

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "total_forwards": self.total_forwards,
            "failed_forwards": self.failed_forwards,
            "total_errors": self.total_errors,
        }


class Dispatcher:
    """
    Runs inbound frames against a shared registry.

    Pruning and the registry operation happen under one registry session;
    sending happens afterwards in ``deliver`` so no lock is held across
    network I/O.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        max_expiry_ms: int = MAX_EXPIRY_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.registry = registry
        self.max_expiry_ms = max_expiry_ms
        self.clock = clock
        self.stats = DispatchStats()

    async def handle_raw(self, sender: Connection, raw: Union[str, bytes]) -> DispatchResult:
        """Decode and dispatch one frame, turning protocol errors into Error responses."""
        self.stats.total_requests += 1

        async with self.registry.session():
            now = self.clock()
            self.registry.prune(now)
            result = self._dispatch(sender, raw, now)

        if result.is_error:
            self.stats.total_errors += 1
        return result

    def _dispatch(self, sender: Connection, raw: Union[str, bytes], now: int) -> DispatchResult:
        try:
            message = decode_message(raw)
        except MalformedMessageError as e:
            logger.warning(str(e))
            return DispatchResult(error_response(e.request_id, str(e)))
        except UnknownRequestTypeError as e:
            logger.error(str(e))
            return DispatchResult(error_response(e.request_id, str(e)))

        if not isinstance(message, RequestMessage):
            text = f"Unexpected message type: {message.type}"
            logger.error(text)
            return DispatchResult(error_response(getattr(message, "id", None), text))

        logger.debug(f"Incoming request {message.request.type} (id={message.id!r})")
        return handle_inbound(self.registry, sender, message, now, self.max_expiry_ms)

    async def deliver(self, sender: Connection, result: DispatchResult) -> None:
        """Push the forward, if any, then answer the sender."""
        if result.forward:
            forward = result.forward
            try:
                await forward.connection.send_text(encode_message(forward.message))
                self.stats.total_forwards += 1
            except Exception as e:
                # Best effort: the target may be mid-close
                self.stats.failed_forwards += 1
                logger.warning(f"Failed to forward signaling to {forward.receiver}: {e}")

        await sender.send_text(encode_message(result.response))

    async def handle(self, sender: Connection, raw: Union[str, bytes]) -> DispatchResult:
        """Dispatch one frame and send everything it produced."""
        result = await self.handle_raw(sender, raw)
        await self.deliver(sender, result)
        return result
