"""
Rendezvous - signaling relay for peer-to-peer connection setup

Agents announce themselves to the server and exchange offers, answers and
ICE candidates addressed by agent id until they can connect directly.

Example:
    >>> from rendezvous import SignalingServer, SignalingClient, make_agent
    >>> server = SignalingServer()
    >>> await server.start()
    >>> async with SignalingClient(server.url) as client:
    ...     await client.announce(make_agent("alice"))
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .registry import AgentRegistry
from .dispatcher import Dispatcher, handle_inbound
from .protocol import Agent, decode_message, encode_message
from .server import SignalingServer, create_app
from .client import SignalingClient, make_agent

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "AgentRegistry",
    "Dispatcher",
    "handle_inbound",
    "Agent",
    "decode_message",
    "encode_message",
    "SignalingServer",
    "create_app",
    "SignalingClient",
    "make_agent",
]
