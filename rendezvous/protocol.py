"""
Wire protocol for the Rendezvous signaling server.

Every WebSocket frame (text, or UTF-8 bytes) carries exactly one JSON envelope:

    Request:   {"type": "request",   "id": ..., "request":   {"type": <tag>, "data": ...}}
    Response:  {"type": "response",  "id": ..., "response":  {"type": <tag>, "data": ...}}
    Signaling: {"type": "signaling",            "signaling": {"type": <kind>, "data": ...}}

Request ids are chosen by the caller and echoed back verbatim. Signaling
payloads (offer, answer, ICE candidate) are opaque; only the ``sender`` and
``receiver`` fields of a signaling envelope are ever looked at.
"""

import json
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .exceptions import MalformedMessageError, UnknownRequestTypeError


class MessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    SIGNALING = "signaling"


class RequestType(str, Enum):
    ANNOUNCE = "announce"
    GET_ALL_AGENTS = "getAllAgents"
    SEND_OFFER = "sendOffer"
    SEND_ANSWER = "sendAnswer"
    SEND_ICE_CANDIDATE = "sendIceCandidate"


class ResponseType(str, Enum):
    ANNOUNCE = "announce"
    GET_ALL_AGENTS = "getAllAgents"
    SEND_OFFER = "sendOffer"
    SEND_ANSWER = "sendAnswer"
    SEND_ICE_CANDIDATE = "sendIceCandidate"
    ERROR = "error"


class SignalingType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "iceCandidate"


REQUEST_TYPES = frozenset(t.value for t in RequestType)


# ============================================================================
# Agents
# ============================================================================

class Agent(BaseModel):
    """
    A registered client. ``expiry`` is a Unix timestamp in milliseconds.

    Any other announced fields are kept and listed back as they came.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    expiry: int


# ============================================================================
# Signaling envelopes
# ============================================================================

class _EnvelopeData(BaseModel):
    # Anything the peers put next to sender/receiver travels untouched
    model_config = ConfigDict(extra="allow")

    sender: str
    receiver: str


class OfferData(_EnvelopeData):
    offer: Any


class AnswerData(_EnvelopeData):
    answer: Any


class IceCandidateData(_EnvelopeData):
    ice_candidate: Any = Field(alias="iceCandidate")


class OfferSignaling(BaseModel):
    type: Literal["offer"] = "offer"
    data: OfferData


class AnswerSignaling(BaseModel):
    type: Literal["answer"] = "answer"
    data: AnswerData


class IceCandidateSignaling(BaseModel):
    type: Literal["iceCandidate"] = "iceCandidate"
    data: IceCandidateData


Signaling = Annotated[
    Union[OfferSignaling, AnswerSignaling, IceCandidateSignaling],
    Field(discriminator="type"),
]


# ============================================================================
# Requests
# ============================================================================

class AnnounceRequest(BaseModel):
    type: Literal["announce"] = "announce"
    data: Agent


class GetAllAgentsRequest(BaseModel):
    type: Literal["getAllAgents"] = "getAllAgents"
    data: Any = None


class SendOfferRequest(BaseModel):
    type: Literal["sendOffer"] = "sendOffer"
    data: OfferSignaling


class SendAnswerRequest(BaseModel):
    type: Literal["sendAnswer"] = "sendAnswer"
    data: AnswerSignaling


class SendIceCandidateRequest(BaseModel):
    type: Literal["sendIceCandidate"] = "sendIceCandidate"
    data: IceCandidateSignaling


Request = Annotated[
    Union[
        AnnounceRequest,
        GetAllAgentsRequest,
        SendOfferRequest,
        SendAnswerRequest,
        SendIceCandidateRequest,
    ],
    Field(discriminator="type"),
]

SignalingRequest = Union[SendOfferRequest, SendAnswerRequest, SendIceCandidateRequest]


# ============================================================================
# Responses
# ============================================================================

class AnnounceResponse(BaseModel):
    type: Literal["announce"] = "announce"
    data: None = None


class GetAllAgentsResponse(BaseModel):
    type: Literal["getAllAgents"] = "getAllAgents"
    data: List[Agent] = Field(default_factory=list)


class SendOfferResponse(BaseModel):
    type: Literal["sendOffer"] = "sendOffer"
    data: None = None


class SendAnswerResponse(BaseModel):
    type: Literal["sendAnswer"] = "sendAnswer"
    data: None = None


class SendIceCandidateResponse(BaseModel):
    type: Literal["sendIceCandidate"] = "sendIceCandidate"
    data: None = None


class ErrorResponse(BaseModel):
    type: Literal["error"] = "error"
    data: str


Response = Annotated[
    Union[
        AnnounceResponse,
        GetAllAgentsResponse,
        SendOfferResponse,
        SendAnswerResponse,
        SendIceCandidateResponse,
        ErrorResponse,
    ],
    Field(discriminator="type"),
]


# ============================================================================
# Envelopes
# ============================================================================

class RequestMessage(BaseModel):
    type: Literal["request"] = "request"
    id: Any
    request: Request


class ResponseMessage(BaseModel):
    type: Literal["response"] = "response"
    id: Any
    response: Response


class SignalingMessage(BaseModel):
    type: Literal["signaling"] = "signaling"
    signaling: Signaling


Message = Annotated[
    Union[RequestMessage, ResponseMessage, SignalingMessage],
    Field(discriminator="type"),
]

_message_adapter = TypeAdapter(Message)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    if location:
        return f"{location}: {first['msg']}"
    return first["msg"]


def decode_message(raw: Union[str, bytes]) -> Union[RequestMessage, ResponseMessage, SignalingMessage]:
    """
    Decode one wire envelope.

    Raises:
        MalformedMessageError: the payload is not a valid envelope
        UnknownRequestTypeError: a request envelope carries an unknown tag
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"invalid JSON ({e})")

    if not isinstance(data, dict):
        raise MalformedMessageError("expected a JSON object")

    request_id = data.get("id")

    if data.get("type") == MessageType.REQUEST.value:
        request = data.get("request")
        tag = request.get("type") if isinstance(request, dict) else None
        if isinstance(tag, str) and tag not in REQUEST_TYPES:
            raise UnknownRequestTypeError(tag, request_id)

    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessageError(_describe(e), request_id) from e


def encode_message(message: BaseModel) -> str:
    """Encode an envelope to its JSON wire form."""
    return message.model_dump_json(by_alias=True)


def error_response(request_id: Any, text: str) -> ResponseMessage:
    """Build an Error response correlated to ``request_id``."""
    return ResponseMessage(id=request_id, response=ErrorResponse(data=text))


def receiver_of(request: SignalingRequest) -> str:
    return request.data.data.receiver


def signaling_of(request: SignalingRequest) -> SignalingMessage:
    """Wrap the envelope of a send request as a push for its receiver."""
    return SignalingMessage(signaling=request.data)


def response_for(request_type: str, agents: Optional[List[Agent]] = None) -> BaseModel:
    """Success response for a request tag."""
    if request_type == RequestType.ANNOUNCE:
        return AnnounceResponse()
    if request_type == RequestType.GET_ALL_AGENTS:
        return GetAllAgentsResponse(data=agents or [])
    if request_type == RequestType.SEND_OFFER:
        return SendOfferResponse()
    if request_type == RequestType.SEND_ANSWER:
        return SendAnswerResponse()
    if request_type == RequestType.SEND_ICE_CANDIDATE:
        return SendIceCandidateResponse()
    raise UnknownRequestTypeError(request_type)
