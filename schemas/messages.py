import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from errors import MalformedFrame, UnknownMessageType


# Inbound: what browsers send us. Field values stay loosely typed; the
# dispatcher decides what counts as a usable code, payload or player id.

class CreateSessionMessage(BaseModel):
    type: Literal["create-session"]
    code: Any = None


class JoinSessionMessage(BaseModel):
    type: Literal["join-session"]
    code: Any = None


class RelayMessage(BaseModel):
    type: Literal["relay"]
    payload: Any = None
    player_id: Any = Field(None, alias="playerId")


class CloseSessionMessage(BaseModel):
    type: Literal["close-session"]


InboundMessage = Annotated[
    Union[CreateSessionMessage, JoinSessionMessage, RelayMessage, CloseSessionMessage],
    Field(discriminator="type"),
]

INBOUND_TYPES = frozenset({"create-session", "join-session", "relay", "close-session"})

_inbound_adapter = TypeAdapter(InboundMessage)


def is_structured(payload: Any) -> bool:
    return isinstance(payload, (dict, list))


def parse_frame(raw: Union[str, bytes]) -> InboundMessage:
    """Decode one inbound frame into its message model.

    Raises MalformedFrame for anything that is not a JSON object and
    UnknownMessageType when the ``type`` tag is missing or unrecognised.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"frame is not utf-8: {e}") from e
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        raise MalformedFrame(f"frame is not JSON: {type(e).__name__}") from e

    if not isinstance(data, dict):
        raise MalformedFrame(f"frame is a {type(data).__name__}, not an object")

    tag = data.get("type")
    if not isinstance(tag, str) or tag not in INBOUND_TYPES:
        raise UnknownMessageType(f"unrecognised message type: {tag!r}")

    return _inbound_adapter.validate_python(data)


# Outbound: what we send back. ``to_frame`` drops optional fields left as None.

class OutboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_frame(self) -> dict:
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v is not None}


class SessionCreated(OutboundMessage):
    type: Literal["session-created"] = "session-created"
    code: str


class SessionJoined(OutboundMessage):
    type: Literal["session-joined"] = "session-joined"
    code: str
    player_id: str = Field(alias="playerId")


class PlayerJoined(OutboundMessage):
    type: Literal["player-joined"] = "player-joined"
    player_id: str = Field(alias="playerId")


class PlayerLeft(OutboundMessage):
    type: Literal["player-left"] = "player-left"
    player_id: str = Field(alias="playerId")


class RelayDelivery(OutboundMessage):
    type: Literal["relay"] = "relay"
    payload: Any
    player_id: Optional[str] = Field(None, alias="playerId")


class SessionClosed(OutboundMessage):
    type: Literal["session-closed"] = "session-closed"
    message: Optional[str] = None


class SessionErrorNotice(OutboundMessage):
    type: Literal["session-error"] = "session-error"
    message: str

