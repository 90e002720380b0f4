import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from constants import WS_CLOSE_NORMAL_CODE
from logging_config import get_logger
from schemas.messages import OutboundMessage
from transport import Transport

logger = get_logger(__name__)


@dataclass(frozen=True)
class HostBinding:
    code: str


@dataclass(frozen=True)
class ParticipantBinding:
    code: str
    participant_id: str


# None means the connection has not joined or created anything yet
RoleBinding = Optional[Union[HostBinding, ParticipantBinding]]


class Connection:
    """One live peer channel plus the relay's bookkeeping for it."""

    def __init__(self, connection_id: str, transport: Transport):
        self.id = connection_id
        self.transport = transport
        self.alive = True
        self.binding: RoleBinding = None

    def __repr__(self) -> str:
        return f"<Connection {self.id} binding={self.binding!r}>"

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    async def send(self, message: OutboundMessage) -> bool:
        """Best-effort send; a peer that has gone away is not an error."""
        if not self.is_open:
            logger.debug(f"Skipping {message.to_frame().get('type')} for closed connection {self.id}")
            return False
        try:
            await self.transport.send_json(message.to_frame())
            return True
        except Exception as e:
            logger.warning(f"Failed to send to connection {self.id}: {e}")
            return False

    async def probe(self) -> bool:
        """True when the transport reports the peer as acknowledged."""
        if not self.is_open:
            return False
        try:
            return bool(await self.transport.probe())
        except Exception as e:
            logger.warning(f"Failed to probe connection {self.id}: {e}")
            return False

    async def close(self, code: int = WS_CLOSE_NORMAL_CODE, reason: str = "") -> None:
        if not self.is_open:
            return
        try:
            await self.transport.close(code, reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.id}: {e}")


class ConnectionRegistry:
    """Every open connection, keyed by a server-assigned id."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: Connection) -> bool:
        return self._connections.get(connection.id) is connection

    def register(self, transport: Transport) -> Connection:
        connection = Connection(uuid.uuid4().hex, transport)
        self._connections[connection.id] = connection
        logger.debug(f"Registered connection {connection.id} (open connections: {len(self._connections)})")
        return connection

    def unregister(self, connection: Connection) -> bool:
        if self._connections.get(connection.id) is not connection:
            return False
        del self._connections[connection.id]
        logger.debug(f"Unregistered connection {connection.id} (open connections: {len(self._connections)})")
        return True

    def mark_alive(self, connection: Connection) -> None:
        connection.alive = True

    def snapshot(self) -> List[Connection]:
        # A copy, so teardown during iteration cannot change what is iterated
        return list(self._connections.values())


connection_registry = ConnectionRegistry()
