from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from codes import generate_participant_id, normalize_code
from constants import WS_CLOSE_NORMAL_CODE
from errors import AlreadyBound, InvalidCode, SessionExists, SessionNotFound
from logging_config import get_logger
from registry import Connection, HostBinding, ParticipantBinding
from schemas.messages import OutboundMessage, PlayerLeft, SessionClosed

logger = get_logger(__name__)

HOST_CLOSED_REASON = "The DM closed the session."
HOST_DISCONNECTED_REASON = "The DM disconnected."


@dataclass
class Session:
    code: str
    host: Connection
    participants: Dict[str, Connection] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionSummary:
    code: str
    host_connected: bool
    participant_count: int


class Outbox:
    """Frames and closes queued while the table is mutated, sent afterwards.

    Mutations never await, so they cannot interleave with another
    connection's handler. Delivery happens once the table is consistent.
    """

    def __init__(self):
        self.messages: List[Tuple[Connection, OutboundMessage]] = []
        self.closing: List[Connection] = []

    def send(self, connection: Connection, message: OutboundMessage) -> None:
        self.messages.append((connection, message))

    def close(self, connection: Connection) -> None:
        self.closing.append(connection)

    async def flush(self) -> None:
        messages, closing = self.messages, self.closing
        self.messages, self.closing = [], []
        for connection, message in messages:
            await connection.send(message)
        for connection in closing:
            await connection.close(WS_CLOSE_NORMAL_CODE, "Session ended")


class SessionTable:
    """Sessions by normalized code, each with one host and its participants."""

    def __init__(self, id_factory: Callable[[], str] = generate_participant_id):
        self._sessions: Dict[str, Session] = {}
        self._id_factory = id_factory

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code) -> bool:
        return normalize_code(code) in self._sessions

    def describe(self, code) -> Optional[SessionSummary]:
        session = self._sessions.get(normalize_code(code))
        if session is None:
            return None
        return SessionSummary(
            code=session.code,
            host_connected=session.host.is_open,
            participant_count=len(session.participants),
        )

    def host(self, code) -> Optional[Connection]:
        session = self._sessions.get(normalize_code(code))
        return session.host if session else None

    def participant(self, code, participant_id: str) -> Optional[Connection]:
        session = self._sessions.get(normalize_code(code))
        return session.participants.get(participant_id) if session else None

    def participants(self, code) -> List[Connection]:
        session = self._sessions.get(normalize_code(code))
        return list(session.participants.values()) if session else []

    def create(self, code, host: Connection) -> str:
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidCode()
        if isinstance(host.binding, HostBinding):
            raise AlreadyBound("You are already hosting a session.")
        if host.binding is not None:
            raise AlreadyBound("Leave your current session before hosting a new one.")
        if normalized in self._sessions:
            raise SessionExists()

        self._sessions[normalized] = Session(code=normalized, host=host)
        host.binding = HostBinding(code=normalized)
        logger.info(f"Session {normalized} created by connection {host.id} (sessions: {len(self._sessions)})")
        return normalized

    async def join(self, code, connection: Connection) -> Tuple[str, str]:
        """Add ``connection`` as a participant; returns (normalized code, participant id).

        Any binding the connection already holds is detached first.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidCode("Enter a valid session code from your DM.")

        session = self._sessions.get(normalized)
        if session is None:
            raise SessionNotFound()
        if not session.host.is_open:
            logger.info(f"Join against session {normalized} found its host gone, removing stale session")
            await self._end_session(session, HOST_DISCONNECTED_REASON).flush()
            raise SessionNotFound()
        # Rebinding would end this very session before the participant could join it
        if session.host is connection:
            raise AlreadyBound("You are already hosting this session.")

        outbox = self._detach(connection, HOST_DISCONNECTED_REASON)

        participant_id = self._id_factory()
        while self._participant_id_in_use(participant_id):
            participant_id = self._id_factory()
        session.participants[participant_id] = connection
        connection.binding = ParticipantBinding(code=normalized, participant_id=participant_id)
        logger.info(f"Participant {participant_id} joined session {normalized} (participants: {len(session.participants)})")

        await outbox.flush()
        return normalized, participant_id

    async def close(self, code, requester: Connection) -> bool:
        session = self._sessions.get(normalize_code(code))
        if session is None or session.host is not requester or not requester.is_open:
            logger.debug(f"Ignoring close of {code!r} from connection {requester.id}: not the live host")
            return False
        await self._end_session(session, HOST_CLOSED_REASON).flush()
        return True

    async def remove_participant(self, code, participant_id: str, connection: Connection) -> bool:
        outbox = self._remove_participant(normalize_code(code), participant_id, connection)
        if outbox is None:
            return False
        await outbox.flush()
        return True

    async def detach(self, connection: Connection, reason: str = HOST_DISCONNECTED_REASON) -> None:
        """Tear down whatever the connection is bound to. Safe to call repeatedly."""
        await self._detach(connection, reason).flush()

    def _detach(self, connection: Connection, reason: str) -> Outbox:
        binding = connection.binding
        outbox = Outbox()
        if isinstance(binding, HostBinding):
            session = self._sessions.get(binding.code)
            if session is not None and session.host is connection:
                outbox = self._end_session(session, reason)
        elif isinstance(binding, ParticipantBinding):
            removed = self._remove_participant(binding.code, binding.participant_id, connection)
            if removed is not None:
                outbox = removed
        connection.binding = None
        return outbox

    def _end_session(self, session: Session, reason: str) -> Outbox:
        outbox = Outbox()
        if self._sessions.get(session.code) is session:
            del self._sessions[session.code]
        if session.host.binding == HostBinding(code=session.code):
            session.host.binding = None

        for participant_id, participant in session.participants.items():
            if participant.binding == ParticipantBinding(code=session.code, participant_id=participant_id):
                participant.binding = None
            outbox.send(participant, SessionClosed(message=reason))
            outbox.close(participant)
        count = len(session.participants)
        session.participants.clear()

        logger.info(f"Session {session.code} ended ({reason}), notified {count} participants (sessions: {len(self._sessions)})")
        return outbox

    def _remove_participant(self, code: str, participant_id: str, connection: Connection) -> Optional[Outbox]:
        session = self._sessions.get(code)
        # The id may already belong to nobody, or the entry may be a stale leftover
        if session is None or session.participants.get(participant_id) is not connection:
            return None

        del session.participants[participant_id]
        if connection.binding == ParticipantBinding(code=code, participant_id=participant_id):
            connection.binding = None
        logger.info(f"Participant {participant_id} left session {code} (participants: {len(session.participants)})")

        outbox = Outbox()
        if session.host.is_open:
            outbox.send(session.host, PlayerLeft(player_id=participant_id))
        return outbox

    def _participant_id_in_use(self, participant_id: str) -> bool:
        return any(participant_id in session.participants for session in self._sessions.values())


session_table = SessionTable()
