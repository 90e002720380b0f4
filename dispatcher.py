import asyncio
from typing import Union

from errors import FrameError, RelayError, SessionUnavailable
from logging_config import get_logger
from registry import Connection, HostBinding, ParticipantBinding
from schemas.messages import (
    CloseSessionMessage,
    CreateSessionMessage,
    InboundMessage,
    JoinSessionMessage,
    PlayerJoined,
    RelayDelivery,
    RelayMessage,
    SessionCreated,
    SessionErrorNotice,
    SessionJoined,
    is_structured,
    parse_frame,
)
from sessions import SessionTable, session_table

logger = get_logger(__name__)


class MessageDispatcher:
    """Routes decoded control messages from one connection to the session table."""

    def __init__(self, sessions: SessionTable):
        self.sessions = sessions

    async def handle_frame(self, connection: Connection, raw: Union[str, bytes]) -> None:
        try:
            message = parse_frame(raw)
        except FrameError as e:
            logger.debug(f"Dropping frame from connection {connection.id}: {e}")
            return

        try:
            await self.dispatch(connection, message)
        except RelayError as e:
            logger.info(f"{type(e).__name__} for connection {connection.id}: {e.message}")
            await connection.send(SessionErrorNotice(message=e.message))

    async def dispatch(self, connection: Connection, message: InboundMessage) -> None:
        if isinstance(message, CreateSessionMessage):
            await self.create_session(connection, message)
        elif isinstance(message, JoinSessionMessage):
            await self.join_session(connection, message)
        elif isinstance(message, RelayMessage):
            if isinstance(connection.binding, HostBinding):
                await self.relay_from_host(connection, message)
            elif isinstance(connection.binding, ParticipantBinding):
                await self.relay_from_participant(connection, message)
            else:
                logger.debug(f"Ignoring relay from unbound connection {connection.id}")
        elif isinstance(message, CloseSessionMessage):
            await self.close_session(connection)
        else:
            logger.debug(f"Ignoring {type(message).__name__} from connection {connection.id}")

    async def create_session(self, connection: Connection, message: CreateSessionMessage) -> None:
        code = self.sessions.create(message.code, connection)
        await connection.send(SessionCreated(code=code))

    async def join_session(self, connection: Connection, message: JoinSessionMessage) -> None:
        # join() picks its session before its first await, so this is the host
        # the participant was added under even if the code changes hands meanwhile
        host = self.sessions.host(message.code)
        code, participant_id = await self.sessions.join(message.code, connection)
        await connection.send(SessionJoined(code=code, player_id=participant_id))
        if host is not None:
            await host.send(PlayerJoined(player_id=participant_id))

    async def relay_from_host(self, connection: Connection, message: RelayMessage) -> None:
        binding = connection.binding
        if self.sessions.host(binding.code) is not connection:
            return
        if not is_structured(message.payload):
            logger.debug(f"Dropping host relay without a structured payload in session {binding.code}")
            return

        delivery = RelayDelivery(payload=message.payload)
        if isinstance(message.player_id, str) and message.player_id:
            target = self.sessions.participant(binding.code, message.player_id)
            if target is None:
                logger.debug(f"Relay target {message.player_id} not in session {binding.code}, dropping")
                return
            await target.send(delivery)
            return

        targets = self.sessions.participants(binding.code)
        logger.debug(f"Broadcasting relay to {len(targets)} participants in session {binding.code}")
        if targets:
            await asyncio.gather(*(target.send(delivery) for target in targets))

    async def relay_from_participant(self, connection: Connection, message: RelayMessage) -> None:
        binding = connection.binding
        host = self.sessions.host(binding.code)
        if (
            host is None
            or not host.is_open
            or self.sessions.participant(binding.code, binding.participant_id) is not connection
        ):
            logger.info(f"Participant {binding.participant_id} relayed into unavailable session {binding.code}")
            await connection.send(SessionErrorNotice(message=SessionUnavailable.default_message))
            await self.sessions.detach(connection)
            await connection.close(reason="Session unavailable")
            return

        if not is_structured(message.payload):
            logger.debug(f"Dropping participant relay without a structured payload in session {binding.code}")
            return

        await host.send(RelayDelivery(payload=message.payload, player_id=binding.participant_id))

    async def close_session(self, connection: Connection) -> None:
        binding = connection.binding
        if not isinstance(binding, HostBinding):
            logger.debug(f"Ignoring close-session from non-host connection {connection.id}")
            return
        if await self.sessions.close(binding.code, connection):
            logger.info(f"Session {binding.code} closed by its host")


dispatcher = MessageDispatcher(session_table)
