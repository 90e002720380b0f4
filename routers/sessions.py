from fastapi import APIRouter, HTTPException

from logging_config import get_logger
from registry import connection_registry
from schemas.sessions import HealthResponse, SessionDetailsResponse
from sessions import session_table

logger = get_logger(__name__)

sessions_router = APIRouter(tags=["sessions"])


@sessions_router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        sessions=len(session_table),
        connections=len(connection_registry),
    )


@sessions_router.get("/sessions/{code}", response_model=SessionDetailsResponse)
async def get_session_details(code: str):
    """
    Check whether a session code is live before opening the relay socket.

    Only counts are returned; participant ids stay private to the host.
    """
    summary = session_table.describe(code)
    if summary is None:
        logger.debug(f"Session details: {code!r} not found")
        raise HTTPException(status_code=404, detail="Session not found")

    return SessionDetailsResponse(
        code=summary.code,
        host_connected=summary.host_connected,
        participant_count=summary.participant_count,
    )
