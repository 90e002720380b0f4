from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    sessions: int
    connections: int


class SessionDetailsResponse(BaseModel):
    code: str
    host_connected: bool
    participant_count: int
