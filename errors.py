class RelayError(Exception):
    """Base for errors reported to the originating connection as ``session-error``."""

    default_message = "Something went wrong."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCode(RelayError):
    default_message = "Invalid session code. Refresh the page and try again."


class SessionExists(RelayError):
    default_message = "A session with that code already exists."


class SessionNotFound(RelayError):
    default_message = "Session not found. Ask your DM for a new code."


class SessionUnavailable(RelayError):
    default_message = "Session unavailable."


class AlreadyBound(RelayError):
    default_message = "You are already in a session."


class FrameError(Exception):
    """Inbound frame problems that are dropped without telling the sender."""


class MalformedFrame(FrameError):
    pass


class UnknownMessageType(FrameError):
    pass
