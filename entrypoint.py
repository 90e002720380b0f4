import uvicorn
from constants import HEARTBEAT_INTERVAL_SECONDS, HOST, LOG_FILE, LOG_LEVEL, PORT
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)


def server_options() -> dict:
    # The websockets protocol answers pings and closes the socket when a pong
    # is missed; the relay's liveness sweep reads that as the acknowledgement.
    return {
        "host": HOST,
        "port": PORT,
        "ws": "websockets",
        "ws_ping_interval": HEARTBEAT_INTERVAL_SECONDS,
        "ws_ping_timeout": HEARTBEAT_INTERVAL_SECONDS,
    }


def main():
    logger.info(f"Starting session relay on {HOST}:{PORT} (ping interval: {HEARTBEAT_INTERVAL_SECONDS}s)")
    uvicorn.run(app, **server_options())


if __name__ == "__main__":
    main()
