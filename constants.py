import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


def _positive_float_env(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, ""))
    except ValueError:
        return default
    return value if value > 0 else default


HOST = os.getenv("HOST", "0.0.0.0")
PORT = _int_env("PORT", 3001)
SOCKET_PATH = os.getenv("SOCKET_PATH", "/ws")

# Protocol ping period and pong timeout, also the liveness sweep period
HEARTBEAT_INTERVAL_SECONDS = _positive_float_env("HEARTBEAT_INTERVAL_SECONDS", 30.0)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

WS_CLOSE_NORMAL_CODE = 1000
WS_CLOSE_TIMEOUT_CODE = 4000
