import itertools
import string
import time
from typing import Any

_BASE36 = string.digits + string.ascii_lowercase
_participant_counter = itertools.count(1)


def normalize_code(value: Any) -> str:
    """Session codes compare case-insensitively; anything but a string is empty."""
    if not isinstance(value, str):
        return ""
    return value.strip().upper()


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_participant_id() -> str:
    # The counter alone guarantees uniqueness for the life of the process;
    # the timestamp keeps ids from repeating across restarts.
    millis = int(time.time() * 1000)
    return f"p-{to_base36(millis)}-{to_base36(next(_participant_counter))}"
