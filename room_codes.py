import random
import re
from typing import Optional

from constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from errors import InvalidRoomCode, MissingRoomCode

ROOM_CODE_PATTERN = re.compile(rf"^[A-Z0-9]{{{ROOM_CODE_LENGTH}}}$")

_random = random.SystemRandom()


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(_random.choices(ROOM_CODE_ALPHABET, k=length))


def normalize_room_code(raw: Optional[str]) -> str:
    """Canonicalize user input to an uppercase room code.

    Raises MissingRoomCode for empty input and InvalidRoomCode when the result
    is not six uppercase alphanumerics.
    """
    code = (raw or "").strip().upper()
    if not code:
        raise MissingRoomCode()
    if not ROOM_CODE_PATTERN.match(code):
        raise InvalidRoomCode()
    return code
