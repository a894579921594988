"""
Session codes - short, typeable identifiers for sharing a session.

Codes are 6 symbols from an alphabet without visually ambiguous characters
(no I, O, 0 or 1), so they can be read off a screen and typed on a phone.
"""

import logging
import secrets
from typing import Callable, Optional

from .errors import CodeSpaceExhausted, InvalidInput

logger = logging.getLogger(__name__)

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
DEFAULT_ATTEMPTS = 10


def generate_code(length: int = CODE_LENGTH) -> str:
    """Random session code (not checked for uniqueness)."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def normalize_session_code(raw: Optional[str], length: int = CODE_LENGTH) -> str:
    """
    Normalize user input to a canonical session code.

    Input is case-insensitive and may carry surrounding whitespace.

    Raises:
        InvalidInput: empty, wrong length, or symbols outside the alphabet
    """
    if raw is None or not str(raw).strip():
        raise InvalidInput("Session code is required")
    code = str(raw).strip().upper()
    if len(code) != length:
        raise InvalidInput(f"Session code must be {length} characters")
    bad = sorted({ch for ch in code if ch not in ALPHABET})
    if bad:
        raise InvalidInput(f"Session code contains invalid characters: {''.join(bad)}")
    return code


def allocate_code(
    try_claim: Callable[[str], bool],
    attempts: int = DEFAULT_ATTEMPTS,
    generator: Callable[[], str] = generate_code,
) -> str:
    """
    Generate a code and claim it against the authoritative store.

    Args:
        try_claim: Atomically reserves a code; returns False if already taken
        attempts: Maximum number of codes to try
        generator: Code source (injectable for tests)

    Returns:
        The claimed code

    Raises:
        CodeSpaceExhausted: every attempt collided
    """
    for attempt in range(1, attempts + 1):
        code = generator()
        if try_claim(code):
            if attempt > 1:
                logger.info(f"Session code {code} claimed after {attempt} attempts")
            return code
        logger.warning(f"Session code collision on {code} (attempt {attempt}/{attempts})")

    raise CodeSpaceExhausted(f"No free session code after {attempts} attempts")
