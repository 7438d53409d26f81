"""
Reference code and secret generation.

Both values are server-side only. The code is printed in the payment
message the payer pastes into MMG; the secret never leaves the server.
"""

import secrets

from stashway.models.payment import (
    REFERENCE_CODE_ALPHABET,
    REFERENCE_CODE_LENGTH,
    REFERENCE_SECRET_ALPHABET,
)


REFERENCE_SECRET_LENGTH = 32


def generate_reference_code(length: int = REFERENCE_CODE_LENGTH) -> str:
    """24 characters from the 32-symbol alphabet without I, O, 0, 1."""
    return "".join(secrets.choice(REFERENCE_CODE_ALPHABET) for _ in range(length))


def generate_reference_secret(length: int = REFERENCE_SECRET_LENGTH) -> str:
    """Cryptographically random alphanumeric secret."""
    if length < REFERENCE_SECRET_LENGTH:
        raise ValueError(f"Reference secret must be at least {REFERENCE_SECRET_LENGTH} characters")
    return "".join(secrets.choice(REFERENCE_SECRET_ALPHABET) for _ in range(length))
