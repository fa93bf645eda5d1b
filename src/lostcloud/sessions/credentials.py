"""
Credential generation: the session id and its access key.
"""

import secrets
import string

from lostcloud.sessions.models import SessionIdentity

TOKEN_LENGTH = 16
TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Return a random uppercase alphanumeric token."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def generate_identity() -> SessionIdentity:
    """Issue a new id and an independently generated key."""
    return SessionIdentity(id=generate_token(), key=generate_token())
