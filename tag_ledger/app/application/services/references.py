from __future__ import annotations

import secrets
import string


_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


def generate_reference(length: int = 16) -> str:
    """Random user-facing transaction reference."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))
