"""Random identifiers stamped into frame metadata."""
from __future__ import annotations

import secrets

HEX_ALPHABET = "abcdef0123456789"


def random_hex(length: int = 16) -> str:
    """Random lowercase hexadecimal string, used as frame and capture ids."""
    return "".join(secrets.choice(HEX_ALPHABET) for _ in range(length))


def random_digits(length: int = 20) -> str:
    """Random decimal string, used for the ImageUniqueID tag."""
    return "".join(secrets.choice("0123456789") for _ in range(length))
