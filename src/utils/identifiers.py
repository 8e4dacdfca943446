# ========================
# src/utils/identifiers.py
# ========================

"""Random identifier helpers."""

import secrets


def random_string(length: int = 10) -> str:
    """
    Return a random hexadecimal string built from ``length`` random bytes.

    The result is ``2 * length`` characters long.
    """
    return secrets.token_hex(length)
