"""
Referral code synthesis and normalisation (no I/O).
"""
from __future__ import annotations

import secrets

from app.referral.config import get_code_alphabet, get_code_length


def new_code(length: int | None = None, alphabet: str | None = None) -> str:
    length = length or get_code_length()
    alphabet = alphabet or get_code_alphabet()
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_code(raw: str | None) -> str:
    """Codes are case-insensitive for users; storage is upper-case."""
    return (raw or "").strip().upper()
