"""
auth/passwords.py -- One-way password hashing (bcrypt, used directly).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
password fields at 128 characters; multi-byte input beyond 72 bytes still
hashes, it just stops contributing entropy past that point.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    return hash_password("authkeep_timing_dummy", rounds)


def warm_dummy_hash(rounds: int = DEFAULT_ROUNDS) -> None:
    """Generate the dummy hash for this cost factor ahead of the first request."""
    _dummy_hash(rounds)


def burn_verify(plain: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Run a bcrypt check against a dummy hash and discard the result.

    Called when the account does not exist so an unknown email costs the same
    bcrypt work as a wrong password [C1]. The dummy hash is cached per cost
    factor; build_session_engine() warms it so no request pays for generating
    it.
    """
    verify_password(plain, _dummy_hash(rounds))
