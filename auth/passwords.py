"""
auth/passwords.py -- Credential engine: one-way password storage.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
outright.

bcrypt only reads the first 72 bytes of its input and bcrypt 5.x raises on
anything longer. The API caps passwords at 20 characters, but 20 emoji are
80 UTF-8 bytes. Every password is therefore reduced to base64(SHA-256) (44
ASCII bytes, no NUL) before it reaches bcrypt, on both the hash and the
verify path.

The cost factor comes from Settings.bcrypt_rounds (default 12). bcrypt is CPU
bound, so the async wrappers push it onto a worker thread and the event loop
keeps serving other requests while a hash is computed.

Timing equalization: login must cost the same whether or not the account
exists. check_password_equalized() runs bcrypt against a dummy hash when the
stored hash is missing, so "unknown email" and "wrong password" are
indistinguishable by response time as well as by error kind.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging

import bcrypt

logger = logging.getLogger("authcore.auth.passwords")

_DEFAULT_ROUNDS = 12


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str, rounds: int = _DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    if not plain:
        raise ValueError("password must be non-empty")
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str | None, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises: a missing password, a missing hash (federated-only account)
    or a malformed hash all yield False.
    """
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Computed once at import so the first unknown-email login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("authcore_timing_dummy")


def check_password_equalized(plain: str | None, hashed: str | None) -> bool:
    """verify_password(), but always pays the bcrypt cost."""
    if not hashed:
        verify_password(plain or "x", _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


async def hash_password_async(plain: str, rounds: int = _DEFAULT_ROUNDS) -> str:
    return await asyncio.to_thread(hash_password, plain, rounds)


async def verify_password_async(plain: str | None, hashed: str | None) -> bool:
    return await asyncio.to_thread(check_password_equalized, plain, hashed)
