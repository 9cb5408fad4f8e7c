"""Credential hashing with bcrypt.

bcrypt only looks at the first 72 bytes of its input and refuses longer
values in recent releases, so credentials are truncated before hashing and
verification alike. The async helpers run the work factor off the event
loop. ``verify_against_placeholder`` spends the same work when there is no
stored hash to check against.
"""

from __future__ import annotations

import asyncio
import functools
import secrets

import bcrypt

BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12


def _encode(raw: str) -> bytes:
    return raw.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_credential(raw: str, rounds: int = DEFAULT_ROUNDS) -> str:
    return bcrypt.hashpw(_encode(raw), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_credential(raw: str, hashed: str) -> bool:
    """True when ``raw`` matches ``hashed``. Malformed hashes never match."""
    if not raw or not hashed:
        return False
    try:
        return bcrypt.checkpw(_encode(raw), hashed.encode("ascii"))
    except ValueError:
        return False


async def hash_credential_async(raw: str, rounds: int = DEFAULT_ROUNDS) -> str:
    return await asyncio.to_thread(hash_credential, raw, rounds)


async def verify_credential_async(raw: str, hashed: str) -> bool:
    return await asyncio.to_thread(verify_credential, raw, hashed)


@functools.lru_cache(maxsize=None)
def _placeholder_hash(rounds: int) -> str:
    return hash_credential(secrets.token_urlsafe(16), rounds)


async def verify_against_placeholder(raw: str, rounds: int = DEFAULT_ROUNDS) -> bool:
    """Run a full bcrypt check against a throwaway hash. Never matches."""
    hashed = await asyncio.to_thread(_placeholder_hash, rounds)
    await verify_credential_async(raw or " ", hashed)
    return False
