"""
Commitment codec.

digest = keccak256(abi.encodePacked(uint8 move, string secret)), the same value
Solidity's soliditySha3({uint8: move}, {string: secret}) produces. This module is
the only place the digest is computed.
"""

from __future__ import annotations

import secrets

from web3 import Web3

from elements_duel.game.models import Move

SECRET_BYTES = 16


def _validate(move: Move | int, secret: str) -> Move:
    parsed = Move.parse(move)
    if not parsed.playable:
        raise ValueError("move must be one of FIRE, WATER, PLANT")
    if not isinstance(secret, str) or not secret:
        raise ValueError("secret must be a non-empty string")
    return parsed


def commit(move: Move | int, secret: str) -> bytes:
    """Return the 32-byte commitment digest for (move, secret)."""
    parsed = _validate(move, secret)
    return bytes(Web3.solidity_keccak(["uint8", "string"], [int(parsed), secret]))


def verify_commitment(move: Move | int, secret: str, digest: bytes | str) -> bool:
    """True iff commit(move, secret) equals digest. Invalid input never verifies."""
    try:
        if isinstance(digest, str):
            digest = bytes.fromhex(digest.removeprefix("0x"))
        return commit(move, secret) == bytes(digest)
    except ValueError:
        return False


def generate_secret() -> str:
    """Random hex secret suitable for a new commitment."""
    return secrets.token_hex(SECRET_BYTES)
