"""Keypair <-> storage codec.

Secrets are stored as base58 of the 64-byte secret key. Only
`public_address` output is ever safe to log or serialise.
"""

import base58
from solders.keypair import Keypair


def encode_keypair(keypair: Keypair) -> str:
    return base58.b58encode(bytes(keypair)).decode()


def decode_keypair(secret: str) -> Keypair:
    return Keypair.from_bytes(base58.b58decode(secret))


def public_address(keypair: Keypair) -> str:
    return str(keypair.pubkey())
