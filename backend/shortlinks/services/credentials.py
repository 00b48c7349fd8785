"""One-way password credentials for protected links (bcrypt)."""

import base64
import hashlib
from typing import Protocol

import bcrypt


class CredentialHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, hashed: str) -> bool: ...


def _prehash(plaintext: str) -> bytes:
    # bcrypt refuses input over 72 bytes; a SHA-256 digest is 44 base64 bytes.
    return base64.b64encode(hashlib.sha256(plaintext.encode()).digest())


class BcryptHasher:
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        return bcrypt.hashpw(_prehash(plaintext), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify(self, plaintext: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(_prehash(plaintext), hashed.encode())
        except ValueError:
            # Malformed stored hash
            return False
