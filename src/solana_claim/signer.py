"""
Treasury signing capability.

The secret key is loaded on demand through a ``SecretProvider`` and wrapped
in a ``Keypair``. Callers hold the keypair for the duration of one request
and drop it; nothing here caches key material.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Protocol

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.exceptions import InvalidSignature

from .addresses import decode_address, encode_address
from .errors import ConfigError


class Signer(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign(self, message: bytes) -> bytes: ...


class Keypair:
    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._key = private_key
        raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._public = encode_address(raw)

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != 32:
            raise ValueError(f"Seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_secret_key(cls, secret: bytes) -> "Keypair":
        """64-byte Solana secret key: seed || public key."""
        if len(secret) == 32:
            return cls.from_seed(secret)
        if len(secret) != 64:
            raise ValueError(f"Secret key must be 64 bytes, got {len(secret)}")
        keypair = cls.from_seed(secret[:32])
        if decode_address(keypair.public_key) != secret[32:]:
            raise ValueError("Secret key public half does not match its seed")
        return keypair

    @classmethod
    def from_json(cls, text: str) -> "Keypair":
        """JSON array of byte values, the solana-keygen file format."""
        try:
            values: List[int] = json.loads(text)
            secret = bytes(values)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Secret key is not a JSON byte array: {e}") from e
        return cls.from_secret_key(secret)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @property
    def public_key(self) -> str:
        return self._public

    def secret_key(self) -> bytes:
        seed = self._key.private_bytes_raw()
        return seed + decode_address(self._public)

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def __repr__(self) -> str:
        return f"Keypair(public_key={self._public!r})"


def verify_signature(public_key: str, message: bytes, signature: bytes) -> bool:
    key = Ed25519PublicKey.from_public_bytes(decode_address(public_key))
    try:
        key.verify(signature, message)
    except InvalidSignature:
        return False
    return True


class SecretProvider(Protocol):
    def load(self) -> Keypair: ...


class StaticSecretProvider:
    """Secret material handed over in memory (settings, tests)."""

    def __init__(self, secret_json: str) -> None:
        self._secret_json = secret_json

    def load(self) -> Keypair:
        try:
            return Keypair.from_json(self._secret_json)
        except ValueError as e:
            raise ConfigError(f"Invalid treasury secret: {e}") from e


class EnvSecretProvider:
    def __init__(self, var_name: str = "TREASURY_SECRET") -> None:
        self.var_name = var_name

    def load(self) -> Keypair:
        raw = os.getenv(self.var_name, "").strip()
        if not raw:
            raise ConfigError(f"Missing {self.var_name}")
        return StaticSecretProvider(raw).load()


class FileSecretProvider:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Keypair:
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ConfigError(f"Cannot read treasury secret file {self.path}: {e}") from e
        return StaticSecretProvider(raw).load()
