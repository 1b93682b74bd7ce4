from __future__ import annotations

import hashlib
from typing import List, Sequence, Tuple

import base58

from .errors import InvalidAddressError
from .project_constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

PUBKEY_LEN = 32
MAX_SEED_LEN = 32
MAX_SEEDS = 16
PDA_MARKER = b"ProgramDerivedAddress"

# ed25519 curve parameters (RFC 8032)
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


class OnCurveError(ValueError):
    pass


def decode_address(address: str) -> bytes:
    """base58 address -> 32 raw bytes. Raises InvalidAddressError."""
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError(f"Invalid address: {address!r}")
    try:
        raw = base58.b58decode(address.strip())
    except ValueError:
        raise InvalidAddressError(f"Invalid address: {address!r}")
    if len(raw) != PUBKEY_LEN:
        raise InvalidAddressError(
            f"Invalid address: {address!r} decodes to {len(raw)} bytes, expected 32"
        )
    return raw


def encode_address(raw: bytes) -> str:
    if len(raw) != PUBKEY_LEN:
        raise InvalidAddressError(f"Public key must be 32 bytes, got {len(raw)}")
    return base58.b58encode(raw).decode("ascii")


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
    except InvalidAddressError:
        return False
    return True


def is_on_curve(point: bytes) -> bool:
    """
    True if the 32 bytes decompress to an ed25519 point.

    Compressed form: little-endian y with the sign of x in the top bit.
    x^2 = (y^2 - 1) / (d*y^2 + 1) must have a square root mod p.
    """
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P

    # candidate root of u/v, see RFC 8032 section 5.1.3
    x = u * pow(v, 3, _P) * pow(u * pow(v, 7, _P), (_P - 5) // 8, _P) % _P
    vxx = v * x * x % _P
    if vxx == u:
        return True
    if vxx == (-u) % _P:
        return True
    return False


def create_program_address(seeds: Sequence[bytes], program_id: str) -> str:
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"Too many seeds: {len(seeds)} > {MAX_SEEDS}")
    h = hashlib.sha256()
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise ValueError(f"Seed too long: {len(seed)} > {MAX_SEED_LEN}")
        h.update(seed)
    h.update(decode_address(program_id))
    h.update(PDA_MARKER)
    digest = h.digest()
    if is_on_curve(digest):
        raise OnCurveError("Derived address falls on the ed25519 curve")
    return encode_address(digest)


def find_program_address(seeds: Sequence[bytes], program_id: str) -> Tuple[str, int]:
    """Tries bump seeds 255..0 and returns the first off-curve address."""
    base: List[bytes] = list(seeds)
    for bump in range(255, -1, -1):
        try:
            return create_program_address(base + [bytes([bump])], program_id), bump
        except OnCurveError:
            continue
    raise RuntimeError("Unable to find a viable program address bump seed")


def get_associated_token_address(owner: str, mint: str) -> str:
    """Token account address for (owner, mint). Pure, no I/O."""
    address, _ = find_program_address(
        [decode_address(owner), decode_address(TOKEN_PROGRAM_ID), decode_address(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address
