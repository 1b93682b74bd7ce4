"""
Legacy Solana transaction: message compilation, wire codec and partial
signing.

Wire layout::

    compact-u16 signature count | 64-byte signatures
    message:
        header (num_required_signatures, num_readonly_signed,
                num_readonly_unsigned)
        compact-u16 key count | 32-byte account keys
        32-byte recent blockhash
        compact-u16 instruction count | instructions
            program id index (u8)
            compact-u16 account count | account indexes (u8)
            compact-u16 data length | data

A signature slot that has not been signed yet travels as 64 zero bytes.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .addresses import decode_address, encode_address
from .signer import Signer, verify_signature

SIGNATURE_LEN = 64
EMPTY_SIGNATURE = bytes(SIGNATURE_LEN)
PACKET_DATA_SIZE = 1232


class TransactionError(ValueError):
    pass


def encode_compact_u16(value: int) -> bytes:
    if value < 0 or value > 0xFFFF:
        raise TransactionError(f"compact-u16 out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_compact_u16(data: bytes, offset: int) -> Tuple[int, int]:
    """Returns (value, new_offset)."""
    value = 0
    for i in range(3):
        if offset + i >= len(data):
            raise TransactionError("Truncated compact-u16")
        byte = data[offset + i]
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value, offset + i + 1
    raise TransactionError("compact-u16 longer than 3 bytes")


@dataclass(frozen=True)
class AccountMeta:
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True)
class Instruction:
    program_id: str
    accounts: Tuple[AccountMeta, ...]
    data: bytes = b""


@dataclass(frozen=True)
class MessageHeader:
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int


@dataclass(frozen=True)
class CompiledInstruction:
    program_id_index: int
    accounts: Tuple[int, ...]
    data: bytes


@dataclass(frozen=True)
class Message:
    header: MessageHeader
    account_keys: Tuple[str, ...]
    recent_blockhash: str
    instructions: Tuple[CompiledInstruction, ...]

    @property
    def fee_payer(self) -> str:
        return self.account_keys[0]

    @property
    def signer_keys(self) -> Tuple[str, ...]:
        return self.account_keys[: self.header.num_required_signatures]

    def is_writable(self, index: int) -> bool:
        h = self.header
        if index < h.num_required_signatures:
            return index < h.num_required_signatures - h.num_readonly_signed
        return index < len(self.account_keys) - h.num_readonly_unsigned

    def is_signer(self, index: int) -> bool:
        return index < self.header.num_required_signatures

    def decompile(self) -> List[Instruction]:
        out: List[Instruction] = []
        for ix in self.instructions:
            metas = tuple(
                AccountMeta(self.account_keys[i], self.is_signer(i), self.is_writable(i))
                for i in ix.accounts
            )
            out.append(Instruction(self.account_keys[ix.program_id_index], metas, ix.data))
        return out

    def serialize(self) -> bytes:
        h = self.header
        out = bytearray(
            [h.num_required_signatures, h.num_readonly_signed, h.num_readonly_unsigned]
        )
        out += encode_compact_u16(len(self.account_keys))
        for key in self.account_keys:
            out += decode_address(key)
        out += decode_address(self.recent_blockhash)
        out += encode_compact_u16(len(self.instructions))
        for ix in self.instructions:
            out.append(ix.program_id_index)
            out += encode_compact_u16(len(ix.accounts))
            out += bytes(ix.accounts)
            out += encode_compact_u16(len(ix.data))
            out += ix.data
        return bytes(out)

    @staticmethod
    def deserialize(data: bytes, offset: int = 0) -> Tuple["Message", int]:
        if offset + 3 > len(data):
            raise TransactionError("Truncated message header")
        if data[offset] & 0x80:
            raise TransactionError("Versioned messages are not supported")
        header = MessageHeader(data[offset], data[offset + 1], data[offset + 2])
        offset += 3

        n_keys, offset = decode_compact_u16(data, offset)
        keys: List[str] = []
        for _ in range(n_keys):
            keys.append(encode_address(_take(data, offset, 32)))
            offset += 32
        blockhash = encode_address(_take(data, offset, 32))
        offset += 32

        n_ix, offset = decode_compact_u16(data, offset)
        instructions: List[CompiledInstruction] = []
        for _ in range(n_ix):
            program_index = _take(data, offset, 1)[0]
            offset += 1
            n_acc, offset = decode_compact_u16(data, offset)
            acc = tuple(_take(data, offset, n_acc))
            offset += n_acc
            n_data, offset = decode_compact_u16(data, offset)
            ix_data = _take(data, offset, n_data)
            offset += n_data
            instructions.append(CompiledInstruction(program_index, acc, ix_data))

        message = Message(header, tuple(keys), blockhash, tuple(instructions))
        _check_indexes(message)
        return message, offset


def _take(data: bytes, offset: int, n: int) -> bytes:
    if offset + n > len(data):
        raise TransactionError("Truncated transaction data")
    return bytes(data[offset : offset + n])


def _check_indexes(message: Message) -> None:
    n = len(message.account_keys)
    if message.header.num_required_signatures > n:
        raise TransactionError("Header requires more signers than account keys")
    for ix in message.instructions:
        if ix.program_id_index >= n or any(i >= n for i in ix.accounts):
            raise TransactionError("Instruction references unknown account index")


def compile_message(
    fee_payer: str,
    instructions: Sequence[Instruction],
    recent_blockhash: str,
) -> Message:
    """
    Collects account metas (fee payer first, flags merged per key), then
    orders them signer+writable, signer, writable, read-only. Keys keep
    first-appearance order within each group.
    """
    if not instructions:
        raise TransactionError("Transaction has no instructions")

    flags: Dict[str, List[bool]] = {fee_payer: [True, True]}
    for ix in instructions:
        for meta in ix.accounts:
            f = flags.setdefault(meta.pubkey, [False, False])
            f[0] = f[0] or meta.is_signer
            f[1] = f[1] or meta.is_writable
        flags.setdefault(ix.program_id, [False, False])

    ordered = sorted(
        flags.items(),
        key=lambda kv: (kv[0] != fee_payer, not kv[1][0], not kv[1][1]),
    )
    keys = tuple(k for k, _ in ordered)
    signed = [f for _, f in ordered if f[0]]
    unsigned = [f for _, f in ordered if not f[0]]
    header = MessageHeader(
        num_required_signatures=len(signed),
        num_readonly_signed=sum(1 for f in signed if not f[1]),
        num_readonly_unsigned=sum(1 for f in unsigned if not f[1]),
    )

    index = {k: i for i, k in enumerate(keys)}
    compiled = tuple(
        CompiledInstruction(
            program_id_index=index[ix.program_id],
            accounts=tuple(index[m.pubkey] for m in ix.accounts),
            data=bytes(ix.data),
        )
        for ix in instructions
    )
    decode_address(recent_blockhash)
    return Message(header, keys, recent_blockhash, compiled)


@dataclass
class Transaction:
    message: Message
    signatures: List[Optional[bytes]] = field(default_factory=list)

    def __post_init__(self) -> None:
        n = self.message.header.num_required_signatures
        if not self.signatures:
            self.signatures = [None] * n
        if len(self.signatures) != n:
            raise TransactionError(
                f"Expected {n} signature slots, got {len(self.signatures)}"
            )

    @classmethod
    def new(
        cls,
        fee_payer: str,
        instructions: Sequence[Instruction],
        recent_blockhash: str,
    ) -> "Transaction":
        return cls(compile_message(fee_payer, instructions, recent_blockhash))

    @property
    def fee_payer(self) -> str:
        return self.message.fee_payer

    @property
    def instructions(self) -> List[Instruction]:
        return self.message.decompile()

    def signature_for(self, pubkey: str) -> Optional[bytes]:
        try:
            return self.signatures[self.message.signer_keys.index(pubkey)]
        except ValueError:
            raise TransactionError(f"{pubkey} is not a required signer")

    def missing_signers(self) -> List[str]:
        return [k for k, s in zip(self.message.signer_keys, self.signatures) if s is None]

    def partial_sign(self, *signers: Signer) -> None:
        """Fills the slots of the given signers; other slots stay empty."""
        payload = self.message.serialize()
        keys = self.message.signer_keys
        for signer in signers:
            if signer.public_key not in keys:
                raise TransactionError(f"{signer.public_key} is not a required signer")
            self.signatures[keys.index(signer.public_key)] = signer.sign(payload)

    def verify_signatures(self, require_all: bool = True) -> bool:
        payload = self.message.serialize()
        for key, sig in zip(self.message.signer_keys, self.signatures):
            if sig is None:
                if require_all:
                    return False
                continue
            if not verify_signature(key, payload, sig):
                return False
        return True

    def serialize(self, require_all_signatures: bool = True) -> bytes:
        if require_all_signatures and self.missing_signers():
            raise TransactionError(f"Missing signatures for {self.missing_signers()}")
        out = bytearray(encode_compact_u16(len(self.signatures)))
        for sig in self.signatures:
            out += sig if sig is not None else EMPTY_SIGNATURE
        out += self.message.serialize()
        if len(out) > PACKET_DATA_SIZE:
            raise TransactionError(f"Transaction too large: {len(out)} > {PACKET_DATA_SIZE}")
        return bytes(out)

    @classmethod
    def deserialize(cls, data: bytes) -> "Transaction":
        n_sigs, offset = decode_compact_u16(data, 0)
        sigs: List[Optional[bytes]] = []
        for _ in range(n_sigs):
            sig = _take(data, offset, SIGNATURE_LEN)
            offset += SIGNATURE_LEN
            sigs.append(None if sig == EMPTY_SIGNATURE else sig)
        message, offset = Message.deserialize(data, offset)
        if offset != len(data):
            raise TransactionError("Trailing bytes after message")
        return cls(message, sigs)

    def to_base64(self, require_all_signatures: bool = True) -> str:
        return base64.b64encode(self.serialize(require_all_signatures)).decode("ascii")

    @classmethod
    def from_base64(cls, text: str) -> "Transaction":
        try:
            raw = base64.b64decode(text, validate=True)
        except ValueError as e:
            raise TransactionError(f"Transaction is not valid base64: {e}") from e
        return cls.deserialize(raw)
