import pytest

from solana_claim.addresses import encode_address
from solana_claim.builder import create_associated_token_account_instruction, transfer_instruction
from solana_claim.signer import Keypair
from solana_claim.transaction import (
    AccountMeta,
    Instruction,
    Transaction,
    TransactionError,
    decode_compact_u16,
    encode_compact_u16,
)

from conftest import BLOCKHASH


@pytest.mark.parametrize(
    "value,encoded",
    [
        (0, b"\x00"),
        (0x7F, b"\x7f"),
        (0x80, b"\x80\x01"),
        (0x3FFF, b"\xff\x7f"),
        (0x4000, b"\x80\x80\x01"),
        (0xFFFF, b"\xff\xff\x03"),
    ],
)
def test_compact_u16(value, encoded):
    assert encode_compact_u16(value) == encoded
    assert decode_compact_u16(encoded, 0) == (value, len(encoded))


def test_compact_u16_range():
    with pytest.raises(TransactionError):
        encode_compact_u16(0x10000)


def _claim_tx(payer: Keypair, authority: Keypair, mint: str) -> Transaction:
    user_ata = Keypair.generate().public_key
    treasury_ata = Keypair.generate().public_key
    return Transaction.new(
        payer.public_key,
        [
            create_associated_token_account_instruction(
                payer.public_key, user_ata, payer.public_key, mint
            ),
            transfer_instruction(treasury_ata, user_ata, authority.public_key, 5),
        ],
        BLOCKHASH,
    )


class TestCompile:
    def test_header_and_key_order(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        msg = tx.message
        assert msg.account_keys[0] == claimant.public_key
        assert msg.account_keys[1] == treasury.public_key
        assert msg.header.num_required_signatures == 2
        assert msg.header.num_readonly_signed == 1
        # owner is the payer; readonly unsigned: mint, system, token, ata programs
        assert msg.header.num_readonly_unsigned == 4
        assert msg.signer_keys == (claimant.public_key, treasury.public_key)

    def test_no_instructions(self, claimant):
        with pytest.raises(TransactionError):
            Transaction.new(claimant.public_key, [], BLOCKHASH)


class TestSigning:
    def test_partial_sign_leaves_other_slot_empty(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        tx.partial_sign(treasury)
        assert tx.signature_for(claimant.public_key) is None
        assert tx.signature_for(treasury.public_key) is not None
        assert tx.missing_signers() == [claimant.public_key]
        assert tx.verify_signatures(require_all=False)
        assert not tx.verify_signatures(require_all=True)

    def test_serialize_requires_all_by_default(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        tx.partial_sign(treasury)
        with pytest.raises(TransactionError):
            tx.serialize()
        tx.serialize(require_all_signatures=False)

    def test_stranger_cannot_sign(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        with pytest.raises(TransactionError):
            tx.partial_sign(Keypair.generate())

    def test_both_signatures_complete(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        tx.partial_sign(treasury)
        tx.partial_sign(claimant)
        assert tx.verify_signatures()
        assert Transaction.deserialize(tx.serialize()).verify_signatures()


class TestCodec:
    def test_decode_is_lossless(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        tx.partial_sign(treasury)
        decoded = Transaction.from_base64(tx.to_base64(require_all_signatures=False))
        assert decoded.message == tx.message
        assert decoded.signatures == tx.signatures
        assert decoded.instructions == tx.instructions
        assert decoded.message.recent_blockhash == BLOCKHASH

    def test_tampered_message_fails_verification(self, claimant, treasury, mint):
        tx = _claim_tx(claimant, treasury, mint)
        tx.partial_sign(treasury)
        raw = bytearray(tx.serialize(require_all_signatures=False))
        raw[-1] ^= 0x01
        assert not Transaction.deserialize(bytes(raw)).verify_signatures(require_all=False)

    @pytest.mark.parametrize("garbage", [b"", b"\x01", b"\x00\x01\x00\x00", b"\x05" + bytes(10)])
    def test_garbage_rejected(self, garbage):
        with pytest.raises(TransactionError):
            Transaction.deserialize(garbage)

    def test_bad_base64(self):
        with pytest.raises(TransactionError):
            Transaction.from_base64("not base64!!")

    def test_trailing_bytes(self, claimant, treasury, mint):
        raw = _claim_tx(claimant, treasury, mint).serialize(require_all_signatures=False)
        with pytest.raises(TransactionError):
            Transaction.deserialize(raw + b"\x00")


class TestWireVector:
    """Byte-exact legacy layout for a fixed set of keys."""

    PAYER = encode_address(b"\x01" * 32)
    AUTHORITY = encode_address(b"\x05" * 32)
    DEST = encode_address(b"\x02" * 32)
    PROGRAM = encode_address(b"\x03" * 32)
    RECENT = encode_address(b"\x04" * 32)

    EXPECTED_MESSAGE = (
        bytes([2, 1, 1, 4])
        + b"\x01" * 32
        + b"\x05" * 32
        + b"\x02" * 32
        + b"\x03" * 32
        + b"\x04" * 32
        + bytes([1, 3, 2, 2, 1, 2, 3, 1])
    )

    def _tx(self):
        ix = Instruction(
            self.PROGRAM,
            (
                AccountMeta(self.DEST, is_signer=False, is_writable=True),
                AccountMeta(self.AUTHORITY, is_signer=True, is_writable=False),
            ),
            b"\x03\x01",
        )
        return Transaction.new(self.PAYER, [ix], self.RECENT)

    def test_message_bytes(self):
        assert self._tx().message.serialize() == self.EXPECTED_MESSAGE

    def test_unsigned_transaction_bytes(self):
        raw = self._tx().serialize(require_all_signatures=False)
        assert raw == bytes([2]) + bytes(128) + self.EXPECTED_MESSAGE

    def test_decodes_fixed_bytes(self):
        tx = Transaction.deserialize(bytes([2]) + bytes(128) + self.EXPECTED_MESSAGE)
        assert tx.message.account_keys == (self.PAYER, self.AUTHORITY, self.DEST, self.PROGRAM)
        assert tx.signatures == [None, None]
        assert tx.message.is_writable(2) and not tx.message.is_writable(1)
