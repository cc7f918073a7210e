"""
attestation.py - Attestation Verifier

The ledger cannot compare encrypted amounts, so every transition that
depends on a confidential comparison (borrow, withdraw, liquidate) carries
an attestation produced by the confidentiality oracle. This module decides
whether such a byte string authorizes the transition, without knowing any
plaintext.

Proof wire layout (minimum 64 bytes, numerics little-endian):

    offset  length  field
    ------  ------  -----------------------------------------------------
     0-15     16    collateral binding: encrypted_collateral[0:16]
    16-31     16    debt binding: encrypted_debt[0:16]
    32-39      8    u64 amount (borrow / withdraw)
    32-33      2    u16 threshold (liquidation proofs reuse the amount slot)
    40-41      2    u16 auxiliary parameter (LTV ratio for borrow proofs)
    42-57     16    oracle signature / binding hash
    58-63      6    reserved, ignored

Binding to the position's CURRENT ciphertext defeats replay of a proof
computed against older state or another owner's state. Binding to the
exact requested amount defeats amount substitution. The signature slot is
where an oracle (MPC) signature check plugs in; each verify_* function is a
pure function of (proof, position, amount) so that substitution stays local.

All verifiers return (ok, reason), the same shape as Ledger._validate_pending.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
import hmac
import logging
from typing import Optional, Tuple, Union

from .ciphertext import Ciphertext, as_ciphertext
from .core import InvalidProof, U64_MAX
from .records import Position

logger = logging.getLogger(__name__)


# ============================================================================
# WIRE LAYOUT
# ============================================================================

PROOF_MIN_LENGTH = 64
BINDING_LENGTH = 16

COLLATERAL_BINDING_OFFSET = 0
DEBT_BINDING_OFFSET = 16
AMOUNT_OFFSET = 32
AMOUNT_LENGTH = 8
THRESHOLD_OFFSET = 32
THRESHOLD_LENGTH = 2
PARAM_OFFSET = 40
PARAM_LENGTH = 2
SIGNATURE_OFFSET = 42
SIGNATURE_LENGTH = 16
RESERVED_LENGTH = PROOF_MIN_LENGTH - SIGNATURE_OFFSET - SIGNATURE_LENGTH

# An all-zero signature marks an unsigned proof.
UNSIGNED_SIGNATURE = bytes(SIGNATURE_LENGTH)

U16_MAX = 2 ** 16 - 1

VerifyResult = Tuple[bool, str]


@dataclass(frozen=True, slots=True)
class Attestation:
    """
    Decoded view of a proof's fixed fields.

    amount and threshold overlap on the wire (offset 32); which one is
    meaningful depends on the operation the proof was submitted with.
    """
    collateral_binding: bytes
    debt_binding: bytes
    amount: int
    threshold: int
    param: int
    signature: bytes

    @property
    def is_unsigned(self) -> bool:
        return self.signature == UNSIGNED_SIGNATURE


def _read_uint(proof: bytes, offset: int, length: int) -> int:
    return int.from_bytes(proof[offset:offset + length], "little")


def parse_attestation(proof: Union[bytes, bytearray, memoryview]) -> Attestation:
    """
    Decode the fixed 64-byte prefix of a proof. Trailing bytes are ignored.

    Raises:
        InvalidProof: If the proof is not a byte string or is shorter than 64 bytes
    """
    if not isinstance(proof, (bytes, bytearray, memoryview)):
        raise InvalidProof(f"Proof must be bytes, got {type(proof)}")
    proof = bytes(proof)
    if len(proof) < PROOF_MIN_LENGTH:
        raise InvalidProof(f"Proof too short: {len(proof)} < {PROOF_MIN_LENGTH}")
    return Attestation(
        collateral_binding=proof[COLLATERAL_BINDING_OFFSET:COLLATERAL_BINDING_OFFSET + BINDING_LENGTH],
        debt_binding=proof[DEBT_BINDING_OFFSET:DEBT_BINDING_OFFSET + BINDING_LENGTH],
        amount=_read_uint(proof, AMOUNT_OFFSET, AMOUNT_LENGTH),
        threshold=_read_uint(proof, THRESHOLD_OFFSET, THRESHOLD_LENGTH),
        param=_read_uint(proof, PARAM_OFFSET, PARAM_LENGTH),
        signature=proof[SIGNATURE_OFFSET:SIGNATURE_OFFSET + SIGNATURE_LENGTH],
    )


# ============================================================================
# BINDING HASH
# ============================================================================

def _check_field(name: str, value: int, maximum: int, width: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
        raise ValueError(f"{name} must fit in {width}, got {value!r}")


def compute_proof_binding(
    encrypted_collateral: Ciphertext,
    encrypted_debt: Ciphertext,
    amount: int,
    param: int,
    key: Optional[bytes] = None,
) -> bytes:
    """
    Expected signature for a borrow proof over the full ciphertexts.

    Binding data is collateral (32) + debt (32) + amount (u64 LE) + param
    (u16 LE). Without a key this is the first 16 bytes of SHA-256 over the
    data, the oracle's default convention; with a key it is the first 16
    bytes of HMAC-SHA256.
    """
    _check_field("amount", amount, U64_MAX, "u64")
    _check_field("param", param, U16_MAX, "u16")
    data = (
        bytes(encrypted_collateral)
        + bytes(encrypted_debt)
        + amount.to_bytes(8, "little")
        + param.to_bytes(2, "little")
    )
    if key:
        digest = hmac.new(key, data, hashlib.sha256).digest()
    else:
        digest = hashlib.sha256(data).digest()
    return digest[:SIGNATURE_LENGTH]


# ============================================================================
# VERIFIERS
# ============================================================================

def _parse_or_reject(proof: bytes) -> Tuple[Optional[Attestation], str]:
    try:
        return parse_attestation(proof), ""
    except InvalidProof as e:
        return None, str(e)


def _check_binding(attestation: Attestation, position: Position) -> VerifyResult:
    """Both binding prefixes must equal the position's current ciphertexts."""
    if attestation.collateral_binding != position.encrypted_collateral.prefix(BINDING_LENGTH):
        return False, "collateral binding mismatch"
    if attestation.debt_binding != position.encrypted_debt.prefix(BINDING_LENGTH):
        return False, "debt binding mismatch"
    return True, ""


def _reject(kind: str, position: Position, reason: str) -> VerifyResult:
    logger.debug("%s proof rejected for %s: %s", kind, position.address, reason)
    return False, reason


def verify_borrow_proof(
    proof: bytes,
    position: Position,
    amount: int,
    allow_unsigned: bool = True,
    key: Optional[bytes] = None,
) -> VerifyResult:
    """
    Verify an attestation that collateral * LTV >= debt + amount.

    Checks, in order: length, collateral binding, debt binding, embedded
    amount == requested amount, then the signature. An all-zero signature is
    accepted when allow_unsigned is True (unauthenticated mode); any other
    signature must equal compute_proof_binding() over the position's full
    ciphertexts, the amount and the embedded LTV parameter.
    """
    attestation, reason = _parse_or_reject(proof)
    if attestation is None:
        return _reject("borrow", position, reason)

    ok, reason = _check_binding(attestation, position)
    if not ok:
        return _reject("borrow", position, reason)

    if attestation.amount != amount:
        return _reject("borrow", position, f"amount mismatch: proof={attestation.amount} vs requested={amount}")

    if attestation.is_unsigned:
        if not allow_unsigned:
            return _reject("borrow", position, "unsigned proof")
        logger.warning(
            "Accepting unsigned borrow proof for %s (amount=%d): signature checks are disabled",
            position.address, amount,
        )
        return True, ""

    expected = compute_proof_binding(
        position.encrypted_collateral,
        position.encrypted_debt,
        amount,
        attestation.param,
        key=key,
    )
    if not hmac.compare_digest(attestation.signature, expected):
        return _reject("borrow", position, "proof hash mismatch")

    logger.debug("Borrow proof verified for %s: amount=%d, ltv=%d", position.address, amount, attestation.param)
    return True, ""


def verify_withdrawal_proof(proof: bytes, position: Position, amount: int) -> VerifyResult:
    """
    Verify an attestation that (collateral - amount) * LTV >= debt.

    Same binding and amount checks as a borrow proof. The oracle's signature
    is not checked: structure and binding are trusted.
    """
    attestation, reason = _parse_or_reject(proof)
    if attestation is None:
        return _reject("withdrawal", position, reason)

    ok, reason = _check_binding(attestation, position)
    if not ok:
        return _reject("withdrawal", position, reason)

    if attestation.amount != amount:
        return _reject("withdrawal", position, f"amount mismatch: proof={attestation.amount} vs requested={amount}")

    logger.debug("Withdrawal proof verified for %s: amount=%d", position.address, amount)
    return True, ""


def verify_liquidation_proof(proof: bytes, position: Position) -> VerifyResult:
    """
    Verify an attestation that the position's health is below threshold.

    Only length and binding gate the decision. The embedded threshold is
    decoded for the log line and nothing else.
    """
    attestation, reason = _parse_or_reject(proof)
    if attestation is None:
        return _reject("liquidation", position, reason)

    ok, reason = _check_binding(attestation, position)
    if not ok:
        return _reject("liquidation", position, reason)

    logger.debug("Liquidation proof verified for %s: threshold=%d", position.address, attestation.threshold)
    return True, ""


# ============================================================================
# ENCODERS (oracle / client side)
# ============================================================================

def _encode(
    encrypted_collateral: Ciphertext,
    encrypted_debt: Ciphertext,
    slot: bytes,
    param: int,
    signature: bytes,
) -> bytes:
    collateral = as_ciphertext(encrypted_collateral)
    debt = as_ciphertext(encrypted_debt)
    proof = (
        collateral.prefix(BINDING_LENGTH)
        + debt.prefix(BINDING_LENGTH)
        + slot.ljust(AMOUNT_LENGTH, b"\x00")
        + param.to_bytes(PARAM_LENGTH, "little")
        + signature
        + bytes(RESERVED_LENGTH)
    )
    return proof


def encode_borrow_proof(
    encrypted_collateral: Ciphertext,
    encrypted_debt: Ciphertext,
    amount: int,
    ltv_ratio: int,
    sign: bool = False,
    key: Optional[bytes] = None,
) -> bytes:
    """
    Build a borrow attestation bound to the given ciphertexts and amount.

    With sign=True the signature slot carries compute_proof_binding();
    otherwise it is left all zero (an unsigned proof).
    """
    _check_field("amount", amount, U64_MAX, "u64")
    _check_field("ltv_ratio", ltv_ratio, U16_MAX, "u16")
    collateral = as_ciphertext(encrypted_collateral)
    debt = as_ciphertext(encrypted_debt)
    signature = (
        compute_proof_binding(collateral, debt, amount, ltv_ratio, key=key)
        if sign else UNSIGNED_SIGNATURE
    )
    return _encode(collateral, debt, amount.to_bytes(AMOUNT_LENGTH, "little"), ltv_ratio, signature)


def encode_withdrawal_proof(
    encrypted_collateral: Ciphertext,
    encrypted_debt: Ciphertext,
    amount: int,
) -> bytes:
    """Build a withdrawal attestation bound to the given ciphertexts and amount."""
    _check_field("amount", amount, U64_MAX, "u64")
    return _encode(
        encrypted_collateral, encrypted_debt,
        amount.to_bytes(AMOUNT_LENGTH, "little"), 0, UNSIGNED_SIGNATURE,
    )


def encode_liquidation_proof(
    encrypted_collateral: Ciphertext,
    encrypted_debt: Ciphertext,
    liquidation_threshold: int,
) -> bytes:
    """Build a liquidation attestation carrying the threshold at offset 32."""
    _check_field("liquidation_threshold", liquidation_threshold, U16_MAX, "u16")
    return _encode(
        encrypted_collateral, encrypted_debt,
        liquidation_threshold.to_bytes(THRESHOLD_LENGTH, "little"), 0, UNSIGNED_SIGNATURE,
    )
