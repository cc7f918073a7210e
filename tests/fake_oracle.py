"""
fake_oracle.py - Deterministic stand-in for the confidentiality oracle

Produces 32-byte ciphertexts and attestations for tests. Ciphertexts are
hashes, not encryptions: every call returns a fresh value, so two encryptions
of the same amount never collide (as with a real probabilistic scheme).
"""

from __future__ import annotations
import hashlib
from typing import Optional

from confidential_ledger import (
    Ciphertext, Position, ZERO_CIPHERTEXT,
    encode_borrow_proof, encode_withdrawal_proof, encode_liquidation_proof,
)


class FakeOracle:
    """
    Example:
        oracle = FakeOracle()
        ct = oracle.encrypt(1000)
        proof = oracle.borrow_proof(position, 500, ltv_ratio=7500)
    """

    def __init__(self, seed: str = "oracle"):
        self._seed = seed
        self._counter = 0

    def encrypt(self, amount: int) -> Ciphertext:
        self._counter += 1
        digest = hashlib.sha256(f"{self._seed}:{amount}:{self._counter}".encode()).digest()
        return Ciphertext(digest)

    @staticmethod
    def zero() -> Ciphertext:
        """Canonical zero ciphertext (fully repaid debt)."""
        return ZERO_CIPHERTEXT

    def borrow_proof(
        self,
        position: Position,
        amount: int,
        ltv_ratio: int = 7500,
        sign: bool = False,
        key: Optional[bytes] = None,
    ) -> bytes:
        return encode_borrow_proof(
            position.encrypted_collateral, position.encrypted_debt,
            amount, ltv_ratio, sign=sign, key=key,
        )

    def withdrawal_proof(self, position: Position, amount: int) -> bytes:
        return encode_withdrawal_proof(
            position.encrypted_collateral, position.encrypted_debt, amount,
        )

    def liquidation_proof(self, position: Position, threshold: int = 8000) -> bytes:
        return encode_liquidation_proof(
            position.encrypted_collateral, position.encrypted_debt, threshold,
        )
