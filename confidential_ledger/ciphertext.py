"""
ciphertext.py - Opaque Encrypted Amounts

Collateral and debt amounts are held on the ledger only as 32-byte
ciphertexts produced by the confidentiality oracle. The ledger never
decrypts them and never does arithmetic on them: the only question it may
ask of a ciphertext is whether it is byte-for-byte equal to another one.

Ciphertext therefore exposes equality, hashing, bytes() and fixed-length
prefixes (used by attestation binding), and nothing else. There is no
ordering, no int conversion and no arithmetic operator.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Union

CIPHERTEXT_LENGTH = 32

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True, slots=True, eq=True)
class Ciphertext:
    """
    Fixed-size opaque ciphertext.

    Attributes:
        data: Exactly CIPHERTEXT_LENGTH bytes.
    """
    data: bytes

    def __post_init__(self):
        if isinstance(self.data, (bytearray, memoryview)):
            object.__setattr__(self, 'data', bytes(self.data))
        if not isinstance(self.data, bytes):
            raise ValueError(f"Ciphertext data must be bytes, got {type(self.data)}")
        if len(self.data) != CIPHERTEXT_LENGTH:
            raise ValueError(
                f"Ciphertext must be exactly {CIPHERTEXT_LENGTH} bytes, got {len(self.data)}"
            )

    def __bytes__(self) -> bytes:
        return self.data

    def prefix(self, length: int) -> bytes:
        """Return the first `length` bytes (binding material for attestations)."""
        if not 0 < length <= CIPHERTEXT_LENGTH:
            raise ValueError(f"prefix length must be in 1..{CIPHERTEXT_LENGTH}, got {length}")
        return self.data[:length]

    def is_zero(self) -> bool:
        """True only for the canonical all-zero ciphertext."""
        return self == ZERO_CIPHERTEXT

    def hex(self) -> str:
        return self.data.hex()

    def __repr__(self) -> str:
        # Never print the full ciphertext; the prefix is enough to tell them apart
        return f"Ciphertext({self.data[:4].hex()}…)"


# Canonical encoding of "no debt" / "no collateral". Closing a position
# requires its debt ciphertext to equal this exact value.
ZERO_CIPHERTEXT = Ciphertext(bytes(CIPHERTEXT_LENGTH))


def as_ciphertext(value: Union[Ciphertext, BytesLike]) -> Ciphertext:
    """Coerce raw bytes into a Ciphertext, validating the length."""
    if isinstance(value, Ciphertext):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Ciphertext(bytes(value))
    raise ValueError(f"Expected ciphertext bytes, got {type(value)}")
