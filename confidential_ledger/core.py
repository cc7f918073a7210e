"""
Core types and pure functions for the confidential lending ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, RecordChange, PendingTransaction, Transaction, Asset
3. Exceptions: LedgerError, LendingError and the typed rejections below them
4. Type aliases: BalanceMap, RecordState
5. Address derivation: deterministic identities for pools, positions and escrows

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption of the native asset.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Record type constants (strings, not enum, like asset symbols).
RECORD_TYPE_POOL = "POOL"
RECORD_TYPE_POSITION = "POSITION"

# Amounts, aggregates and proof fields are unsigned 64-bit integers.
U64_MAX = 2 ** 64 - 1

# Risk parameters are expressed in basis points.
BPS_DENOMINATOR = 10_000

# Rent-exempt floor left in a pool escrow after a liquidation sweep.
DEFAULT_ESCROW_MIN_BALANCE = 890_880


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Persisted field set of a record (pool or position).
RecordState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Transition functions accept a LedgerView to declare that they only read.
    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, asset_symbol: str) -> int:
        """Return the balance of an asset in a wallet (0 if none)."""
        ...

    def get_record(self, address: str) -> RecordState:
        """
        Return a copy of the record stored at an address.

        Raises RecordNotFound if nothing is stored there.
        """
        ...

    def has_record(self, address: str) -> bool:
        """Return True if a record is stored at the address."""
        ...

    def is_registered(self, wallet_id: str) -> bool:
        """Return True if the wallet is registered."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (insufficient funds, unregistered
              wallet, stale record state, ...). Nothing was mutated.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and off-ledger indexing.
    """
    USER_ACTION = "user_action"           # Caller-initiated lending operation
    SYSTEM = "system"                     # Issuance, funding, initial setup
    EXTERNAL = "external"                 # External system integration


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a value transfer would take a wallet below the asset's minimum balance."""
    pass


class AssetNotRegistered(LedgerError):
    """Raised when operating on an asset that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered with the ledger."""
    pass


class RecordNotFound(LedgerError):
    """Raised when no record is stored at the requested address."""
    pass


class DuplicateTransaction(LedgerError):
    """Raised when an identical transaction intent has already been applied."""
    pass


class ArithmeticOverflow(LedgerError):
    """Raised when an aggregate would leave the unsigned 64-bit range."""
    pass


class LendingError(LedgerError):
    """Base class for typed rejections of a lending operation."""
    pass


class InvalidAmount(LendingError):
    """Amount must be greater than zero and fit in an unsigned 64-bit integer."""
    pass


class Unauthorized(LendingError):
    """Caller is not the owner of the position."""
    pass


class InvalidProof(LendingError):
    """Attestation is malformed, bound to other state, or carries the wrong amount or signature."""
    pass


class PositionHealthy(LendingError):
    """Liquidation attestation did not verify: the position is not proven unhealthy."""
    pass


class InsufficientLiquidity(LendingError):
    """Pool escrow balance is below the requested amount."""
    pass


class PositionHasDebt(LendingError):
    """Position debt ciphertext is not the canonical zero ciphertext."""
    pass


class PositionInactive(LendingError):
    """Position has been liquidated and no longer accepts this operation."""
    pass


class PoolInactive(LendingError):
    """Pool is not accepting new positions."""
    pass


class PoolNotFound(LendingError):
    """No pool record is stored at the given address."""
    pass


class PositionNotFound(LendingError):
    """No position record is stored at the given address."""
    pass


class PoolAlreadyExists(LendingError):
    """A pool is already stored at the derived address."""
    pass


class PositionAlreadyExists(LendingError):
    """The owner already has a position in this pool."""
    pass


# ============================================================================
# ADDRESS DERIVATION
# ============================================================================

def derive_address(*seeds: str) -> str:
    """
    Derive a deterministic address from string seeds.

    The first seed doubles as a readable prefix, so pool, position and
    vault addresses are distinguishable in logs:

        derive_address("pool", "SOL", "USDC") -> "pool:3f9a1c0b7d2e4a58"

    Raises:
        ValueError: If no seeds are given or a seed is empty.
    """
    if not seeds:
        raise ValueError("derive_address needs at least one seed")
    for seed in seeds:
        if not seed:
            raise ValueError("Address seeds cannot be empty")
    digest = hashlib.sha256()
    for seed in seeds:
        encoded = seed.encode()
        # Length-prefix each seed so ("ab", "c") and ("a", "bc") differ
        digest.update(len(encoded).to_bytes(4, "little"))
        digest.update(encoded)
    return f"{seeds[0]}:{digest.hexdigest()[:16]}"


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the caller (owner, liquidator, authority)
        record: Address of the record the operation targets (if applicable)
        event_type: Operation name (e.g., "BORROW", "LIQUIDATE")
    """
    origin_type: OriginType
    source_id: str
    record: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.record:
            parts.append(f"record={self.record}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# RECORD CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class RecordChange:
    """
    Before/after snapshot of one record, used for execution and audit.

    old_state is None when the transaction creates the record and new_state
    is None when it deletes the record. The ledger applies a change only if
    the stored record still equals old_state, so a change computed against
    stale state can never be committed.

    Attributes:
        address: Address of the record
        record_type: RECORD_TYPE_POOL or RECORD_TYPE_POSITION
        old_state: Complete state the change was computed from (or None)
        new_state: Complete state after the change (or None)
    """
    address: str
    record_type: str
    old_state: Optional[RecordState]
    new_state: Optional[RecordState]

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValueError("RecordChange address cannot be empty")
        if self.old_state is None and self.new_state is None:
            raise ValueError("RecordChange needs an old_state or a new_state")

    @property
    def is_create(self) -> bool:
        return self.old_state is None

    @property
    def is_delete(self) -> bool:
        return self.new_state is None

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state or {}
        new = self.new_state or {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of native value between two wallets.

    Attributes:
        quantity: Amount in base units (positive int, fits in u64).
        asset_symbol: Symbol of the asset being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: int
    asset_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.asset_symbol or not self.asset_symbol.strip():
            raise ValueError("Move asset_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.quantity > U64_MAX:
            raise ValueError(f"Move quantity exceeds u64: {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset_symbol}: {self.source}→{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dict ordering never affects the result, and byte strings (ciphertexts)
    are rendered as hex so two equal ciphertexts always hash the same.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, (bytes, bytearray)):
        return f"B:{bytes(value).hex()}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    record_changes: Tuple[RecordChange, ...],
    origin: TransactionOrigin,
    wallets_to_create: Tuple[str, ...] = (),
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content of the transaction, never on
    timestamps or ledger-specific data. Used for idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (m.quantity, m.asset_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.record:
        content_parts.append(f"record:{origin.record}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for wallet in sorted(wallets_to_create):
        content_parts.append(f"wallet_create:{wallet}")

    for m in sorted_moves:
        content_parts.append(f"move:{m.quantity}|{m.asset_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for rc in sorted(record_changes, key=lambda r: r.address):
        old_canonical = _canonicalize(rc.old_state)
        new_canonical = _canonicalize(rc.new_state)
        content_parts.append(f"record_change:{rc.address}|{rc.record_type}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by the transition functions and submitted to the ledger.
    Everything in it is applied together or not at all.

    Attributes:
        moves: Tuple of value transfers between wallets
        record_changes: Tuple of record creations, updates and deletions
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        wallets_to_create: Wallets (escrows, position accounts) registered on apply
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    record_changes: Tuple[RecordChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    wallets_to_create: Tuple[str, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.record_changes, self.origin, self.wallets_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes nothing."""
        return not self.moves and not self.record_changes and not self.wallets_to_create

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, "
                f"{len(self.record_changes)} record changes, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    record_changes: Optional[List[RecordChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    wallets_to_create: Optional[Tuple[str, ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and record changes.

    This is the standard way to create transactions. Record snapshots are
    deep-copied so later mutation of the caller's dicts cannot leak in.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        record_changes: Optional list of RecordChange objects
        origin: Transaction origin (defaults to a SYSTEM origin)
        wallets_to_create: Optional tuple of wallet IDs to register on apply

    Returns:
        A PendingTransaction ready for execution
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.SYSTEM,
            source_id=SYSTEM_WALLET,
        )

    copied_changes: Tuple[RecordChange, ...] = ()
    if record_changes:
        copied_changes = tuple(
            RecordChange(
                address=rc.address,
                record_type=rc.record_type,
                old_state=copy.deepcopy(rc.old_state),
                new_state=copy.deepcopy(rc.new_state),
            )
            for rc in record_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        record_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        wallets_to_create=tuple(wallets_to_create or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        record_changes: Tuple of record creations, updates and deletions
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        wallets_to_create: Wallets registered by this transaction
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    record_changes: Tuple[RecordChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    wallets_to_create: Tuple[str, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.record_changes and not self.wallets_to_create:
            raise ValueError("Transaction must have moves, record_changes, or wallets_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.wallets_to_create:
            lines.append(f"│{pad('   new wallets    : ' + ', '.join(self.wallets_to_create))}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.asset_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.record_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Record Changes (' + str(len(self.record_changes)) + '):')}│")
            for rc in self.record_changes:
                action = "create" if rc.is_create else "delete" if rc.is_delete else "update"
                lines.append(f"│{pad('   [' + rc.address + '] ' + action)}│")
                if not rc.is_create and not rc.is_delete:
                    for field_name, (old_val, new_val) in rc.changed_fields().items():
                        lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class Asset:
    """
    Definition of a value-bearing asset held in wallets.

    Attributes:
        symbol: Short identifier (e.g., "LAMPORTS").
        name: Human-readable name.
        decimal_places: Display precision of one whole unit in base units.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
    """
    symbol: str
    name: str
    decimal_places: int = 0
    min_balance: int = 0
    max_balance: int = U64_MAX

    def format(self, quantity: int) -> str:
        """Render a base-unit quantity as whole units for display."""
        if self.decimal_places == 0:
            return f"{quantity} {self.symbol}"
        whole, frac = divmod(quantity, 10 ** self.decimal_places)
        return f"{whole}.{frac:0{self.decimal_places}d} {self.symbol}"


def native(symbol: str, name: str, decimal_places: int = 9) -> Asset:
    """
    Create the ledger's native asset.

    Balances are integers in base units and may never go negative, so a
    transfer from an underfunded wallet is rejected.
    """
    return Asset(symbol=symbol, name=name, decimal_places=decimal_places, min_balance=0)
