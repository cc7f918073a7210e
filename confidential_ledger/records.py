"""
records.py - Pool and Position Records

This module provides the lending data model using the same pure function
architecture as the rest of the package.

ARCHITECTURE:
=============

1. FROZEN DATACLASSES (explicit inputs):
   - Pool: public market record (risk parameters + anonymized aggregates)
   - Position: per-owner confidential record (ciphertexts only)

2. ADAPTER FUNCTIONS (load_pool, load_position):
   - Extract a record from LedgerView once
   - Convert to typed frozen dataclasses
   - The ONLY place that touches LedgerView for record reads

3. SERIALIZERS (pool_state, position_state):
   - The inverse of the loaders, used to build RecordChange snapshots

4. AGGREGATE ARITHMETIC (checked_add, saturating_sub):
   - Pool totals only ever grow through checked_add and shrink through
     saturating_sub, so they stay inside 0..U64_MAX.

Pool aggregates carry no per-user attribution. Position amounts exist on
the ledger only as Ciphertext.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .ciphertext import Ciphertext, ZERO_CIPHERTEXT, as_ciphertext
from .core import (
    LedgerView, RecordState,
    RECORD_TYPE_POOL, RECORD_TYPE_POSITION, U64_MAX, BPS_DENOMINATOR,
    ArithmeticOverflow, PoolNotFound, PositionNotFound,
    derive_address,
)


# ============================================================================
# ADDRESSES
# ============================================================================

def pool_address(collateral_asset: str, borrow_asset: str) -> str:
    """Address of the (single) pool for a collateral/borrow market."""
    return derive_address("pool", collateral_asset, borrow_asset)


def position_address(pool: str, owner: str) -> str:
    """Address of an owner's position in a pool. Also the position's storage wallet."""
    return derive_address("position", pool, owner)


def escrow_address(pool: str) -> str:
    """Wallet holding a pool's deposited collateral and lendable liquidity."""
    return derive_address("vault", pool)


# ============================================================================
# AGGREGATE ARITHMETIC
# ============================================================================

def checked_add(current: int, amount: int) -> int:
    """Add to a u64 aggregate; raise ArithmeticOverflow past U64_MAX."""
    result = current + amount
    if result > U64_MAX:
        raise ArithmeticOverflow(f"{current} + {amount} exceeds u64")
    return result


def saturating_sub(current: int, amount: int) -> int:
    """Subtract from a u64 aggregate, flooring at zero."""
    return max(current - amount, 0)


def _check_bps(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int in basis points, got {type(value)}")
    if not 0 <= value <= BPS_DENOMINATOR:
        raise ValueError(f"{name} must be in 0..{BPS_DENOMINATOR} bps, got {value}")


def _check_u64(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value)}")
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"{name} must be in 0..{U64_MAX}, got {value}")


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Pool:
    """
    Public lending pool record, one per market.

    Risk parameters are fixed at creation. The three aggregates are updated
    only as a side effect of a position transition and never go negative.

    version makes every transition content-unique: two writes from otherwise
    equal states still differ in version, so the ledger never mistakes a
    legitimate repeat (reopen, a second identical borrow) for a replay.
    """
    address: str
    authority: str
    collateral_asset: str
    borrow_asset: str
    settlement_asset: str          # native asset moved by every transfer
    escrow: str                    # wallet holding deposits and liquidity
    ltv_ratio: int                 # basis points
    interest_rate: int             # basis points, informational (no accrual)
    liquidation_threshold: int     # basis points
    total_deposits: int = 0
    total_borrows: int = 0
    active_positions: int = 0
    is_active: bool = True
    # Bumped by every transition that writes the pool
    version: int = 0

    def __post_init__(self):
        _check_bps("ltv_ratio", self.ltv_ratio)
        _check_bps("interest_rate", self.interest_rate)
        _check_bps("liquidation_threshold", self.liquidation_threshold)
        _check_u64("total_deposits", self.total_deposits)
        _check_u64("total_borrows", self.total_borrows)
        _check_u64("active_positions", self.active_positions)
        _check_u64("version", self.version)


@dataclass(frozen=True, slots=True)
class Position:
    """
    Confidential per-owner position in one pool.

    encrypted_collateral and encrypted_debt are opaque; the ledger only ever
    compares them for equality.
    """
    address: str
    owner: str
    pool: str
    encrypted_collateral: Ciphertext = ZERO_CIPHERTEXT
    encrypted_debt: Ciphertext = ZERO_CIPHERTEXT
    last_update: Optional[datetime] = None
    is_active: bool = True
    # Pool version of the transition that last wrote this position
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'encrypted_collateral', as_ciphertext(self.encrypted_collateral))
        object.__setattr__(self, 'encrypted_debt', as_ciphertext(self.encrypted_debt))

    def has_debt(self) -> bool:
        """
        True unless the debt ciphertext is the canonical zero encoding.

        A ciphertext that happens to decrypt to zero but is not the canonical
        encoding still counts as debt.
        """
        return not self.encrypted_debt.is_zero()


@dataclass(frozen=True, slots=True)
class PoolStats:
    """Public, anonymized snapshot of a pool for dashboards and indexers."""
    total_deposits: int
    total_borrows: int
    active_positions: int
    utilization_bps: int
    available_liquidity: int


# ============================================================================
# ADAPTERS
# ============================================================================

def load_pool(view: LedgerView, address: str) -> Pool:
    """
    Load a pool record as a typed frozen dataclass.

    Raises:
        PoolNotFound: If no pool is stored at the address
    """
    if not view.has_record(address):
        raise PoolNotFound(f"No pool at {address}")
    raw = view.get_record(address)
    if raw.get('kind') != RECORD_TYPE_POOL:
        raise PoolNotFound(f"Record at {address} is not a pool")
    return Pool(
        address=address,
        authority=raw['authority'],
        collateral_asset=raw['collateral_asset'],
        borrow_asset=raw['borrow_asset'],
        settlement_asset=raw['settlement_asset'],
        escrow=raw['escrow'],
        ltv_ratio=raw['ltv_ratio'],
        interest_rate=raw['interest_rate'],
        liquidation_threshold=raw['liquidation_threshold'],
        total_deposits=raw.get('total_deposits', 0),
        total_borrows=raw.get('total_borrows', 0),
        active_positions=raw.get('active_positions', 0),
        is_active=raw.get('is_active', True),
        version=raw.get('version', 0),
    )


def load_position(view: LedgerView, address: str) -> Position:
    """
    Load a position record as a typed frozen dataclass.

    Raises:
        PositionNotFound: If no position is stored at the address
    """
    if not view.has_record(address):
        raise PositionNotFound(f"No position at {address}")
    raw = view.get_record(address)
    if raw.get('kind') != RECORD_TYPE_POSITION:
        raise PositionNotFound(f"Record at {address} is not a position")
    return Position(
        address=address,
        owner=raw['owner'],
        pool=raw['pool'],
        encrypted_collateral=Ciphertext(raw['encrypted_collateral']),
        encrypted_debt=Ciphertext(raw['encrypted_debt']),
        last_update=raw.get('last_update'),
        is_active=raw.get('is_active', True),
        version=raw.get('version', 0),
    )


def pool_state(pool: Pool) -> RecordState:
    """Serialize a Pool into the state dict stored by the ledger."""
    return {
        'kind': RECORD_TYPE_POOL,
        'authority': pool.authority,
        'collateral_asset': pool.collateral_asset,
        'borrow_asset': pool.borrow_asset,
        'settlement_asset': pool.settlement_asset,
        'escrow': pool.escrow,
        'ltv_ratio': pool.ltv_ratio,
        'interest_rate': pool.interest_rate,
        'liquidation_threshold': pool.liquidation_threshold,
        'total_deposits': pool.total_deposits,
        'total_borrows': pool.total_borrows,
        'active_positions': pool.active_positions,
        'is_active': pool.is_active,
        'version': pool.version,
    }


def position_state(position: Position) -> RecordState:
    """Serialize a Position into the state dict stored by the ledger."""
    return {
        'kind': RECORD_TYPE_POSITION,
        'owner': position.owner,
        'pool': position.pool,
        'encrypted_collateral': bytes(position.encrypted_collateral),
        'encrypted_debt': bytes(position.encrypted_debt),
        'last_update': position.last_update,
        'is_active': position.is_active,
        'version': position.version,
    }


# ============================================================================
# STATISTICS
# ============================================================================

def calculate_utilization_bps(total_deposits: int, total_borrows: int) -> int:
    """Borrowed share of deposits in basis points (0 with no deposits)."""
    if total_deposits == 0:
        return 0
    return total_borrows * BPS_DENOMINATOR // total_deposits


def compute_pool_stats(view: LedgerView, address: str) -> PoolStats:
    """Load a pool and summarize its public aggregates and escrow liquidity."""
    pool = load_pool(view, address)
    return PoolStats(
        total_deposits=pool.total_deposits,
        total_borrows=pool.total_borrows,
        active_positions=pool.active_positions,
        utilization_bps=calculate_utilization_bps(pool.total_deposits, pool.total_borrows),
        available_liquidity=view.get_balance(pool.escrow, pool.settlement_asset),
    )
