"""
confidential_ledger - Confidential Lending Ledger

A lending pool whose per-user collateral and debt exist on the ledger only as
opaque ciphertexts. Transitions that depend on a confidential comparison
carry an oracle attestation bound to the position's current ciphertexts and
the exact amount requested.

Usage:
    from confidential_ledger import Ledger, LendingEngine, encode_borrow_proof

    engine = LendingEngine(Ledger("main"))
    engine.ledger.register_wallet("alice")
    engine.fund("alice", 10_000)

    pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
    position = engine.open_position("alice", pool)
    engine.deposit_collateral("alice", position, 1_000, collateral_ct)

    current = engine.get_position(position)
    proof = encode_borrow_proof(current.encrypted_collateral, current.encrypted_debt, 500, 7500)
    engine.borrow("alice", position, 500, debt_ct, proof)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    RecordChange,
    Asset,
    build_transaction,
    native,
    derive_address,
    ExecuteResult,
    SYSTEM_WALLET,
    RECORD_TYPE_POOL,
    RECORD_TYPE_POSITION,
    U64_MAX,
    BPS_DENOMINATOR,
    DEFAULT_ESCROW_MIN_BALANCE,
    # Exceptions
    LedgerError,
    InsufficientFunds,
    AssetNotRegistered,
    WalletNotRegistered,
    RecordNotFound,
    DuplicateTransaction,
    ArithmeticOverflow,
    LendingError,
    InvalidAmount,
    Unauthorized,
    InvalidProof,
    PositionHealthy,
    InsufficientLiquidity,
    PositionHasDebt,
    PositionInactive,
    PoolInactive,
    PoolNotFound,
    PositionNotFound,
    PoolAlreadyExists,
    PositionAlreadyExists,
)

# Ledger
from .ledger import Ledger

# Ciphertexts
from .ciphertext import (
    Ciphertext,
    ZERO_CIPHERTEXT,
    CIPHERTEXT_LENGTH,
    as_ciphertext,
)

# Records
from .records import (
    Pool,
    Position,
    PoolStats,
    pool_address,
    position_address,
    escrow_address,
    load_pool,
    load_position,
    pool_state,
    position_state,
    checked_add,
    saturating_sub,
    calculate_utilization_bps,
    compute_pool_stats,
)

# Attestations
from .attestation import (
    Attestation,
    PROOF_MIN_LENGTH,
    parse_attestation,
    compute_proof_binding,
    verify_borrow_proof,
    verify_withdrawal_proof,
    verify_liquidation_proof,
    encode_borrow_proof,
    encode_withdrawal_proof,
    encode_liquidation_proof,
)

# Transitions
from .lending import (
    compute_initialize_pool,
    compute_open_position,
    compute_deposit_collateral,
    compute_borrow,
    compute_repay,
    compute_withdraw_collateral,
    compute_liquidate,
    compute_close_position,
    transact,
)

# Events
from .events import (
    LendingEvent,
    EventLog,
    POOL_INITIALIZED,
    POSITION_OPENED,
    COLLATERAL_DEPOSITED,
    BORROWED,
    REPAID,
    COLLATERAL_WITHDRAWN,
    POSITION_LIQUIDATED,
    POSITION_CLOSED,
)

# Engine, configuration, logging
from .engine import LendingEngine
from .config import LendingConfig, load_config
from .logging_setup import configure_logging

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'RecordChange', 'Asset', 'build_transaction', 'native', 'derive_address',
    'ExecuteResult', 'SYSTEM_WALLET', 'RECORD_TYPE_POOL', 'RECORD_TYPE_POSITION',
    'U64_MAX', 'BPS_DENOMINATOR', 'DEFAULT_ESCROW_MIN_BALANCE',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'AssetNotRegistered', 'WalletNotRegistered',
    'RecordNotFound', 'DuplicateTransaction', 'ArithmeticOverflow',
    'LendingError', 'InvalidAmount', 'Unauthorized', 'InvalidProof', 'PositionHealthy',
    'InsufficientLiquidity', 'PositionHasDebt', 'PositionInactive', 'PoolInactive',
    'PoolNotFound', 'PositionNotFound', 'PoolAlreadyExists', 'PositionAlreadyExists',
    # Ledger
    'Ledger',
    # Ciphertexts
    'Ciphertext', 'ZERO_CIPHERTEXT', 'CIPHERTEXT_LENGTH', 'as_ciphertext',
    # Records
    'Pool', 'Position', 'PoolStats',
    'pool_address', 'position_address', 'escrow_address',
    'load_pool', 'load_position', 'pool_state', 'position_state',
    'checked_add', 'saturating_sub', 'calculate_utilization_bps', 'compute_pool_stats',
    # Attestations
    'Attestation', 'PROOF_MIN_LENGTH', 'parse_attestation', 'compute_proof_binding',
    'verify_borrow_proof', 'verify_withdrawal_proof', 'verify_liquidation_proof',
    'encode_borrow_proof', 'encode_withdrawal_proof', 'encode_liquidation_proof',
    # Transitions
    'compute_initialize_pool', 'compute_open_position', 'compute_deposit_collateral',
    'compute_borrow', 'compute_repay', 'compute_withdraw_collateral',
    'compute_liquidate', 'compute_close_position', 'transact',
    # Events
    'LendingEvent', 'EventLog',
    'POOL_INITIALIZED', 'POSITION_OPENED', 'COLLATERAL_DEPOSITED', 'BORROWED',
    'REPAID', 'COLLATERAL_WITHDRAWN', 'POSITION_LIQUIDATED', 'POSITION_CLOSED',
    # Engine, configuration, logging
    'LendingEngine', 'LendingConfig', 'load_config', 'configure_logging',
]
