"""
engine.py - Lending Engine

Runs each lending operation end to end against a Ledger:

1. compute_*(ledger, ...) validates preconditions, verifies the attestation
   and builds a PendingTransaction (raising typed LendingErrors)
2. Ledger.execute() re-validates balances, registrations and record
   concurrency, then applies everything or nothing
3. On APPLIED, one LendingEvent is appended to the EventLog

Ledger rejections are turned into exceptions here, so callers see a single
error channel: InsufficientFunds for a failed value transfer,
DuplicateTransaction for a replayed intent, LedgerError for anything else
(for example a record that changed under a stale transition).
"""

from __future__ import annotations
import logging
from typing import Optional

from .ciphertext import Ciphertext
from .config import LendingConfig
from .core import (
    Move, Transaction, TransactionOrigin, OriginType, ExecuteResult, PendingTransaction,
    SYSTEM_WALLET, RECORD_TYPE_POSITION,
    LedgerError, InsufficientFunds, WalletNotRegistered, DuplicateTransaction,
    build_transaction, native,
)
from .events import (
    EventLog, LendingEvent,
    POOL_INITIALIZED, POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED,
    REPAID, COLLATERAL_WITHDRAWN, POSITION_LIQUIDATED, POSITION_CLOSED,
)
from .ledger import Ledger
from .lending import (
    compute_initialize_pool, compute_open_position, compute_deposit_collateral,
    compute_borrow, compute_repay, compute_withdraw_collateral,
    compute_liquidate, compute_close_position, swept_amount,
)
from .records import (
    Pool, Position, PoolStats,
    load_pool, load_position, compute_pool_stats, pool_address, position_address,
)

logger = logging.getLogger(__name__)


class LendingEngine:
    """
    Confidential lending operations bound to one ledger.

    Example:
        engine = LendingEngine(Ledger("main"))
        engine.ledger.register_wallet("alice")
        engine.fund("alice", 10_000)

        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        engine.deposit_collateral("alice", position, 1_000, encrypted_1000)
    """

    def __init__(
        self,
        ledger: Ledger,
        config: Optional[LendingConfig] = None,
        events: Optional[EventLog] = None,
    ):
        """
        Args:
            ledger: The ledger to operate on. The configured native asset is
                registered on it if missing.
            config: Lending configuration (defaults to LendingConfig())
            events: Event log to append to (a new one if not provided)
        """
        self.ledger = ledger
        self.config = config or LendingConfig()
        self.events = events if events is not None else EventLog()

        if self.config.native_asset not in ledger.assets:
            ledger.register_asset(native(
                self.config.native_asset,
                self.config.native_asset.title(),
                self.config.native_decimals,
            ))

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _execute(self, pending: PendingTransaction) -> Transaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.APPLIED:
            return self.ledger.transaction_log[-1]
        if result == ExecuteResult.ALREADY_APPLIED:
            raise DuplicateTransaction(f"Intent {pending.intent_id} already applied")

        reason = self.ledger.last_rejection or "rejected"
        if reason.startswith("insufficient funds"):
            raise InsufficientFunds(reason)
        if reason.startswith("wallet not registered"):
            raise WalletNotRegistered(reason)
        raise LedgerError(f"{pending.origin} rejected: {reason}")

    def _emit(
        self,
        kind: str,
        tx: Transaction,
        pool: str,
        position: Optional[str],
        owner: str,
        amount: int = 0,
        liquidator: Optional[str] = None,
    ) -> LendingEvent:
        event = LendingEvent(
            kind=kind,
            pool=pool,
            position=position,
            owner=owner,
            amount=amount,
            timestamp=tx.execution_time,
            liquidator=liquidator,
            exec_id=tx.exec_id,
        )
        self.events.append(event)
        logger.info("%s %s amount=%d (%s)", kind, position or pool, amount, tx.exec_id)
        return event

    def fund(self, wallet: str, amount: int) -> Transaction:
        """
        Issue native value from SYSTEM_WALLET into a wallet.

        Each call is a distinct issuance, so the contract id carries the
        ledger sequence and repeated equal fundings are not deduplicated.
        """
        origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, event_type="FUND")
        contract_id = f"fund:{wallet}:{len(self.ledger.transaction_log)}"
        pending = build_transaction(
            self.ledger,
            [Move(amount, self.config.native_asset, SYSTEM_WALLET, wallet, contract_id)],
            origin=origin,
        )
        return self._execute(pending)

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def initialize_pool(
        self,
        authority: str,
        collateral_asset: str,
        borrow_asset: str,
        ltv_ratio: int,
        interest_rate: int,
        liquidation_threshold: int,
    ) -> str:
        """Create a pool and its escrow wallet. Returns the pool address."""
        pending = compute_initialize_pool(
            self.ledger, authority, collateral_asset, borrow_asset,
            ltv_ratio, interest_rate, liquidation_threshold,
            settlement_asset=self.config.native_asset,
        )
        tx = self._execute(pending)
        address = pool_address(collateral_asset, borrow_asset)
        self._emit(POOL_INITIALIZED, tx, address, None, authority)
        return address

    def open_position(self, owner: str, pool: str) -> str:
        """Open an owner's position in a pool. Returns the position address."""
        pending = compute_open_position(
            self.ledger, owner, pool,
            storage_deposit=self.config.position_storage_deposit,
        )
        tx = self._execute(pending)
        address = position_address(pool, owner)
        self._emit(POSITION_OPENED, tx, pool, address, owner)
        return address

    def deposit_collateral(
        self, owner: str, position: str, amount: int, new_collateral: Ciphertext,
    ) -> Transaction:
        pending = compute_deposit_collateral(self.ledger, owner, position, amount, new_collateral)
        tx = self._execute(pending)
        self._emit(COLLATERAL_DEPOSITED, tx, self._pool_of(pending), position, owner, amount)
        return tx

    def borrow(
        self, owner: str, position: str, amount: int, new_debt: Ciphertext, proof: bytes,
    ) -> Transaction:
        pending = compute_borrow(
            self.ledger, owner, position, amount, new_debt, proof,
            allow_unsigned=self.config.allow_unsigned_borrow_proofs,
            binding_key=self.config.proof_binding_key,
        )
        tx = self._execute(pending)
        self._emit(BORROWED, tx, self._pool_of(pending), position, owner, amount)
        return tx

    def repay(
        self, owner: str, position: str, amount: int, new_debt: Ciphertext,
    ) -> Transaction:
        pending = compute_repay(self.ledger, owner, position, amount, new_debt)
        tx = self._execute(pending)
        self._emit(REPAID, tx, self._pool_of(pending), position, owner, amount)
        return tx

    def withdraw_collateral(
        self, owner: str, position: str, amount: int, new_collateral: Ciphertext, proof: bytes,
    ) -> Transaction:
        pending = compute_withdraw_collateral(
            self.ledger, owner, position, amount, new_collateral, proof,
        )
        tx = self._execute(pending)
        self._emit(COLLATERAL_WITHDRAWN, tx, self._pool_of(pending), position, owner, amount)
        return tx

    def liquidate(self, liquidator: str, position: str, proof: bytes) -> Transaction:
        """Liquidate an unhealthy position. Callable by anyone."""
        pending = compute_liquidate(
            self.ledger, liquidator, position, proof,
            escrow_min_balance=self.config.escrow_min_balance,
        )
        owner = load_position(self.ledger, position).owner
        tx = self._execute(pending)
        self._emit(
            POSITION_LIQUIDATED, tx, self._pool_of(pending), position, owner,
            swept_amount(pending), liquidator=liquidator,
        )
        return tx

    def close_position(self, owner: str, position: str) -> Transaction:
        pending = compute_close_position(self.ledger, owner, position)
        tx = self._execute(pending)
        self._emit(POSITION_CLOSED, tx, self._pool_of(pending), position, owner)
        return tx

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_pool(self, address: str) -> Pool:
        return load_pool(self.ledger, address)

    def get_position(self, address: str) -> Position:
        return load_position(self.ledger, address)

    def pool_stats(self, address: str) -> PoolStats:
        return compute_pool_stats(self.ledger, address)

    @staticmethod
    def _pool_of(pending: PendingTransaction) -> str:
        for rc in pending.record_changes:
            if rc.record_type == RECORD_TYPE_POSITION:
                return (rc.new_state or rc.old_state)["pool"]
        raise LedgerError(f"No position change in {pending!r}")
