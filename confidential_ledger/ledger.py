"""
ledger.py - Stateful Host Ledger

The Ledger class is the central state manager for the confidential lending system.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (every move and record change, or none)
    - Maintains wallet balances of the native asset and the record store
    - Rejects record changes computed against stale state
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import logging

from .core import (
    # Types
    Asset, Move, Transaction, PendingTransaction, RecordChange,
    ExecuteResult, BalanceMap, RecordState,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    LedgerError, AssetNotRegistered, WalletNotRegistered, RecordNotFound,
)

logger = logging.getLogger(__name__)


class Ledger:
    """
    Host ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against registrations,
          balance constraints, record concurrency and timestamps before the
          first write. A rejected transaction leaves no trace in state.
        - Always logs: Every applied transaction is recorded in the audit trail.

    Thread Safety:
        Not thread-safe. Callers serialize access, one transaction at a time.

    Example:
        ledger = Ledger("main")
        ledger.register_asset(native("LAMPORTS", "Lamports"))
        ledger.register_wallet("alice")

        tx = build_transaction(ledger, [
            Move(1_000, "LAMPORTS", SYSTEM_WALLET, "alice", "airdrop")
        ])
        result = ledger.execute(tx)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, BalanceMap] = {}
        self.assets: Dict[str, Asset] = {}
        self.records: Dict[str, RecordState] = {}
        self.record_types: Dict[str, str] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode
        self._next_sequence: int = 0

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, asset_symbol: str) -> int:
        """
        Get the balance of an asset in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            AssetNotRegistered: If asset is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if asset_symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {asset_symbol} not registered")
        return self.balances[wallet_id].get(asset_symbol, 0)

    def get_record(self, address: str) -> RecordState:
        """
        Get a deep copy of the record stored at an address.

        The returned dictionary can be mutated freely without affecting the ledger.

        Raises:
            RecordNotFound: If nothing is stored at the address
        """
        if address not in self.records:
            raise RecordNotFound(f"No record at {address}")
        return copy.deepcopy(self.records[address])

    def has_record(self, address: str) -> bool:
        return address in self.records

    def list_records(self, record_type: Optional[str] = None) -> List[str]:
        """List record addresses, optionally filtered by record type."""
        return sorted(
            address for address, rtype in self.record_types.items()
            if record_type is None or rtype == record_type
        )

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def get_asset(self, symbol: str) -> Asset:
        if symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {symbol} not registered")
        return self.assets[symbol]

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def total_supply(self, asset_symbol: str) -> int:
        """
        Total quantity of an asset across all wallets, system wallet included.

        Raises:
            AssetNotRegistered: If asset is not registered
        """
        if asset_symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {asset_symbol} not registered")
        return sum(self.balances[w].get(asset_symbol, 0) for w in sorted(self.registered_wallets))

    def verify_conservation(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that value is conserved for all assets.

        Every move debits one wallet and credits another, so the sum of all
        balances (system wallet included) is zero for an asset issued only
        through moves. With expected_supplies, checks the sums against it.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Current total for each asset
            - 'discrepancies': List[Dict] - unit, expected, actual per violation
        """
        supplies = {}
        discrepancies = []
        expected_supplies = expected_supplies or {}

        for symbol in self.assets:
            supplies[symbol] = self.total_supply(symbol)
            expected = expected_supplies.get(symbol, 0)
            if supplies[symbol] != expected:
                discrepancies.append({
                    'asset': symbol,
                    'expected': expected,
                    'actual': supplies[symbol],
                })

        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_asset(self, asset: Asset) -> None:
        """
        Register a new asset in the ledger.

        Raises:
            ValueError: If asset symbol is already registered
        """
        if asset.symbol in self.assets:
            raise ValueError(f"Asset {asset.symbol} already registered")
        self.assets[asset.symbol] = asset
        logger.debug("Registered asset %s (%s)", asset.symbol, asset.name)

    def set_balance(self, wallet_id: str, asset_symbol: str, quantity: int) -> None:
        """
        Set a wallet's balance directly.

        WARNING: This bypasses transaction execution and is only available in
        test mode. Production code funds wallets with moves from SYSTEM_WALLET.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if asset_symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {asset_symbol} not registered")
        self.balances[wallet_id][asset_symbol] = int(quantity)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves and record changes succeed together or all fail together.
        Every check runs before the first write, so a rejection needs no
        rollback. Execution is idempotent on intent_id.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            logger.info("ALREADY_APPLIED: intent_id=%s", pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            self.last_rejection = reason
            logger.info("REJECTED %s: %s", pending.origin, reason)
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            record_changes=pending.record_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            wallets_to_create=pending.wallets_to_create,
        )

        for wallet_id in tx.wallets_to_create:
            self.register_wallet(wallet_id)
        self._execute_moves(tx.moves)
        self._apply_record_changes(tx.record_changes)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        logger.debug("APPLIED %r", tx)
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Wallet creation (no wallet registered twice)
        3. Asset and wallet registration for every move
        4. Record concurrency (creates target empty addresses, updates and
           deletes target records still equal to their old_state)
        5. Balance constraint validation (min/max balance limits)

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        new_wallets = set()
        for wallet_id in pending.wallets_to_create:
            if wallet_id in self.registered_wallets or wallet_id in new_wallets:
                return False, f"wallet already registered: {wallet_id}"
            new_wallets.add(wallet_id)

        for move in pending.moves:
            if move.asset_symbol not in self.assets:
                return False, f"asset not registered: {move.asset_symbol}"
            if not self.is_registered(move.source) and move.source not in new_wallets:
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest) and move.dest not in new_wallets:
                return False, f"wallet not registered: {move.dest}"

        touched = set()
        for rc in pending.record_changes:
            if rc.address in touched:
                return False, f"record changed twice: {rc.address}"
            touched.add(rc.address)
            if rc.is_create:
                if rc.address in self.records:
                    return False, f"record already exists: {rc.address}"
                continue
            if rc.address not in self.records:
                return False, f"record not found: {rc.address}"
            if self.record_types[rc.address] != rc.record_type:
                return False, f"record type mismatch at {rc.address}"
            if self.records[rc.address] != rc.old_state:
                return False, f"stale record state: {rc.address}"

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.asset_symbol)] -= move.quantity
            net[(move.dest, move.asset_symbol)] += move.quantity

        # SYSTEM_WALLET is exempt from balance validation (issuance/redemption)
        for (wallet, symbol), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances.get(wallet, {}).get(symbol, 0)
            proposed = current + delta
            asset = self.assets[symbol]
            if proposed < asset.min_balance:
                return False, f"insufficient funds: {wallet} {symbol}: {proposed} < min {asset.min_balance}"
            if proposed > asset.max_balance:
                return False, f"{wallet} {symbol}: {proposed} > max {asset.max_balance}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances."""
        for move in moves:
            self.balances[move.source][move.asset_symbol] -= move.quantity
            self.balances[move.dest][move.asset_symbol] += move.quantity

    def _apply_record_changes(self, record_changes: Tuple[RecordChange, ...]) -> None:
        """Store, replace or delete records. Validation has already run."""
        for rc in record_changes:
            if rc.is_delete:
                del self.records[rc.address]
                del self.record_types[rc.address]
            else:
                self.records[rc.address] = copy.deepcopy(rc.new_state)
                self.record_types[rc.address] = rc.record_type

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned._test_mode = self._test_mode
        cloned._next_sequence = self._next_sequence
        cloned.last_rejection = self.last_rejection

        cloned.assets = dict(self.assets)
        cloned.records = copy.deepcopy(self.records)
        cloned.record_types = dict(self.record_types)
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)

        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(int, bals)

        return cloned
