"""
test_engine.py - Unit tests for LendingEngine

Tests:
- Native asset registration
- Each operation end to end (ledger state + emitted event)
- Ledger rejections surfaced as typed errors
- Configuration flowing into operations
"""

import pytest
from datetime import datetime

from confidential_ledger import (
    Ledger, LendingEngine, LendingConfig, EventLog, ExecuteResult,
    ZERO_CIPHERTEXT, escrow_address,
    InsufficientFunds, DuplicateTransaction, InvalidProof, LedgerError,
    WalletNotRegistered, PoolAlreadyExists, PositionHasDebt,
    POOL_INITIALIZED, POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED,
    REPAID, COLLATERAL_WITHDRAWN, POSITION_LIQUIDATED, POSITION_CLOSED,
    compute_deposit_collateral,
)

NATIVE = "LAMPORTS"


class TestSetup:

    def test_registers_native_asset(self):
        ledger = Ledger("t", datetime(2025, 1, 1))
        LendingEngine(ledger, LendingConfig(native_asset="GAS", native_decimals=6))
        assert ledger.get_asset("GAS").decimal_places == 6

    def test_keeps_existing_asset(self, basic_ledger):
        before = basic_ledger.get_asset(NATIVE)
        LendingEngine(basic_ledger)
        assert basic_ledger.get_asset(NATIVE) is before

    def test_fund_twice_is_not_deduplicated(self, engine):
        engine.fund("carol", 5)
        engine.fund("carol", 5)
        assert engine.ledger.get_balance("carol", NATIVE) == 10


class TestPoolAndPosition:

    def test_initialize_pool(self, engine, pool):
        assert engine.ledger.is_registered(escrow_address(pool))
        assert engine.get_pool(pool).ltv_ratio == 7500
        (event,) = engine.events.of_kind(POOL_INITIALIZED)
        assert event.pool == pool and event.position is None and event.owner == "admin"

    def test_initialize_twice(self, engine, pool):
        with pytest.raises(PoolAlreadyExists):
            engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)

    def test_open_position(self, engine, pool, position):
        assert engine.get_position(position).owner == "alice"
        assert engine.get_pool(pool).active_positions == 1
        (event,) = engine.events.of_kind(POSITION_OPENED)
        assert event.position == position

    def test_storage_deposit(self, basic_ledger):
        engine = LendingEngine(basic_ledger, LendingConfig(position_storage_deposit=25))
        engine.fund("alice", 100)
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        assert basic_ledger.get_balance(position, NATIVE) == 25
        engine.close_position("alice", position)
        assert basic_ledger.get_balance("alice", NATIVE) == 100


class TestOperations:

    def test_deposit(self, engine, pool, position, oracle):
        ct = oracle.encrypt(1_000)
        tx = engine.deposit_collateral("alice", position, 1_000, ct)
        assert engine.ledger.get_balance("alice", NATIVE) == 9_000
        assert engine.get_position(position).encrypted_collateral == ct
        assert engine.get_pool(pool).total_deposits == 1_000
        (event,) = engine.events.of_kind(COLLATERAL_DEPOSITED)
        assert event.amount == 1_000 and event.exec_id == tx.exec_id and event.pool == pool

    def test_deposit_insufficient_funds(self, engine, position, oracle):
        with pytest.raises(InsufficientFunds):
            engine.deposit_collateral("alice", position, 10_001, oracle.encrypt(10_001))
        assert not engine.events.of_kind(COLLATERAL_DEPOSITED)

    def test_borrow_and_repay(self, engine, pool, collateralized, oracle):
        current = engine.get_position(collateralized)
        engine.borrow("alice", collateralized, 500, oracle.encrypt(500), oracle.borrow_proof(current, 500))
        assert engine.ledger.get_balance("alice", NATIVE) == 9_500
        assert engine.pool_stats(pool).utilization_bps == 5_000

        engine.repay("alice", collateralized, 500, ZERO_CIPHERTEXT)
        assert engine.get_pool(pool).total_borrows == 0
        assert [e.kind for e in engine.events.for_position(collateralized)] == [
            POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED, REPAID,
        ]

    def test_borrow_rejects_unsigned_when_configured(self, basic_ledger, oracle):
        engine = LendingEngine(basic_ledger, LendingConfig(allow_unsigned_borrow_proofs=False))
        engine.fund("alice", 1_000)
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
        current = engine.get_position(position)
        with pytest.raises(InvalidProof):
            engine.borrow("alice", position, 100, oracle.encrypt(100), oracle.borrow_proof(current, 100))
        engine.borrow("alice", position, 100, oracle.encrypt(100), oracle.borrow_proof(current, 100, sign=True))

    def test_binding_key_from_config(self, basic_ledger, oracle):
        engine = LendingEngine(basic_ledger, LendingConfig(
            allow_unsigned_borrow_proofs=False, proof_binding_key=b"\x01\x02",
        ))
        engine.fund("alice", 1_000)
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
        current = engine.get_position(position)
        with pytest.raises(InvalidProof):
            engine.borrow("alice", position, 100, oracle.encrypt(100), oracle.borrow_proof(current, 100, sign=True))
        proof = oracle.borrow_proof(current, 100, sign=True, key=b"\x01\x02")
        engine.borrow("alice", position, 100, oracle.encrypt(100), proof)

    def test_withdraw(self, engine, pool, collateralized, oracle):
        current = engine.get_position(collateralized)
        engine.withdraw_collateral(
            "alice", collateralized, 400, oracle.encrypt(600), oracle.withdrawal_proof(current, 400),
        )
        assert engine.get_pool(pool).total_deposits == 600
        (event,) = engine.events.of_kind(COLLATERAL_WITHDRAWN)
        assert event.amount == 400

    def test_liquidate(self, engine, pool, collateralized, oracle):
        engine.ledger.register_wallet("keeper")
        current = engine.get_position(collateralized)
        engine.liquidate("keeper", collateralized, oracle.liquidation_proof(current))
        assert engine.ledger.get_balance("keeper", NATIVE) == 1_000
        assert not engine.get_position(collateralized).is_active
        (event,) = engine.events.of_kind(POSITION_LIQUIDATED)
        assert event.liquidator == "keeper" and event.owner == "alice" and event.amount == 1_000

    def test_liquidator_must_be_registered(self, engine, collateralized, oracle):
        current = engine.get_position(collateralized)
        with pytest.raises(WalletNotRegistered):
            engine.liquidate("stranger", collateralized, oracle.liquidation_proof(current))
        assert engine.get_position(collateralized).is_active

    def test_close(self, engine, pool, position):
        engine.close_position("alice", position)
        assert not engine.ledger.has_record(position)
        (event,) = engine.events.of_kind(POSITION_CLOSED)
        assert event.pool == pool

    def test_close_with_debt(self, engine, collateralized, oracle):
        current = engine.get_position(collateralized)
        engine.borrow("alice", collateralized, 100, oracle.encrypt(100), oracle.borrow_proof(current, 100))
        with pytest.raises(PositionHasDebt):
            engine.close_position("alice", collateralized)


class TestRejectionMapping:

    def test_stale_transition(self, engine, collateralized, oracle):
        stale = compute_deposit_collateral(engine.ledger, "alice", collateralized, 10, oracle.encrypt(1_010))
        engine.deposit_collateral("alice", collateralized, 20, oracle.encrypt(1_020))
        with pytest.raises(LedgerError, match="stale record state"):
            engine._execute(stale)

    def test_duplicate(self, engine, collateralized, oracle):
        pending = compute_deposit_collateral(engine.ledger, "alice", collateralized, 10, oracle.encrypt(1_010))
        assert engine.ledger.execute(pending) == ExecuteResult.APPLIED
        with pytest.raises(DuplicateTransaction):
            engine._execute(pending)

    def test_shared_event_log(self, basic_ledger):
        log = EventLog()
        engine = LendingEngine(basic_ledger, events=log)
        engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        assert len(log) == 1
