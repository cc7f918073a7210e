"""
test_lending_lifecycle.py - End-to-end lending scenario tests

Tests complete position lifecycles:
- Deposit, borrow, repay and close
- Liquidation of one borrower in a shared pool
- Multi-day activity with replayable event history
- Driving the ledger directly through transact()
- Engine configured from a YAML file
"""

import pytest
from datetime import datetime, timedelta

from confidential_ledger import (
    Ledger, LendingEngine, LendingConfig, ExecuteResult,
    Ciphertext, ZERO_CIPHERTEXT, PositionHasDebt, InsufficientLiquidity,
    escrow_address, load_config, native, transact,
    POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED, REPAID, POSITION_CLOSED,
    POSITION_LIQUIDATED,
)

from tests.fake_oracle import FakeOracle

NATIVE = "LAMPORTS"


def make_engine(config=None, start=datetime(2025, 1, 1)):
    ledger = Ledger("main", start)
    engine = LendingEngine(ledger, config or LendingConfig(escrow_min_balance=0))
    for wallet in ("alice", "bob", "keeper"):
        ledger.register_wallet(wallet)
    engine.fund("alice", 10_000)
    engine.fund("bob", 10_000)
    return engine


class TestBorrowerLifecycle:
    """Deposit, borrow, repay, close."""

    def test_full_cycle(self):
        engine = make_engine()
        oracle = FakeOracle()
        ledger = engine.ledger

        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)

        engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
        current = engine.get_position(position)
        engine.borrow("alice", position, 500, oracle.encrypt(500), oracle.borrow_proof(current, 500))

        stats = engine.pool_stats(pool)
        assert stats.total_deposits == 1_000
        assert stats.total_borrows == 500
        assert stats.utilization_bps == 5_000
        assert stats.available_liquidity == 500

        with pytest.raises(PositionHasDebt):
            engine.close_position("alice", position)

        engine.repay("alice", position, 500, ZERO_CIPHERTEXT)
        assert engine.get_pool(pool).total_borrows == 0

        engine.close_position("alice", position)
        assert not ledger.has_record(position)
        assert engine.get_pool(pool).active_positions == 0

        # Collateral stays in the escrow until withdrawn
        assert ledger.get_balance("alice", NATIVE) == 9_000
        assert ledger.get_balance(escrow_address(pool), NATIVE) == 1_000
        assert ledger.verify_conservation()["valid"]

        assert [e.kind for e in engine.events.for_position(position)] == [
            POSITION_OPENED, COLLATERAL_DEPOSITED, BORROWED, REPAID, POSITION_CLOSED,
        ]

    def test_withdraw_before_close(self):
        engine = make_engine()
        oracle = FakeOracle()
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)

        engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
        current = engine.get_position(position)
        engine.withdraw_collateral(
            "alice", position, 1_000, oracle.encrypt(0), oracle.withdrawal_proof(current, 1_000),
        )
        engine.close_position("alice", position)

        assert engine.ledger.get_balance("alice", NATIVE) == 10_000
        assert engine.get_pool(pool).total_deposits == 0

    def test_reopen_after_close(self):
        engine = make_engine()
        oracle = FakeOracle()
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        engine.close_position("alice", position)

        reopened = engine.open_position("alice", pool)
        assert reopened == position
        assert engine.get_position(reopened).encrypted_collateral == ZERO_CIPHERTEXT
        engine.deposit_collateral("alice", reopened, 10, oracle.encrypt(10))

    def test_open_close_repeated_at_one_time(self):
        engine = make_engine()
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)

        for _ in range(3):
            position = engine.open_position("alice", pool)
            engine.close_position("alice", position)

        assert engine.get_pool(pool).active_positions == 0
        assert len(engine.events.of_kind(POSITION_CLOSED)) == 3

    def test_identical_borrow_after_full_repay(self):
        engine = make_engine()
        oracle = FakeOracle()
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
        debt = Ciphertext(b"\x09" * 32)

        for _ in range(2):
            current = engine.get_position(position)
            engine.borrow("alice", position, 500, debt, oracle.borrow_proof(current, 500))
            engine.repay("alice", position, 500, ZERO_CIPHERTEXT)

        assert len(engine.events.of_kind(BORROWED)) == 2
        assert engine.get_pool(pool).total_borrows == 0
        assert engine.ledger.get_balance("alice", NATIVE) == 9_000


class TestSharedPoolLiquidation:
    """Two borrowers share an escrow; one is liquidated."""

    def test_liquidation_sweeps_the_shared_escrow(self):
        engine = make_engine(LendingConfig(escrow_min_balance=100))
        oracle = FakeOracle()
        ledger = engine.ledger
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        escrow = escrow_address(pool)

        alice = engine.open_position("alice", pool)
        bob = engine.open_position("bob", pool)
        engine.deposit_collateral("alice", alice, 1_000, oracle.encrypt(1_000))
        engine.deposit_collateral("bob", bob, 2_000, oracle.encrypt(2_000))
        engine.borrow("alice", alice, 700, oracle.encrypt(700), oracle.borrow_proof(engine.get_position(alice), 700))
        assert ledger.get_balance(escrow, NATIVE) == 2_300

        engine.liquidate("keeper", alice, oracle.liquidation_proof(engine.get_position(alice)))

        assert ledger.get_balance("keeper", NATIVE) == 2_200
        assert ledger.get_balance(escrow, NATIVE) == 100
        assert not engine.get_position(alice).is_active
        assert engine.get_position(bob).is_active
        assert engine.get_pool(pool).active_positions == 1

        # bob's later withdrawal is limited by what is left in the escrow
        current = engine.get_position(bob)
        with pytest.raises(InsufficientLiquidity):
            engine.withdraw_collateral(
                "bob", bob, 2_000, oracle.encrypt(0), oracle.withdrawal_proof(current, 2_000),
            )

        (event,) = engine.events.of_kind(POSITION_LIQUIDATED)
        assert event.amount == 2_200 and event.liquidator == "keeper"
        assert ledger.verify_conservation()["valid"]


class TestMultiDay:

    def test_activity_over_a_week(self):
        start = datetime(2025, 3, 3)
        engine = make_engine(start=start)
        oracle = FakeOracle()
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)

        for day in range(5):
            engine.ledger.advance_time(start + timedelta(days=day))
            engine.deposit_collateral("alice", position, 200, oracle.encrypt(200 * (day + 1)))

        assert engine.get_pool(pool).total_deposits == 1_000
        assert engine.get_position(position).last_update == start + timedelta(days=4)

        stamps = [e.timestamp for e in engine.events.of_kind(COLLATERAL_DEPOSITED)]
        assert stamps == sorted(stamps)
        assert len(engine.ledger.transaction_log) == len({tx.exec_id for tx in engine.ledger.transaction_log})


class TestDirectTransact:
    """The router can drive a ledger without the engine."""

    def test_router_lifecycle(self):
        engine = make_engine()
        oracle = FakeOracle()
        ledger = engine.ledger
        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)

        assert ledger.execute(transact(
            ledger, position, "DEPOSIT", "alice", amount=800, new_collateral=oracle.encrypt(800),
        )) == ExecuteResult.APPLIED

        current = engine.get_position(position)
        assert ledger.execute(transact(
            ledger, position, "BORROW", "alice",
            amount=200, new_debt=oracle.encrypt(200), proof=oracle.borrow_proof(current, 200),
        )) == ExecuteResult.APPLIED

        assert ledger.execute(transact(
            ledger, position, "REPAY", "alice", amount=200, new_debt=ZERO_CIPHERTEXT,
        )) == ExecuteResult.APPLIED

        assert ledger.execute(transact(ledger, position, "CLOSE", "alice")) == ExecuteResult.APPLIED
        assert engine.get_pool(pool).total_deposits == 800
        assert engine.get_pool(pool).total_borrows == 0


class TestConfiguredEngine:

    def test_yaml_config_drives_engine(self, tmp_path, monkeypatch):
        for name in ("CONFLEDGER_ESCROW_MIN_BALANCE", "CONFLEDGER_POSITION_STORAGE_DEPOSIT"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "lending.yaml"
        path.write_text("escrow_min_balance: 50\nposition_storage_deposit: 20\n")

        ledger = Ledger("configured", datetime(2025, 1, 1))
        ledger.register_asset(native(NATIVE, "Lamports"))
        engine = LendingEngine(ledger, load_config(path))
        ledger.register_wallet("alice")
        ledger.register_wallet("keeper")
        engine.fund("alice", 1_000)
        oracle = FakeOracle()

        pool = engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)
        position = engine.open_position("alice", pool)
        assert ledger.get_balance(position, NATIVE) == 20

        engine.deposit_collateral("alice", position, 500, oracle.encrypt(500))
        engine.liquidate("keeper", position, oracle.liquidation_proof(engine.get_position(position)))
        assert ledger.get_balance("keeper", NATIVE) == 450

        engine.close_position("alice", position)
        assert ledger.get_balance("alice", NATIVE) == 500
