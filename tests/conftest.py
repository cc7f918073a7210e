"""
conftest.py - Shared pytest fixtures for confidential ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Basic ledgers (empty, funded)
- A LendingEngine with a SOL/USDC pool and an open position for alice
- A deterministic FakeOracle
- Snapshot utilities for atomicity checks
"""

import copy
import pytest
from datetime import datetime
from typing import Any, Dict

from confidential_ledger import (
    Ledger, LendingEngine, LendingConfig, EventLog,
    native,
)

from tests.fake_oracle import FakeOracle


NATIVE = "LAMPORTS"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def snapshot(ledger: Ledger) -> Dict[str, Any]:
    """Capture everything an operation could mutate."""
    return {
        "balances": {w: dict(b) for w, b in ledger.balances.items()},
        "records": copy.deepcopy(ledger.records),
        "wallets": set(ledger.registered_wallets),
        "log": len(ledger.transaction_log),
        "intents": set(ledger.seen_intent_ids),
    }


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", test_mode=True)


@pytest.fixture
def basic_ledger():
    """Ledger with the native asset and three wallets."""
    ledger = Ledger("test", datetime(2025, 1, 1), test_mode=True)
    ledger.register_asset(native(NATIVE, "Lamports"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.register_wallet("carol")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 base units."""
    basic_ledger.set_balance("alice", NATIVE, 10_000)
    return basic_ledger


# =============================================================================
# LENDING FIXTURES
# =============================================================================

@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def config():
    """Default configuration with no escrow reserve, so sweeps are easy to read."""
    return LendingConfig(escrow_min_balance=0)


@pytest.fixture
def engine(basic_ledger, config):
    """LendingEngine with alice and bob funded through system issuance."""
    engine = LendingEngine(basic_ledger, config, EventLog())
    engine.fund("alice", 10_000)
    engine.fund("bob", 10_000)
    return engine


@pytest.fixture
def pool(engine):
    """SOL/USDC pool: ltv 75%, rate 5%, liquidation threshold 80%."""
    return engine.initialize_pool("admin", "SOL", "USDC", 7500, 500, 8000)


@pytest.fixture
def position(engine, pool):
    """Open position for alice in the SOL/USDC pool."""
    return engine.open_position("alice", pool)


@pytest.fixture
def collateralized(engine, position, oracle):
    """Alice's position with 1,000 deposited."""
    engine.deposit_collateral("alice", position, 1_000, oracle.encrypt(1_000))
    return position
