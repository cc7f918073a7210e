#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Confidential Lending Step by Step

A walkthrough of a lending pool whose per-position amounts are ciphertexts.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - Ledger, engine, pool, escrow, positions
  4-6:  Borrowing    - Deposits, attestations, stale and forged proofs
  7-8:  Winding down - Repay with the zero ciphertext, close
  9-10: Liquidation  - Sweeping the escrow, exclusivity, conservation

Run:
    python demo.py                    # Interactive mode
    python demo.py --quick            # Run all steps without pausing
    python demo.py --config lending.yaml
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
import hashlib
import sys

from confidential_ledger import (
    Ledger, LendingEngine, Ciphertext, ZERO_CIPHERTEXT,
    InvalidProof, PositionHasDebt, PositionInactive,
    escrow_address, encode_borrow_proof, encode_liquidation_proof,
    load_config, configure_logging,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Parameters for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    alice_funds: int = 10_000
    bob_funds: int = 10_000

    ltv_ratio: int = 7500
    interest_rate: int = 500
    liquidation_threshold: int = 8000

    alice_deposit: int = 1_000
    alice_borrow: int = 500
    bob_deposit: int = 3_000
    bob_borrow: int = 2_000

    # Below the escrow balance at step 9 so the liquidation sweep is visible
    escrow_min_balance: int = 500


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def config_path():
    if "--config" in sys.argv:
        index = sys.argv.index("--config") + 1
        if index < len(sys.argv):
            return sys.argv[index]
    return None


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


_counter = 0


def encrypt(amount: int) -> Ciphertext:
    """Stand-in for the client's encryption: a fresh opaque 32-byte value."""
    global _counter
    _counter += 1
    return Ciphertext(hashlib.sha256(f"demo:{amount}:{_counter}".encode()).digest())


# ============================================================================
# SETUP
# ============================================================================

def step_01_engine():
    step_header(1, "Ledger and Engine",
        "A LendingEngine runs every operation against one ledger.")

    print("""
    The ledger holds native value (LAMPORTS) in wallets and stores pool and
    position records. The engine validates each operation, executes it
    atomically and appends a LendingEvent.
    """)
    wait_for_enter()

    config = load_config(config_path())
    if config_path() is None:
        config = replace(config, escrow_min_balance=CONFIG.escrow_min_balance)
    configure_logging(config.log_level)
    ledger = Ledger("demo", CONFIG.start_time)
    engine = LendingEngine(ledger, config)

    for wallet in ("alice", "bob", "keeper"):
        ledger.register_wallet(wallet)
    engine.fund("alice", CONFIG.alice_funds)
    engine.fund("bob", CONFIG.bob_funds)

    section_header("Configuration")
    print(f"Native asset:          {config.native_asset}")
    print(f"Escrow minimum:        {config.escrow_min_balance}")
    print(f"Unsigned borrow proofs {'accepted' if config.allow_unsigned_borrow_proofs else 'rejected'}")
    print(f"alice:                 {ledger.get_balance('alice', config.native_asset)}")
    print(f"bob:                   {ledger.get_balance('bob', config.native_asset)}")
    return engine


def step_02_pool(engine: LendingEngine):
    step_header(2, "Initializing a Pool",
        "One pool per (collateral, borrow) pair, with its own escrow wallet.")
    wait_for_enter()

    pool = engine.initialize_pool(
        "admin", "SOL", "USDC",
        CONFIG.ltv_ratio, CONFIG.interest_rate, CONFIG.liquidation_threshold,
    )
    state = engine.get_pool(pool)
    print(f"Pool address:   {pool}")
    print(f"Escrow wallet:  {escrow_address(pool)}")
    print(f"LTV:            {state.ltv_ratio / 100:.2f}%")
    print(f"Liq threshold:  {state.liquidation_threshold / 100:.2f}%")
    return pool


def step_03_positions(engine: LendingEngine, pool: str):
    step_header(3, "Opening Positions",
        "Each owner has at most one position per pool, starting at zero.")
    wait_for_enter()

    alice = engine.open_position("alice", pool)
    bob = engine.open_position("bob", pool)
    position = engine.get_position(alice)
    print(f"alice's position: {alice}")
    print(f"bob's position:   {bob}")
    print(f"Collateral:       {position.encrypted_collateral!r}")
    print(f"Debt:             {position.encrypted_debt!r}")
    print(f"Active positions: {engine.get_pool(pool).active_positions}")
    return alice, bob


# ============================================================================
# BORROWING
# ============================================================================

def step_04_deposit(engine: LendingEngine, pool: str, alice: str, bob: str):
    step_header(4, "Depositing Collateral",
        "Plaintext value moves into the escrow; the ciphertext is replaced.")
    wait_for_enter()

    engine.deposit_collateral("alice", alice, CONFIG.alice_deposit, encrypt(CONFIG.alice_deposit))
    engine.deposit_collateral("bob", bob, CONFIG.bob_deposit, encrypt(CONFIG.bob_deposit))

    stats = engine.pool_stats(pool)
    print(f"Total deposits:      {stats.total_deposits}")
    print(f"Available liquidity: {stats.available_liquidity}")
    print(f"alice's collateral:  {engine.get_position(alice).encrypted_collateral!r}")


def step_05_borrow(engine: LendingEngine, pool: str, alice: str):
    step_header(5, "Borrowing with an Attestation",
        "The oracle attests collateral * LTV >= debt + amount over the current ciphertexts.")

    print("""
    The proof carries the first 16 bytes of both ciphertexts, the amount and
    the LTV. The ledger checks the bindings and the amount; it never sees
    plaintext collateral or debt.
    """)
    wait_for_enter()

    current = engine.get_position(alice)
    proof = encode_borrow_proof(
        current.encrypted_collateral, current.encrypted_debt,
        CONFIG.alice_borrow, CONFIG.ltv_ratio, sign=True,
    )
    engine.borrow("alice", alice, CONFIG.alice_borrow, encrypt(CONFIG.alice_borrow), proof)

    stats = engine.pool_stats(pool)
    print(f"Total borrows: {stats.total_borrows}")
    print(f"Utilization:   {stats.utilization_bps / 100:.2f}%")


def step_06_stale_proof(engine: LendingEngine, alice: str):
    step_header(6, "Stale and Forged Proofs",
        "A proof is bound to the ciphertexts it was made for.")
    wait_for_enter()

    current = engine.get_position(alice)
    proof = encode_borrow_proof(current.encrypted_collateral, current.encrypted_debt, 100, CONFIG.ltv_ratio)

    engine.ledger.advance_time(CONFIG.start_time + timedelta(hours=1))
    engine.deposit_collateral("alice", alice, 50, encrypt(CONFIG.alice_deposit + 50))

    section_header("Reusing a proof after a deposit")
    try:
        engine.borrow("alice", alice, 100, encrypt(600), proof)
    except InvalidProof as e:
        print(f"Rejected: {e}")

    section_header("Asking for more than was attested")
    current = engine.get_position(alice)
    proof = encode_borrow_proof(current.encrypted_collateral, current.encrypted_debt, 100, CONFIG.ltv_ratio)
    try:
        engine.borrow("alice", alice, 400, encrypt(900), proof)
    except InvalidProof as e:
        print(f"Rejected: {e}")


# ============================================================================
# WINDING DOWN
# ============================================================================

def step_07_repay(engine: LendingEngine, pool: str, alice: str):
    step_header(7, "Repaying",
        "Repaying in full sets the debt to the canonical zero ciphertext.")
    wait_for_enter()

    try:
        engine.close_position("alice", alice)
    except PositionHasDebt as e:
        print(f"Close refused: {e}")

    engine.repay("alice", alice, CONFIG.alice_borrow, ZERO_CIPHERTEXT)
    print(f"Total borrows: {engine.get_pool(pool).total_borrows}")


def step_08_close(engine: LendingEngine, pool: str, alice: str):
    step_header(8, "Closing",
        "A position with zero debt can be closed and its record deleted.")
    wait_for_enter()

    engine.close_position("alice", alice)
    print(f"Record exists:    {engine.ledger.has_record(alice)}")
    print(f"Active positions: {engine.get_pool(pool).active_positions}")


# ============================================================================
# LIQUIDATION
# ============================================================================

def step_09_liquidate(engine: LendingEngine, pool: str, bob: str):
    step_header(9, "Liquidation",
        "Anyone holding a liquidation attestation can deactivate the position.")
    wait_for_enter()

    current = engine.get_position(bob)
    proof = encode_borrow_proof(
        current.encrypted_collateral, current.encrypted_debt,
        CONFIG.bob_borrow, CONFIG.ltv_ratio, sign=True,
    )
    engine.borrow("bob", bob, CONFIG.bob_borrow, encrypt(CONFIG.bob_borrow), proof)

    current = engine.get_position(bob)
    proof = encode_liquidation_proof(
        current.encrypted_collateral, current.encrypted_debt, CONFIG.liquidation_threshold,
    )
    native = engine.config.native_asset
    before = engine.ledger.get_balance("keeper", native)
    engine.liquidate("keeper", bob, proof)

    print(f"keeper received:  {engine.ledger.get_balance('keeper', native) - before}")
    print(f"Escrow left:      {engine.ledger.get_balance(escrow_address(pool), native)}")
    print(f"bob is active:    {engine.get_position(bob).is_active}")

    section_header("A second liquidation")
    try:
        engine.liquidate("keeper", bob, proof)
    except PositionInactive as e:
        print(f"Rejected: {e}")


def step_10_conservation(engine: LendingEngine):
    step_header(10, "Conservation and History",
        "Value issued by the system wallet is accounted for everywhere.")
    wait_for_enter()

    result = engine.ledger.verify_conservation()
    print(f"Conservation valid: {result['valid']}")
    print(f"Supplies:           {result['supplies']}")

    section_header("Event log")
    for event in engine.events:
        print(f"  {event.timestamp:%H:%M}  {event.kind:<22} {event.owner:<6} {event.amount}")


def main():
    engine = step_01_engine()
    pool = step_02_pool(engine)
    alice, bob = step_03_positions(engine, pool)
    step_04_deposit(engine, pool, alice, bob)
    step_05_borrow(engine, pool, alice)
    step_06_stale_proof(engine, alice)
    step_07_repay(engine, pool, alice)
    step_08_close(engine, pool, alice)
    step_09_liquidate(engine, pool, bob)
    step_10_conservation(engine)

    print(f"\n{'='*70}")
    print("Done. Run the tests with: pytest tests/")
    print(f"{'='*70}")


if __name__ == "__main__":
    main()
