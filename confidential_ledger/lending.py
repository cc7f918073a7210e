"""
lending.py - Confidential Lending Transitions

This module turns each lending operation into a PendingTransaction using the
pure function architecture of the rest of the package.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. ADAPTERS (records.load_pool, records.load_position):
   - The only reads of pool and position state

2. PRECONDITION HELPERS (_check_amount, _load_owned_position):
   - Input validation, ownership and activity checks, raising typed errors

3. CONVENIENCE FUNCTIONS (compute_*):
   - Take (view, caller, address, ...) and return a PendingTransaction
   - Never mutate anything; the Ledger applies the result atomically

4. ROUTER (transact):
   - Single entry point keyed on event_type

Ordering inside every operation:
    input validation -> position/ownership/activity -> attestation
    -> escrow liquidity -> moves + record changes

Every record change carries the exact state it was computed from, so the
ledger rejects the whole transaction if a position or pool changed between
compute and execute. A proof therefore only ever authorizes a transition
on the ciphertext it was bound to.

Plaintext amounts move native value and update the public pool aggregates.
Collateral and debt ciphertexts are replaced wholesale by the caller's new
ciphertexts; the ledger never derives them.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, List, Optional

from .attestation import (
    verify_borrow_proof, verify_withdrawal_proof, verify_liquidation_proof,
)
from .ciphertext import Ciphertext, as_ciphertext
from .core import (
    LedgerView, Move, PendingTransaction, RecordChange, TransactionOrigin, OriginType,
    RECORD_TYPE_POOL, RECORD_TYPE_POSITION, U64_MAX, DEFAULT_ESCROW_MIN_BALANCE,
    InvalidAmount, Unauthorized, InvalidProof, PositionHealthy, InsufficientLiquidity,
    PositionHasDebt, PositionInactive, PoolInactive,
    PoolAlreadyExists, PositionAlreadyExists,
    build_transaction,
)
from .records import (
    Pool, Position,
    pool_address, position_address, escrow_address,
    load_pool, load_position, pool_state, position_state,
    checked_add, saturating_sub,
)


# Event type constants (also used as TransactionOrigin.event_type)
EVENT_INITIALIZE_POOL = "INITIALIZE_POOL"
EVENT_OPEN_POSITION = "OPEN_POSITION"
EVENT_DEPOSIT = "DEPOSIT"
EVENT_BORROW = "BORROW"
EVENT_REPAY = "REPAY"
EVENT_WITHDRAW = "WITHDRAW"
EVENT_LIQUIDATE = "LIQUIDATE"
EVENT_CLOSE = "CLOSE"


# ============================================================================
# HELPERS
# ============================================================================

def _check_amount(amount: int) -> None:
    """Amounts are plaintext u64 base units and must be positive."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an int, got {type(amount)}")
    if amount <= 0:
        raise InvalidAmount(f"amount must be greater than zero, got {amount}")
    if amount > U64_MAX:
        raise InvalidAmount(f"amount exceeds u64: {amount}")


def _load_owned_position(
    view: LedgerView,
    address: str,
    caller: str,
    require_active: bool = True,
) -> Position:
    position = load_position(view, address)
    if position.owner != caller:
        raise Unauthorized(f"{caller} does not own position {address}")
    if require_active and not position.is_active:
        raise PositionInactive(f"Position {address} is not active")
    return position


def _origin(caller: str, address: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=caller,
        record=address,
        event_type=event_type,
    )


def _pool_change(old: Pool, new: Pool) -> RecordChange:
    return RecordChange(
        address=old.address,
        record_type=RECORD_TYPE_POOL,
        old_state=pool_state(old),
        new_state=pool_state(new),
    )


def _position_change(old: Optional[Position], new: Optional[Position]) -> RecordChange:
    return RecordChange(
        address=(new or old).address,
        record_type=RECORD_TYPE_POSITION,
        old_state=position_state(old) if old is not None else None,
        new_state=position_state(new) if new is not None else None,
    )


def _escrow_liquidity(view: LedgerView, pool: Pool) -> int:
    return view.get_balance(pool.escrow, pool.settlement_asset)


def _bump(pool: Pool, **changes) -> Pool:
    """Next pool state; every write advances the version."""
    return replace(pool, version=pool.version + 1, **changes)


# ============================================================================
# POOL AND POSITION CREATION
# ============================================================================

def compute_initialize_pool(
    view: LedgerView,
    authority: str,
    collateral_asset: str,
    borrow_asset: str,
    ltv_ratio: int,
    interest_rate: int,
    liquidation_threshold: int,
    settlement_asset: str,
) -> PendingTransaction:
    """
    Create the pool for a collateral/borrow market with zero aggregates.

    The pool escrow wallet is registered in the same transaction.

    Args:
        view: Read-only ledger access
        authority: Creator of the pool (recorded, not otherwise privileged)
        collateral_asset: Collateral asset identifier (address seed)
        borrow_asset: Borrowed asset identifier (address seed)
        ltv_ratio: Maximum loan-to-value in basis points
        interest_rate: Annual interest rate in basis points (informational)
        liquidation_threshold: Liquidation threshold in basis points
        settlement_asset: Native ledger asset that every transfer moves

    Raises:
        PoolAlreadyExists: If the market already has a pool
        ValueError: If a risk parameter is outside 0..10000
    """
    address = pool_address(collateral_asset, borrow_asset)
    if view.has_record(address):
        raise PoolAlreadyExists(f"Pool {collateral_asset}/{borrow_asset} already exists at {address}")

    escrow = escrow_address(address)
    pool = Pool(
        address=address,
        authority=authority,
        collateral_asset=collateral_asset,
        borrow_asset=borrow_asset,
        settlement_asset=settlement_asset,
        escrow=escrow,
        ltv_ratio=ltv_ratio,
        interest_rate=interest_rate,
        liquidation_threshold=liquidation_threshold,
    )
    change = RecordChange(
        address=address,
        record_type=RECORD_TYPE_POOL,
        old_state=None,
        new_state=pool_state(pool),
    )
    wallets = () if view.is_registered(escrow) else (escrow,)
    return build_transaction(
        view, [], [change],
        origin=_origin(authority, address, EVENT_INITIALIZE_POOL),
        wallets_to_create=wallets,
    )


def compute_open_position(
    view: LedgerView,
    owner: str,
    pool_addr: str,
    storage_deposit: int = 0,
) -> PendingTransaction:
    """
    Open an owner's position in a pool with zero ciphertexts.

    The position's own wallet is registered if needed and, when
    storage_deposit is positive, funded by the owner. close returns it.

    Raises:
        PoolNotFound: If no pool is stored at pool_addr
        PoolInactive: If the pool is not active
        PositionAlreadyExists: If the owner already has a position in the pool
    """
    if isinstance(storage_deposit, bool) or not isinstance(storage_deposit, int) or storage_deposit < 0:
        raise ValueError(f"storage_deposit must be a non-negative int, got {storage_deposit!r}")

    pool = load_pool(view, pool_addr)
    if not pool.is_active:
        raise PoolInactive(f"Pool {pool_addr} is not active")

    address = position_address(pool_addr, owner)
    if view.has_record(address):
        raise PositionAlreadyExists(f"{owner} already has position {address}")

    position = Position(
        address=address,
        owner=owner,
        pool=pool_addr,
        last_update=view.current_time,
        version=pool.version + 1,
    )
    new_pool = _bump(pool, active_positions=checked_add(pool.active_positions, 1))

    moves = []
    if storage_deposit > 0:
        moves.append(Move(
            quantity=storage_deposit,
            asset_symbol=pool.settlement_asset,
            source=owner,
            dest=address,
            contract_id=f"storage:{address}",
        ))

    wallets = () if view.is_registered(address) else (address,)
    return build_transaction(
        view, moves,
        [_position_change(None, position), _pool_change(pool, new_pool)],
        origin=_origin(owner, address, EVENT_OPEN_POSITION),
        wallets_to_create=wallets,
    )


# ============================================================================
# COLLATERAL
# ============================================================================

def compute_deposit_collateral(
    view: LedgerView,
    caller: str,
    position_addr: str,
    amount: int,
    new_collateral: Ciphertext,
) -> PendingTransaction:
    """
    Deposit collateral: move amount from the owner into the pool escrow and
    replace the collateral ciphertext.

    An underfunded owner is caught by the ledger, which rejects the whole
    transaction.

    Raises:
        InvalidAmount, PositionNotFound, Unauthorized, PositionInactive
        ValueError: If new_collateral is not 32 bytes
    """
    _check_amount(amount)
    new_collateral = as_ciphertext(new_collateral)
    position = _load_owned_position(view, position_addr, caller)
    pool = load_pool(view, position.pool)

    new_pool = _bump(pool, total_deposits=checked_add(pool.total_deposits, amount))
    new_position = replace(
        position,
        encrypted_collateral=new_collateral,
        last_update=view.current_time,
        version=new_pool.version,
    )

    moves = [Move(
        quantity=amount,
        asset_symbol=pool.settlement_asset,
        source=caller,
        dest=pool.escrow,
        contract_id=f"deposit:{position_addr}",
    )]
    return build_transaction(
        view, moves,
        [_position_change(position, new_position), _pool_change(pool, new_pool)],
        origin=_origin(caller, position_addr, EVENT_DEPOSIT),
    )


def compute_withdraw_collateral(
    view: LedgerView,
    caller: str,
    position_addr: str,
    amount: int,
    new_collateral: Ciphertext,
    proof: bytes,
) -> PendingTransaction:
    """
    Withdraw collateral against an attestation that the position stays healthy.

    The proof is checked against the position's stored ciphertexts before
    liquidity is considered.

    Raises:
        InvalidAmount, PositionNotFound, Unauthorized, PositionInactive
        InvalidProof: If the withdrawal attestation does not verify
        InsufficientLiquidity: If the escrow holds less than amount
    """
    _check_amount(amount)
    new_collateral = as_ciphertext(new_collateral)
    position = _load_owned_position(view, position_addr, caller)

    ok, reason = verify_withdrawal_proof(proof, position, amount)
    if not ok:
        raise InvalidProof(f"Withdrawal proof rejected for {position_addr}: {reason}")

    pool = load_pool(view, position.pool)
    available = _escrow_liquidity(view, pool)
    if available < amount:
        raise InsufficientLiquidity(f"Escrow holds {available}, withdrawal needs {amount}")

    new_pool = _bump(pool, total_deposits=saturating_sub(pool.total_deposits, amount))
    new_position = replace(
        position,
        encrypted_collateral=new_collateral,
        last_update=view.current_time,
        version=new_pool.version,
    )

    moves = [Move(
        quantity=amount,
        asset_symbol=pool.settlement_asset,
        source=pool.escrow,
        dest=caller,
        contract_id=f"withdraw:{position_addr}",
    )]
    return build_transaction(
        view, moves,
        [_position_change(position, new_position), _pool_change(pool, new_pool)],
        origin=_origin(caller, position_addr, EVENT_WITHDRAW),
    )


# ============================================================================
# DEBT
# ============================================================================

def compute_borrow(
    view: LedgerView,
    caller: str,
    position_addr: str,
    amount: int,
    new_debt: Ciphertext,
    proof: bytes,
    allow_unsigned: bool = True,
    binding_key: Optional[bytes] = None,
) -> PendingTransaction:
    """
    Borrow from the pool escrow against an attestation that
    collateral * LTV >= debt + amount.

    Args:
        view: Read-only ledger access
        caller: Must be the position owner
        position_addr: Address of the position
        amount: Plaintext amount to borrow (base units)
        new_debt: Debt ciphertext after the borrow
        proof: Borrow attestation bound to the current ciphertexts and amount
        allow_unsigned: Accept proofs with an all-zero signature
        binding_key: HMAC key for signed proofs (plain SHA-256 when None)

    Raises:
        InvalidAmount, PositionNotFound, Unauthorized, PositionInactive
        InvalidProof: If the borrow attestation does not verify
        InsufficientLiquidity: If the escrow holds less than amount
    """
    _check_amount(amount)
    new_debt = as_ciphertext(new_debt)
    position = _load_owned_position(view, position_addr, caller)

    ok, reason = verify_borrow_proof(
        proof, position, amount, allow_unsigned=allow_unsigned, key=binding_key,
    )
    if not ok:
        raise InvalidProof(f"Borrow proof rejected for {position_addr}: {reason}")

    pool = load_pool(view, position.pool)
    available = _escrow_liquidity(view, pool)
    if available < amount:
        raise InsufficientLiquidity(f"Escrow holds {available}, borrow needs {amount}")

    new_pool = _bump(pool, total_borrows=checked_add(pool.total_borrows, amount))
    new_position = replace(
        position, encrypted_debt=new_debt, last_update=view.current_time, version=new_pool.version,
    )

    moves = [Move(
        quantity=amount,
        asset_symbol=pool.settlement_asset,
        source=pool.escrow,
        dest=caller,
        contract_id=f"borrow:{position_addr}",
    )]
    return build_transaction(
        view, moves,
        [_position_change(position, new_position), _pool_change(pool, new_pool)],
        origin=_origin(caller, position_addr, EVENT_BORROW),
    )


def compute_repay(
    view: LedgerView,
    caller: str,
    position_addr: str,
    amount: int,
    new_debt: Ciphertext,
) -> PendingTransaction:
    """
    Repay debt into the pool escrow and replace the debt ciphertext.

    total_borrows is decremented with saturation, so overpaying never drives
    it below zero. No attestation is needed: repaying cannot make a position
    less healthy.
    """
    _check_amount(amount)
    new_debt = as_ciphertext(new_debt)
    position = _load_owned_position(view, position_addr, caller)
    pool = load_pool(view, position.pool)

    new_pool = _bump(pool, total_borrows=saturating_sub(pool.total_borrows, amount))
    new_position = replace(
        position, encrypted_debt=new_debt, last_update=view.current_time, version=new_pool.version,
    )

    moves = [Move(
        quantity=amount,
        asset_symbol=pool.settlement_asset,
        source=caller,
        dest=pool.escrow,
        contract_id=f"repay:{position_addr}",
    )]
    return build_transaction(
        view, moves,
        [_position_change(position, new_position), _pool_change(pool, new_pool)],
        origin=_origin(caller, position_addr, EVENT_REPAY),
    )


# ============================================================================
# LIQUIDATION AND CLOSE
# ============================================================================

def compute_liquidate(
    view: LedgerView,
    liquidator: str,
    position_addr: str,
    proof: bytes,
    escrow_min_balance: int = DEFAULT_ESCROW_MIN_BALANCE,
) -> PendingTransaction:
    """
    Liquidate a position proven unhealthy by a liquidation attestation.

    Anyone may liquidate. The position is deactivated, the pool's active
    position count drops by one, and the escrow balance above
    escrow_min_balance is swept to the liquidator (no move when nothing is
    above it). The sweep is pool-wide: the ledger cannot attribute escrow
    funds to a single position.

    Raises:
        PositionNotFound: If no position is stored at position_addr
        PositionInactive: If the position was already liquidated
        PositionHealthy: If the liquidation attestation does not verify
    """
    if isinstance(escrow_min_balance, bool) or not isinstance(escrow_min_balance, int) or escrow_min_balance < 0:
        raise ValueError(f"escrow_min_balance must be a non-negative int, got {escrow_min_balance!r}")

    position = load_position(view, position_addr)
    if not position.is_active:
        raise PositionInactive(f"Position {position_addr} is not active")

    ok, reason = verify_liquidation_proof(proof, position)
    if not ok:
        raise PositionHealthy(f"Position {position_addr} not proven unhealthy: {reason}")

    pool = load_pool(view, position.pool)
    sweep = _escrow_liquidity(view, pool) - escrow_min_balance

    new_pool = _bump(pool, active_positions=saturating_sub(pool.active_positions, 1))
    new_position = replace(
        position, is_active=False, last_update=view.current_time, version=new_pool.version,
    )

    moves = []
    if sweep > 0:
        moves.append(Move(
            quantity=sweep,
            asset_symbol=pool.settlement_asset,
            source=pool.escrow,
            dest=liquidator,
            contract_id=f"liquidate:{position_addr}",
        ))
    return build_transaction(
        view, moves,
        [_position_change(position, new_position), _pool_change(pool, new_pool)],
        origin=_origin(liquidator, position_addr, EVENT_LIQUIDATE),
    )


def compute_close_position(
    view: LedgerView,
    caller: str,
    position_addr: str,
) -> PendingTransaction:
    """
    Close a position whose debt ciphertext is the canonical zero encoding.

    Deletes the record and returns the position wallet's storage allowance to
    the owner. Liquidated positions may be closed; they no longer count
    toward active_positions, so the pool is only updated for active ones.

    Raises:
        PositionNotFound, Unauthorized
        PositionHasDebt: If encrypted_debt is not ZERO_CIPHERTEXT
    """
    position = _load_owned_position(view, position_addr, caller, require_active=False)
    if position.has_debt():
        raise PositionHasDebt(f"Position {position_addr} still carries a debt ciphertext")

    pool = load_pool(view, position.pool)
    changes = [_position_change(position, None)]
    if position.is_active:
        new_pool = _bump(pool, active_positions=saturating_sub(pool.active_positions, 1))
        changes.append(_pool_change(pool, new_pool))

    moves = []
    if view.is_registered(position_addr):
        allowance = view.get_balance(position_addr, pool.settlement_asset)
        if allowance > 0:
            moves.append(Move(
                quantity=allowance,
                asset_symbol=pool.settlement_asset,
                source=position_addr,
                dest=caller,
                contract_id=f"close:{position_addr}",
            ))
    return build_transaction(
        view, moves, changes,
        origin=_origin(caller, position_addr, EVENT_CLOSE),
    )


# ============================================================================
# ROUTER
# ============================================================================

def _require(kwargs: dict, event_type: str, position_addr: str, *names: str) -> List[Any]:
    values = []
    for name in names:
        value = kwargs.get(name)
        if value is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {position_addr}")
        values.append(value)
    return values


def transact(
    view: LedgerView,
    position_addr: str,
    event_type: str,
    caller: str,
    **kwargs
) -> PendingTransaction:
    """
    Generate moves and record changes for a position lifecycle event.

    Args:
        view: Read-only ledger access
        position_addr: Address of the position
        event_type: Type of event:
            - DEPOSIT: requires 'amount', 'new_collateral'
            - BORROW: requires 'amount', 'new_debt', 'proof'
              (optional 'allow_unsigned', 'binding_key')
            - REPAY: requires 'amount', 'new_debt'
            - WITHDRAW: requires 'amount', 'new_collateral', 'proof'
            - LIQUIDATE: requires 'proof' (optional 'escrow_min_balance')
            - CLOSE: no parameters
        caller: Owner (or liquidator for LIQUIDATE)
        **kwargs: Event-specific parameters

    Raises:
        ValueError: If event_type is unknown or a required parameter is missing

    Example:
        pending = transact(view, pos, "DEPOSIT", "alice", amount=1_000, new_collateral=ct)
        ledger.execute(pending)
    """
    if event_type == EVENT_DEPOSIT:
        amount, new_collateral = _require(kwargs, event_type, position_addr, 'amount', 'new_collateral')
        return compute_deposit_collateral(view, caller, position_addr, amount, new_collateral)

    elif event_type == EVENT_BORROW:
        amount, new_debt, proof = _require(kwargs, event_type, position_addr, 'amount', 'new_debt', 'proof')
        return compute_borrow(
            view, caller, position_addr, amount, new_debt, proof,
            allow_unsigned=kwargs.get('allow_unsigned', True),
            binding_key=kwargs.get('binding_key'),
        )

    elif event_type == EVENT_REPAY:
        amount, new_debt = _require(kwargs, event_type, position_addr, 'amount', 'new_debt')
        return compute_repay(view, caller, position_addr, amount, new_debt)

    elif event_type == EVENT_WITHDRAW:
        amount, new_collateral, proof = _require(
            kwargs, event_type, position_addr, 'amount', 'new_collateral', 'proof'
        )
        return compute_withdraw_collateral(view, caller, position_addr, amount, new_collateral, proof)

    elif event_type == EVENT_LIQUIDATE:
        (proof,) = _require(kwargs, event_type, position_addr, 'proof')
        return compute_liquidate(
            view, caller, position_addr, proof,
            escrow_min_balance=kwargs.get('escrow_min_balance', DEFAULT_ESCROW_MIN_BALANCE),
        )

    elif event_type == EVENT_CLOSE:
        return compute_close_position(view, caller, position_addr)

    raise ValueError(f"Unknown event type {event_type!r} for position {position_addr}")


def swept_amount(pending: PendingTransaction) -> int:
    """Total native value a liquidation moves to the liquidator."""
    return sum(m.quantity for m in pending.moves)
