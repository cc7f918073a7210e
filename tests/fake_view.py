"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing transition functions
without requiring a full Ledger instance.
"""

from __future__ import annotations
import copy
from datetime import datetime
from typing import Dict, Set, Optional, Any, Iterable

from confidential_ledger import RecordNotFound, pool_state, position_state


# Type aliases (matching core.py)
RecordState = Dict[str, Any]


class FakeView:
    """
    Minimal, read-only LedgerView implementation for testing compute functions.

    Every wallet named in balances is registered; extra empty wallets can be
    registered through `wallets`.

    Example:
        view = FakeView(
            balances={'alice': {'LAMPORTS': 1000}},
            records={pool.address: pool_state(pool)},
            time=datetime(2025, 1, 1)
        )
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, int]],
        records: Optional[Dict[str, RecordState]] = None,
        time: Optional[datetime] = None,
        wallets: Optional[Iterable[str]] = None,
    ):
        self._balances = balances
        self._records = records or {}
        self._time = time or datetime(2025, 1, 1)
        self._wallets = set(balances) | set(wallets or ())

    @classmethod
    def of(cls, *records, balances=None, time=None, wallets=None) -> "FakeView":
        """Build a view from Pool / Position dataclasses."""
        stored = {}
        for record in records:
            if hasattr(record, 'owner'):
                stored[record.address] = position_state(record)
            else:
                stored[record.address] = pool_state(record)
        return cls(balances or {}, stored, time, wallets)

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, asset: str) -> int:
        return self._balances.get(wallet, {}).get(asset, 0)

    def get_record(self, address: str) -> RecordState:
        if address not in self._records:
            raise RecordNotFound(f"No record at {address}")
        return copy.deepcopy(self._records[address])

    def has_record(self, address: str) -> bool:
        return address in self._records

    def is_registered(self, wallet: str) -> bool:
        return wallet in self._wallets

    def list_wallets(self) -> Set[str]:
        return set(self._wallets)
