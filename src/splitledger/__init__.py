"""Shared expense ledger: splits, balances and settlement plans."""

from splitledger.services.ledger import apply_expense, compute_balances, reverse_expense
from splitledger.services.settlement import Transfer, apply_transfers, compute_settlement
from splitledger.services.split import compute_splits

__all__ = [
    "Transfer",
    "apply_expense",
    "apply_transfers",
    "compute_balances",
    "compute_settlement",
    "compute_splits",
    "reverse_expense",
]
