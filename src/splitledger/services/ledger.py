from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Collection, Iterable, Mapping, Sequence

from splitledger.db.models import Expense, Member
from splitledger.logging import get_logger
from splitledger.services.errors import LedgerInconsistency, UnknownMember
from splitledger.utils.money import CENT, is_close, is_zero, quantize

log = get_logger(__name__)

Balances = dict[str, Decimal]


def expense_contribution(
    expense: Expense,
    member_ids: Collection[str],
    quantum: Decimal = CENT,
) -> dict[str, Decimal]:
    """Net effect of one expense on member balances.

    The payer is credited the total minus their own share, every other split
    member is debited their amount. When the payer has no split of their own,
    whatever the splits leave uncovered is the payer's share. Settled splits
    were paid back directly, so they affect neither side.
    """
    if expense.payer_id not in member_ids:
        raise UnknownMember(expense.payer_id, expense.id)

    deltas: dict[str, Decimal] = {}
    split_total = Decimal(0)
    payer_share: Decimal | None = None
    settled = Decimal(0)

    for split in expense.splits:
        if split.member_id not in member_ids:
            raise UnknownMember(split.member_id, expense.id)
        if split.amount < 0:
            raise LedgerInconsistency(
                f"split of {split.member_id!r} is negative",
                expected=Decimal(0),
                actual=split.amount,
                expense_id=expense.id,
            )
        split_total += split.amount
        if split.member_id == expense.payer_id:
            payer_share = (payer_share or Decimal(0)) + split.amount
            continue
        if split.settled:
            settled += split.amount
            continue
        deltas[split.member_id] = deltas.get(split.member_id, Decimal(0)) - split.amount

    if payer_share is None:
        payer_share = expense.amount - split_total
        if payer_share < 0 and not is_zero(payer_share, quantum):
            raise LedgerInconsistency(
                "splits exceed the expense total",
                expected=expense.amount,
                actual=split_total,
                expense_id=expense.id,
            )
    elif not is_close(split_total, expense.amount, quantum):
        raise LedgerInconsistency(
            "splits do not add up to the expense total",
            expected=expense.amount,
            actual=split_total,
            expense_id=expense.id,
        )

    credit = expense.amount - payer_share - settled
    deltas[expense.payer_id] = deltas.get(expense.payer_id, Decimal(0)) + credit
    return deltas


def _merge(balances: Mapping[str, Decimal], deltas: Mapping[str, Decimal], sign: int, quantum: Decimal) -> Balances:
    merged = dict(balances)
    for member_id, delta in deltas.items():
        merged[member_id] = merged[member_id] + sign * delta
    return {member_id: quantize(value, quantum) for member_id, value in merged.items()}


def check_conservation(balances: Mapping[str, Decimal], quantum: Decimal = CENT) -> None:
    total = sum(balances.values(), Decimal(0))
    if not is_zero(total, quantum):
        raise LedgerInconsistency(
            "balances do not sum to zero",
            expected=Decimal(0),
            actual=total,
        )


def compute_balances(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    quantum: Decimal = CENT,
) -> Balances:
    """Positive is owed money, negative owes money."""
    balances: Balances = {member.id: quantize(Decimal(0), quantum) for member in members}
    count = 0
    for expense in expenses:
        balances = _merge(balances, expense_contribution(expense, balances.keys(), quantum), 1, quantum)
        count += 1

    check_conservation(balances, quantum)
    log.debug("ledger.computed", members=len(balances), expenses=count)
    return balances


def apply_expense(balances: Mapping[str, Decimal], expense: Expense, quantum: Decimal = CENT) -> Balances:
    return _merge(balances, expense_contribution(expense, balances.keys(), quantum), 1, quantum)


def reverse_expense(balances: Mapping[str, Decimal], expense: Expense, quantum: Decimal = CENT) -> Balances:
    """Remove one expense's effect; equal to recomputing without it."""
    return _merge(balances, expense_contribution(expense, balances.keys(), quantum), -1, quantum)


@dataclass(frozen=True, slots=True)
class MemberTotals:
    owed: Decimal
    owing: Decimal

    @property
    def balance(self) -> Decimal:
        return self.owed - self.owing


def member_totals(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    quantum: Decimal = CENT,
) -> dict[str, MemberTotals]:
    """Gross credit and debit per member; ``balance`` matches ``compute_balances``."""
    owed = {member.id: Decimal(0) for member in members}
    owing = {member.id: Decimal(0) for member in members}
    for expense in expenses:
        for member_id, delta in expense_contribution(expense, owed.keys(), quantum).items():
            if delta >= 0:
                owed[member_id] += delta
            else:
                owing[member_id] -= delta
    return {
        member_id: MemberTotals(owed=quantize(owed[member_id], quantum), owing=quantize(owing[member_id], quantum))
        for member_id in owed
    }


@dataclass(frozen=True, slots=True)
class ExpenseSummary:
    count: int
    total: Decimal
    average: Decimal
    largest: Decimal
    smallest: Decimal


def expense_summary(expenses: Iterable[Expense], quantum: Decimal = CENT) -> ExpenseSummary:
    amounts = [expense.amount for expense in expenses]
    if not amounts:
        zero = quantize(Decimal(0), quantum)
        return ExpenseSummary(count=0, total=zero, average=zero, largest=zero, smallest=zero)

    total = sum(amounts, Decimal(0))
    return ExpenseSummary(
        count=len(amounts),
        total=quantize(total, quantum),
        average=quantize(total / len(amounts), quantum),
        largest=quantize(max(amounts), quantum),
        smallest=quantize(min(amounts), quantum),
    )
