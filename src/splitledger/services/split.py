from __future__ import annotations

from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Mapping, Optional, Sequence

from splitledger.db.models import Item, Member, Split, SplitEntry, SplitStrategy
from splitledger.logging import get_logger
from splitledger.services.errors import InvalidSplitInput, ValidationCode
from splitledger.services.validation import (
    check_entries,
    check_exact_total,
    check_items,
    check_member_ids,
    coerce_amount,
    coerce_strategy,
    complete_percentages,
)
from splitledger.utils.money import CENT, derive_percentage

log = get_logger(__name__)


def allocate(total: Decimal, weights: Sequence[Decimal], quantum: Decimal = CENT) -> list[Decimal]:
    """Largest-remainder split of ``total`` in whole units; ties keep input order."""
    if not weights:
        raise ValueError("weights must not be empty")
    if any(weight < 0 for weight in weights):
        raise ValueError("weights must be non-negative")
    weight_sum = sum((Fraction(weight) for weight in weights), Fraction(0))
    if weight_sum == 0:
        raise ValueError("weights must not all be zero")

    units = Fraction(total) / Fraction(quantum)
    if units.denominator != 1:
        raise ValueError("total is not a whole number of currency units")
    total_units = units.numerator

    exact = [total_units * Fraction(weight) / weight_sum for weight in weights]
    shares = [value.numerator // value.denominator for value in exact]
    leftover = total_units - sum(shares)

    by_remainder = sorted(range(len(exact)), key=lambda idx: exact[idx] - shares[idx], reverse=True)
    for idx in by_remainder[:leftover]:
        shares[idx] += 1

    return [quantum * share for share in shares]


def split_amount(total: Decimal, member_ids: Sequence[str], quantum: Decimal = CENT) -> dict[str, Decimal]:
    if not member_ids:
        raise ValueError("member_ids must not be empty")
    shares = allocate(total, [Decimal(1)] * len(member_ids), quantum)
    return {member_id: share for member_id, share in zip(member_ids, shares)}


def merge_shares(shares: Iterable[Mapping[str, Decimal]]) -> dict[str, Decimal]:
    result: dict[str, Decimal] = {}
    for share in shares:
        for member_id, amount in share.items():
            result[member_id] = result.get(member_id, Decimal(0)) + amount
    return result


def _build_splits(
    amounts: Mapping[str, Decimal],
    members: Sequence[Member],
    total: Decimal,
) -> list[Split]:
    splits: list[Split] = []
    for member in members:
        if member.id not in amounts:
            continue
        amount = amounts[member.id]
        splits.append(
            Split(
                member_id=member.id,
                member_name=member.name,
                amount=amount,
                percentage=derive_percentage(amount, total),
            )
        )
    return splits


def compute_splits(
    total_amount: Decimal | str | int | float,
    strategy: SplitStrategy | str,
    members: Sequence[Member],
    entries: Optional[Sequence[SplitEntry]] = None,
    items: Optional[Sequence[Item]] = None,
    *,
    auto_complete_last: bool = False,
    quantum: Decimal = CENT,
) -> list[Split]:
    """Splits come back in ``members`` order; ``members`` is the EQUAL participant list."""
    total = coerce_amount(total_amount, "amount", quantum, error=InvalidSplitInput)
    kind = coerce_strategy(strategy, error=InvalidSplitInput)
    member_ids = [member.id for member in members]

    if kind == SplitStrategy.EQUAL:
        if not members:
            raise InvalidSplitInput(
                ValidationCode.EMPTY_PARTICIPANTS,
                "equal split needs at least one member",
                field="members",
            )
        check_member_ids(member_ids, member_ids, "members")
        amounts = split_amount(total, member_ids, quantum)

    elif kind == SplitStrategy.PERCENTAGE:
        values = check_entries(
            entries or (),
            member_ids,
            strategy=kind,
            auto_complete_last=auto_complete_last,
            quantum=quantum,
        )
        percentages = complete_percentages(values)
        shares = allocate(total, [value for _, value in percentages], quantum)
        amounts = {member_id: share for (member_id, _), share in zip(percentages, shares)}

    elif kind == SplitStrategy.EXACT:
        values = check_entries(entries or (), member_ids, strategy=kind, quantum=quantum)
        exact = [(member_id, value) for member_id, value in values if value is not None]
        check_exact_total(exact, total, quantum)
        amounts = dict(exact)

    else:
        normalized = check_items(items or (), member_ids, total, quantum)
        amounts = merge_shares(split_amount(item.price, list(item.assignees), quantum) for item in normalized)

    splits = _build_splits(amounts, members, total)
    log.debug("split.computed", strategy=kind.value, total=str(total), members=len(splits))
    return splits
