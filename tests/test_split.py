import random
from decimal import Decimal

import pytest

from factories import make_members
from splitledger.db.models import Item, SplitEntry, SplitStrategy
from splitledger.services.errors import (
    InvalidSplitInput,
    PercentageMismatch,
    SplitAmountMismatch,
    UnassignedItem,
    ValidationCode,
)
from splitledger.services.split import allocate, compute_splits, split_amount

D = Decimal


def amounts(splits):
    return {split.member_id: split.amount for split in splits}


def test_split_amount_even():
    shares = split_amount(D("10.00"), ["a", "b", "c", "d"])
    assert shares == {"a": D("2.50"), "b": D("2.50"), "c": D("2.50"), "d": D("2.50")}


def test_split_amount_remainder_goes_to_first_member():
    shares = split_amount(D("100.00"), ["a", "b", "c"])
    assert shares == {"a": D("33.34"), "b": D("33.33"), "c": D("33.33")}


def test_allocate_spreads_leftover_one_unit_at_a_time():
    shares = allocate(D("0.05"), [D(1)] * 3)
    assert shares == [D("0.02"), D("0.02"), D("0.01")]


@pytest.mark.parametrize("seed", range(20))
def test_equal_split_sums_exactly(seed):
    rng = random.Random(seed)
    for _ in range(25):
        total = D("0.01") * rng.randint(1, 1_000_000)
        members = make_members(*(f"m{idx}" for idx in range(rng.randint(1, 12))))

        splits = compute_splits(total, SplitStrategy.EQUAL, members)
        values = [split.amount for split in splits]

        assert sum(values) == total
        assert max(values) - min(values) <= D("0.01")


def test_equal_split_three_members():
    splits = compute_splits("90", "EQUAL", make_members("A", "B", "C"))
    assert amounts(splits) == {"A": D("30.00"), "B": D("30.00"), "C": D("30.00")}
    assert [split.percentage for split in splits] == [D("33.33")] * 3


def test_equal_split_without_members_fails():
    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D("10"), SplitStrategy.EQUAL, [])
    assert exc.value.code == ValidationCode.EMPTY_PARTICIPANTS


def test_percentage_split():
    members = make_members("A", "B", "C")
    entries = [SplitEntry("A", D(50)), SplitEntry("B", D(30)), SplitEntry("C", D(20))]

    splits = compute_splits(D("200.00"), SplitStrategy.PERCENTAGE, members, entries)

    assert amounts(splits) == {"A": D("100.00"), "B": D("60.00"), "C": D("40.00")}
    assert [split.percentage for split in splits] == [D("50.00"), D("30.00"), D("20.00")]


def test_percentage_auto_complete_last():
    members = make_members("A", "B", "C")
    entries = [SplitEntry("A", D("33.33")), SplitEntry("B", D("33.33")), SplitEntry("C")]

    splits = compute_splits(D("100.00"), SplitStrategy.PERCENTAGE, members, entries, auto_complete_last=True)

    assert amounts(splits) == {"A": D("33.33"), "B": D("33.33"), "C": D("33.34")}


def test_percentage_must_sum_to_hundred():
    members = make_members("A", "B")
    entries = [SplitEntry("A", D(60)), SplitEntry("B", D(30))]

    with pytest.raises(PercentageMismatch) as exc:
        compute_splits(D("50"), SplitStrategy.PERCENTAGE, members, entries)

    assert exc.value.expected == D(100)
    assert exc.value.actual == D(90)


def test_percentage_auto_complete_over_hundred():
    members = make_members("A", "B")
    entries = [SplitEntry("A", D(120)), SplitEntry("B")]

    with pytest.raises(PercentageMismatch):
        compute_splits(D("50"), SplitStrategy.PERCENTAGE, members, entries, auto_complete_last=True)


@pytest.mark.parametrize("seed", range(10))
def test_percentage_split_rederives_to_hundred(seed):
    rng = random.Random(seed)
    members = make_members("A", "B", "C", "D")
    for _ in range(20):
        total = D("0.01") * rng.randint(1, 1_000_000)
        cuts = sorted(D(rng.randint(0, 10_000)) / 100 for _ in range(3))
        percents = [cuts[0], cuts[1] - cuts[0], cuts[2] - cuts[1], 100 - cuts[2]]
        entries = [SplitEntry(m.id, p) for m, p in zip(members, percents)]

        splits = compute_splits(total, SplitStrategy.PERCENTAGE, members, entries)

        assert abs(sum(s.amount for s in splits) - total) < D("0.01")
        rederived = sum(s.amount / total * 100 for s in splits)
        assert abs(rederived - 100) < D("0.01")


def test_exact_split():
    members = make_members("A", "B", "C")
    entries = [SplitEntry("A", D(40)), SplitEntry("B", D(35)), SplitEntry("C", D(25))]

    splits = compute_splits(D(100), SplitStrategy.EXACT, members, entries)

    assert amounts(splits) == {"A": D(40), "B": D(35), "C": D(25)}
    assert [split.percentage for split in splits] == [D("40.00"), D("35.00"), D("25.00")]


def test_exact_split_mismatch():
    members = make_members("A", "B", "C")
    entries = [SplitEntry("A", D(40)), SplitEntry("B", D(30)), SplitEntry("C", D(25))]

    with pytest.raises(SplitAmountMismatch) as exc:
        compute_splits(D(100), SplitStrategy.EXACT, members, entries)

    assert exc.value.expected == D(100)
    assert exc.value.actual == D(95)
    assert exc.value.to_dict()["expected"] == "100"


def test_exact_split_rejects_duplicates_and_negatives():
    members = make_members("A", "B")

    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D(10), SplitStrategy.EXACT, members, [SplitEntry("A", D(5)), SplitEntry("A", D(5))])
    assert exc.value.code == ValidationCode.DUPLICATE_ENTRY

    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D(10), SplitStrategy.EXACT, members, [SplitEntry("A", D(15)), SplitEntry("B", D(-5))])
    assert exc.value.code == ValidationCode.NEGATIVE_ENTRY

    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D(10), SplitStrategy.EXACT, members, [SplitEntry("Z", D(10))])
    assert exc.value.code == ValidationCode.UNKNOWN_MEMBER_REFERENCE


def test_item_wise_split():
    members = make_members("X", "Y", "Z")
    items = [Item(name="pizza", price=D(30), assignees=["X", "Y"])]

    splits = compute_splits(D(30), SplitStrategy.ITEM_WISE, members, items=items)

    shares = amounts(splits)
    assert shares == {"X": D("15.00"), "Y": D("15.00")}
    assert shares.get("Z", D(0)) == 0


def test_item_wise_split_sums_items_per_member():
    members = make_members("X", "Y", "Z")
    items = [
        Item(name="paneer", price=D("7.00"), assignees=["X", "Y"]),
        Item(name="chicken", price=D("8.00"), assignees=["Y", "Z"]),
        Item(name="water", price=D("1.00"), assignees=["X", "Y", "Z"]),
    ]

    splits = compute_splits(D("16.00"), SplitStrategy.ITEM_WISE, members, items=items)

    assert amounts(splits) == {"X": D("3.84"), "Y": D("7.83"), "Z": D("4.33")}
    assert sum(split.amount for split in splits) == D("16.00")


def test_item_wise_unassigned_item():
    members = make_members("X", "Y")
    items = [
        Item(name="tea", price=D(10), assignees=["X"]),
        Item(name="cake", price=D(20), assignees=[]),
    ]

    with pytest.raises(UnassignedItem) as exc:
        compute_splits(D(30), SplitStrategy.ITEM_WISE, members, items=items)

    assert exc.value.item == "cake"
    assert exc.value.position == 1


def test_item_wise_items_must_cover_total():
    members = make_members("X", "Y")
    items = [Item(name="tea", price=D(10), assignees=["X"])]

    with pytest.raises(SplitAmountMismatch) as exc:
        compute_splits(D(30), SplitStrategy.ITEM_WISE, members, items=items)

    assert exc.value.field == "items"


def test_unknown_strategy():
    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D(10), "SHARES", make_members("A"))
    assert exc.value.code == ValidationCode.UNKNOWN_STRATEGY


def test_total_with_too_many_decimals():
    with pytest.raises(InvalidSplitInput) as exc:
        compute_splits(D("10.005"), SplitStrategy.EQUAL, make_members("A"))
    assert exc.value.code == ValidationCode.INVALID_PRECISION
