from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence


class SplitStrategy(str, Enum):
    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    EXACT = "EXACT"
    ITEM_WISE = "ITEM_WISE"


class DietaryTag(str, Enum):
    VEGETARIAN = "vegetarian"
    NON_VEGETARIAN = "non-vegetarian"
    BOTH = "both"


class ItemCategory(str, Enum):
    VEGETARIAN = "vegetarian"
    NON_VEGETARIAN = "non-vegetarian"
    OTHER = "other"


class GroupType(str, Enum):
    TRIP = "trip"
    MEAL = "meal"
    EVENT = "event"
    GENERAL = "general"


@dataclass(slots=True)
class Member:
    id: str
    name: str
    email: Optional[str] = None
    dietary: DietaryTag = DietaryTag.BOTH


@dataclass(slots=True)
class Item:
    name: str
    price: Decimal
    assignees: Sequence[str]
    category: ItemCategory = ItemCategory.OTHER


@dataclass(slots=True)
class Split:
    member_id: str
    member_name: str
    amount: Decimal
    # display only, always derived from amount / total
    percentage: Optional[Decimal] = None
    settled: bool = False


@dataclass(slots=True)
class Expense:
    id: str
    description: str
    amount: Decimal
    payer_id: str
    strategy: SplitStrategy
    splits: Sequence[Split]
    items: Sequence[Item] = ()
    group_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class Group:
    id: str
    name: str
    members: list[Member] = field(default_factory=list)
    group_type: GroupType = GroupType.GENERAL


@dataclass(slots=True)
class SplitEntry:
    """Caller-supplied percentage or exact amount for one member."""

    member_id: str
    value: Optional[Decimal] = None


@dataclass(slots=True)
class MemberDraft:
    name: str
    email: Optional[str] = None
    dietary: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(slots=True)
class ExpenseDraft:
    description: str
    amount: Decimal | str | int | float
    payer_id: str
    strategy: SplitStrategy | str = SplitStrategy.EQUAL
    participants: Sequence[str] = ()
    entries: Sequence[SplitEntry] = ()
    items: Sequence[Item] = ()
    auto_complete_last: bool = False
