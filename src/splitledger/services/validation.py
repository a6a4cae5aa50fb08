from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import EmailStr, TypeAdapter, ValidationError

from splitledger.db.models import (
    DietaryTag,
    ExpenseDraft,
    GroupType,
    Item,
    ItemCategory,
    Member,
    MemberDraft,
    SplitEntry,
    SplitStrategy,
)
from splitledger.services.errors import (
    InvalidSplitInput,
    MemberHasBalance,
    PercentageMismatch,
    SplitAmountMismatch,
    UnassignedItem,
    UnknownMember,
    ValidationCode,
    ValidationFailure,
)
from splitledger.utils.money import CENT, HUNDRED, has_valid_precision, is_close, is_zero, to_decimal

_EMAIL = TypeAdapter(EmailStr)


def coerce_amount(
    value: object,
    field: str,
    quantum: Decimal = CENT,
    *,
    allow_zero: bool = False,
    error: type[ValidationFailure] = ValidationFailure,
) -> Decimal:
    try:
        amount = to_decimal(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise error(ValidationCode.INVALID_AMOUNT, f"{field} is not a number: {value!r}", field=field) from exc

    if not amount.is_finite():
        raise error(ValidationCode.INVALID_AMOUNT, f"{field} must be finite", field=field)
    if allow_zero and amount < 0:
        raise error(ValidationCode.NEGATIVE_ENTRY, f"{field} must not be negative", field=field)
    if not allow_zero and amount <= 0:
        raise error(ValidationCode.NON_POSITIVE_AMOUNT, f"{field} must be greater than zero", field=field)
    if not has_valid_precision(amount, quantum):
        raise error(
            ValidationCode.INVALID_PRECISION,
            f"{field} has more decimal places than the currency allows ({quantum})",
            field=field,
        )
    return amount


def coerce_strategy(value: object, error: type[ValidationFailure] = ValidationFailure) -> SplitStrategy:
    try:
        return SplitStrategy(value)
    except ValueError as exc:
        raise error(ValidationCode.UNKNOWN_STRATEGY, f"unknown split strategy: {value!r}", field="strategy") from exc


def coerce_dietary(value: Optional[str]) -> DietaryTag:
    if value is None:
        return DietaryTag.BOTH
    try:
        return DietaryTag(value)
    except ValueError as exc:
        raise ValidationFailure(
            ValidationCode.UNKNOWN_DIETARY_TAG,
            f"unknown dietary tag: {value!r}",
            field="dietary",
        ) from exc


def coerce_group_type(value: Optional[str]) -> GroupType:
    if value is None:
        return GroupType.GENERAL
    try:
        return GroupType(value)
    except ValueError as exc:
        raise ValidationFailure(
            ValidationCode.UNKNOWN_GROUP_TYPE,
            f"unknown group type: {value!r}",
            field="group_type",
        ) from exc


def coerce_category(value: object, field: str) -> ItemCategory:
    try:
        return ItemCategory(value)
    except ValueError as exc:
        raise InvalidSplitInput(
            ValidationCode.UNKNOWN_CATEGORY,
            f"unknown item category: {value!r}",
            field=field,
        ) from exc


def check_member_ids(ids: Sequence[str], known: Iterable[str], field: str) -> list[str]:
    """Reject unknown and repeated member references, keeping input order."""
    known_ids = set(known)
    seen: set[str] = set()
    for member_id in ids:
        if member_id not in known_ids:
            raise InvalidSplitInput(
                ValidationCode.UNKNOWN_MEMBER_REFERENCE,
                f"{field} references unknown member {member_id!r}",
                field=field,
                member_id=member_id,
            )
        if member_id in seen:
            raise InvalidSplitInput(
                ValidationCode.DUPLICATE_ENTRY,
                f"{field} lists member {member_id!r} more than once",
                field=field,
                member_id=member_id,
            )
        seen.add(member_id)
    return list(ids)


def check_entries(
    entries: Sequence[SplitEntry],
    known: Iterable[str],
    *,
    strategy: SplitStrategy,
    auto_complete_last: bool = False,
    quantum: Decimal = CENT,
) -> list[tuple[str, Optional[Decimal]]]:
    if not entries:
        raise InvalidSplitInput(ValidationCode.MISSING_ENTRIES, "no split entries given", field="entries")

    check_member_ids([entry.member_id for entry in entries], known, "entries")

    # percentages are free-form, money needs the currency precision
    precision = Decimal("1e-12") if strategy == SplitStrategy.PERCENTAGE else quantum
    last = len(entries) - 1
    result: list[tuple[str, Optional[Decimal]]] = []
    for idx, entry in enumerate(entries):
        field = f"entries[{idx}]"
        if auto_complete_last and idx == last:
            result.append((entry.member_id, None))
            continue
        if entry.value is None:
            raise InvalidSplitInput(ValidationCode.MISSING_ENTRIES, f"{field} has no value", field=field)
        value = coerce_amount(entry.value, field, precision, allow_zero=True, error=InvalidSplitInput)
        result.append((entry.member_id, value))
    return result


def complete_percentages(values: Sequence[tuple[str, Optional[Decimal]]]) -> list[tuple[str, Decimal]]:
    """Fill an auto-completed last percentage and enforce the 100% total."""
    explicit = sum((value for _, value in values if value is not None), Decimal(0))
    completed: list[tuple[str, Decimal]] = []
    for member_id, value in values:
        if value is None:
            value = HUNDRED - explicit
            if value < 0:
                raise PercentageMismatch(explicit)
        completed.append((member_id, value))

    total = sum((value for _, value in completed), Decimal(0))
    if total != HUNDRED:
        raise PercentageMismatch(total)
    return completed


def check_exact_total(values: Sequence[tuple[str, Decimal]], total: Decimal, quantum: Decimal = CENT) -> None:
    actual = sum((value for _, value in values), Decimal(0))
    if not is_close(actual, total, quantum):
        raise SplitAmountMismatch(expected=total, actual=actual)


def check_items(
    items: Sequence[Item],
    known: Iterable[str],
    total: Decimal,
    quantum: Decimal = CENT,
) -> list[Item]:
    if not items:
        raise InvalidSplitInput(ValidationCode.EMPTY_ITEMS, "item-wise split needs at least one item", field="items")

    known_ids = list(known)
    normalized: list[Item] = []
    for position, item in enumerate(items):
        field = f"items[{position}]"
        price = coerce_amount(item.price, f"{field}.price", quantum, error=InvalidSplitInput)
        if not item.assignees:
            raise UnassignedItem(item.name, position)
        assignees = check_member_ids(list(item.assignees), known_ids, f"{field}.assignees")
        category = coerce_category(item.category, f"{field}.category")
        normalized.append(Item(name=item.name, price=price, assignees=tuple(assignees), category=category))

    items_total = sum((item.price for item in normalized), Decimal(0))
    if not is_close(items_total, total, quantum):
        raise SplitAmountMismatch(
            expected=total,
            actual=items_total,
            message=f"items sum to {items_total}, expected {total}",
            field="items",
        )
    return normalized


def validate_expense_draft(draft: ExpenseDraft, members: Sequence[Member], quantum: Decimal = CENT) -> ExpenseDraft:
    """Check a raw expense before it reaches the split calculator.

    Returns a normalized copy: stripped description, Decimal amount, the
    strategy as an enum, resolved participants and normalized items.
    """
    description = (draft.description or "").strip()
    if not description:
        raise ValidationFailure(ValidationCode.EMPTY_DESCRIPTION, "description must not be empty", field="description")

    amount = coerce_amount(draft.amount, "amount", quantum)
    strategy = coerce_strategy(draft.strategy)

    member_ids = [member.id for member in members]
    if draft.payer_id not in member_ids:
        raise ValidationFailure(
            ValidationCode.PAYER_NOT_MEMBER,
            f"payer {draft.payer_id!r} is not a member of the group",
            field="payer_id",
            member_id=draft.payer_id,
        )

    participants: Sequence[str] = ()
    entries: Sequence[SplitEntry] = ()
    items: Sequence[Item] = ()

    if strategy == SplitStrategy.EQUAL:
        participants = check_member_ids(list(draft.participants), member_ids, "participants") or member_ids
    elif strategy == SplitStrategy.PERCENTAGE:
        values = check_entries(
            draft.entries,
            member_ids,
            strategy=strategy,
            auto_complete_last=draft.auto_complete_last,
            quantum=quantum,
        )
        entries = [SplitEntry(member_id, value) for member_id, value in complete_percentages(values)]
    elif strategy == SplitStrategy.EXACT:
        values = check_entries(draft.entries, member_ids, strategy=strategy, quantum=quantum)
        exact = [(member_id, value) for member_id, value in values if value is not None]
        check_exact_total(exact, amount, quantum)
        entries = [SplitEntry(member_id, value) for member_id, value in exact]
    else:
        items = check_items(draft.items, member_ids, amount, quantum)

    return replace(
        draft,
        description=description,
        amount=amount,
        strategy=strategy,
        participants=tuple(participants),
        entries=tuple(entries),
        items=tuple(items),
        auto_complete_last=False,
    )


def validate_member_draft(draft: MemberDraft, position: Optional[int] = None) -> DietaryTag:
    prefix = "members" if position is None else f"members[{position}]"
    if not (draft.name or "").strip():
        raise ValidationFailure(ValidationCode.EMPTY_NAME, "member name must not be empty", field=f"{prefix}.name")
    if draft.email is not None:
        try:
            _EMAIL.validate_python(draft.email.strip())
        except ValidationError as exc:
            raise ValidationFailure(
                ValidationCode.INVALID_EMAIL,
                f"invalid email address: {draft.email!r}",
                field=f"{prefix}.email",
            ) from exc
    return coerce_dietary(draft.dietary)


def validate_group_members(drafts: Sequence[MemberDraft], existing: Sequence[Member] = ()) -> None:
    """Validate new members, alone and against the members already in the group.

    Emails are compared case-insensitively; registered user ids must be unique.
    """
    emails = {member.email.strip().lower() for member in existing if member.email}
    user_ids = {member.id for member in existing}

    for position, draft in enumerate(drafts):
        validate_member_draft(draft, position)
        if draft.email is not None:
            email = draft.email.strip().lower()
            if email in emails:
                raise ValidationFailure(
                    ValidationCode.DUPLICATE_EMAIL,
                    f"email {draft.email!r} is already used in this group",
                    field=f"members[{position}].email",
                )
            emails.add(email)
        if draft.user_id is not None:
            if draft.user_id in user_ids:
                raise ValidationFailure(
                    ValidationCode.DUPLICATE_MEMBER,
                    f"user {draft.user_id!r} is already a member of this group",
                    field=f"members[{position}].user_id",
                )
            user_ids.add(draft.user_id)


def check_member_removable(member_id: str, balances: Mapping[str, Decimal], quantum: Decimal = CENT) -> None:
    if member_id not in balances:
        raise UnknownMember(member_id)
    balance = balances[member_id]
    if not is_zero(balance, quantum):
        raise MemberHasBalance(member_id, balance)
