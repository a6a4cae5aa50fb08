from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class ValidationCode(str, Enum):
    EMPTY_DESCRIPTION = "EMPTY_DESCRIPTION"
    NON_POSITIVE_AMOUNT = "NON_POSITIVE_AMOUNT"
    INVALID_PRECISION = "INVALID_PRECISION"
    UNKNOWN_STRATEGY = "UNKNOWN_STRATEGY"
    EMPTY_PARTICIPANTS = "EMPTY_PARTICIPANTS"
    MISSING_ENTRIES = "MISSING_ENTRIES"
    NEGATIVE_ENTRY = "NEGATIVE_ENTRY"
    UNKNOWN_MEMBER_REFERENCE = "UNKNOWN_MEMBER_REFERENCE"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    PAYER_NOT_MEMBER = "PAYER_NOT_MEMBER"
    EMPTY_NAME = "EMPTY_NAME"
    INVALID_EMAIL = "INVALID_EMAIL"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_MEMBER = "DUPLICATE_MEMBER"
    UNKNOWN_DIETARY_TAG = "UNKNOWN_DIETARY_TAG"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    EMPTY_ITEMS = "EMPTY_ITEMS"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    PERCENTAGE_MISMATCH = "PERCENTAGE_MISMATCH"
    UNASSIGNED_ITEM = "UNASSIGNED_ITEM"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    MEMBER_REFERENCED = "MEMBER_REFERENCED"
    UNKNOWN_GROUP_TYPE = "UNKNOWN_GROUP_TYPE"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class LedgerError(Exception):
    """Base class for every error raised by the ledger engine."""

    kind = "LedgerError"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data = {"kind": self.kind, "message": self.message}
        data.update({key: _jsonable(value) for key, value in self.details.items() if value is not None})
        return data


class ValidationFailure(LedgerError, ValueError):
    kind = "ValidationFailure"

    def __init__(self, code: ValidationCode, message: str, field: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, code=code, field=field, **details)
        self.code = code
        self.field = field


class InvalidSplitInput(ValidationFailure):
    kind = "InvalidSplitInput"


class SplitAmountMismatch(InvalidSplitInput):
    kind = "SplitAmountMismatch"

    def __init__(
        self,
        expected: Decimal,
        actual: Decimal,
        message: Optional[str] = None,
        code: ValidationCode = ValidationCode.AMOUNT_MISMATCH,
        field: Optional[str] = "entries",
    ) -> None:
        super().__init__(
            code,
            message or f"shares sum to {actual}, expected {expected}",
            field=field,
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class PercentageMismatch(SplitAmountMismatch):
    kind = "PercentageMismatch"

    def __init__(self, actual: Decimal) -> None:
        super().__init__(
            Decimal(100),
            actual,
            message=f"percentages sum to {actual}, expected 100",
            code=ValidationCode.PERCENTAGE_MISMATCH,
        )


class UnassignedItem(InvalidSplitInput):
    kind = "UnassignedItem"

    def __init__(self, item: str, position: int) -> None:
        super().__init__(
            ValidationCode.UNASSIGNED_ITEM,
            f"item {item!r} is not assigned to anyone",
            field=f"items[{position}]",
            item=item,
        )
        self.item = item
        self.position = position


class UnknownMember(LedgerError, LookupError):
    kind = "UnknownMember"

    def __init__(self, member_id: str, expense_id: Optional[str] = None) -> None:
        message = f"member {member_id!r} is not part of the group"
        if expense_id is not None:
            message += f" (expense {expense_id!r})"
        super().__init__(message, member_id=member_id, expense_id=expense_id)
        self.member_id = member_id
        self.expense_id = expense_id


class LedgerInconsistency(LedgerError):
    kind = "LedgerInconsistency"

    def __init__(
        self,
        message: str,
        expected: Decimal,
        actual: Decimal,
        expense_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, expected=expected, actual=actual, expense_id=expense_id)
        self.expected = expected
        self.actual = actual
        self.expense_id = expense_id


class MemberHasBalance(LedgerError):
    kind = "MemberHasBalance"

    def __init__(self, member_id: str, balance: Decimal) -> None:
        super().__init__(
            f"member {member_id!r} still has a balance of {balance}",
            member_id=member_id,
            balance=balance,
        )
        self.member_id = member_id
        self.balance = balance


class RecordNotFound(LedgerError, LookupError):
    kind = "RecordNotFound"

    def __init__(self, entity: str, record_id: str) -> None:
        super().__init__(f"{entity} {record_id!r} not found", entity=entity, record_id=record_id)
        self.entity = entity
        self.record_id = record_id
