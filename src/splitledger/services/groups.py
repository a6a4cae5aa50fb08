from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from splitledger.db.models import Expense, ExpenseDraft, Group, GroupType, Member, MemberDraft, Split, SplitStrategy
from splitledger.db.repo import LedgerStorage
from splitledger.logging import get_logger
from splitledger.services.errors import LedgerInconsistency, UnknownMember, ValidationCode, ValidationFailure
from splitledger.services.ledger import (
    Balances,
    ExpenseSummary,
    MemberTotals,
    compute_balances,
    expense_summary,
    member_totals,
)
from splitledger.services.settlement import Transfer, compute_settlement
from splitledger.services.split import compute_splits
from splitledger.services.validation import (
    check_member_removable,
    coerce_group_type,
    validate_expense_draft,
    validate_group_members,
    validate_member_draft,
)
from splitledger.utils.money import CENT


def _new_id() -> str:
    return uuid.uuid4().hex


def _build_member(draft: MemberDraft) -> Member:
    return Member(
        id=draft.user_id or _new_id(),
        name=draft.name.strip(),
        email=draft.email.strip() if draft.email else None,
        dietary=validate_member_draft(draft),
    )


class GroupLedgerService:
    """Group operations on top of an injected storage handle.

    Every mutation recomputes the group's balances from the full expense list
    and persists them; nothing is stored when validation or the ledger check
    fails.
    """

    def __init__(self, storage: LedgerStorage, quantum: Decimal = CENT) -> None:
        self.storage = storage
        self.quantum = quantum
        self._log = get_logger(__name__)

    async def create_group(
        self,
        name: str,
        members: Sequence[MemberDraft],
        group_id: Optional[str] = None,
        group_type: GroupType | str | None = None,
    ) -> Group:
        if not (name or "").strip():
            raise ValidationFailure(ValidationCode.EMPTY_NAME, "group name must not be empty", field="name")
        kind = coerce_group_type(group_type)
        validate_group_members(members)

        group = Group(
            id=group_id or _new_id(),
            name=name.strip(),
            members=[_build_member(d) for d in members],
            group_type=kind,
        )
        await self.storage.create_group(group)
        self._log.info("group.created", group_id=group.id, group_type=kind.value, members=len(group.members))
        return group

    async def add_member(self, group_id: str, draft: MemberDraft) -> Member:
        existing = await self.storage.list_members(group_id)
        validate_group_members([draft], existing)

        member = _build_member(draft)
        await self.storage.add_member(group_id, member)
        self._log.info("member.added", group_id=group_id, member_id=member.id)
        return member

    async def remove_member(self, group_id: str, member_id: str) -> None:
        members = await self.storage.list_members(group_id)
        expenses = await self.storage.list_expenses(group_id)
        balances = self._compute(group_id, members, expenses)
        check_member_removable(member_id, balances, self.quantum)

        for expense in expenses:
            if expense.payer_id == member_id or any(s.member_id == member_id for s in expense.splits):
                raise ValidationFailure(
                    ValidationCode.MEMBER_REFERENCED,
                    f"member {member_id!r} appears in expense {expense.id!r}",
                    field="member_id",
                    member_id=member_id,
                    expense_id=expense.id,
                )

        await self.storage.remove_member(group_id, member_id)
        self._log.info("member.removed", group_id=group_id, member_id=member_id)

    async def add_expense(self, group_id: str, draft: ExpenseDraft) -> Expense:
        members = await self.storage.list_members(group_id)
        clean = validate_expense_draft(draft, members, self.quantum)
        strategy = SplitStrategy(clean.strategy)

        if strategy == SplitStrategy.EQUAL:
            wanted = set(clean.participants)
            split_members = [member for member in members if member.id in wanted]
        else:
            split_members = members

        splits = compute_splits(
            clean.amount,
            strategy,
            split_members,
            entries=clean.entries,
            items=clean.items,
            quantum=self.quantum,
        )
        expense = Expense(
            id=_new_id(),
            description=clean.description,
            amount=Decimal(clean.amount),
            payer_id=clean.payer_id,
            strategy=strategy,
            splits=tuple(splits),
            items=tuple(clean.items),
            group_id=group_id,
            created_at=datetime.now(timezone.utc),
        )

        # check the ledger still balances before anything is written
        expenses = await self.storage.list_expenses(group_id)
        self._compute(group_id, members, [*expenses, expense])

        await self.storage.save_expense(group_id, expense)
        await self.refresh_balances(group_id)
        self._log.info(
            "expense.created",
            group_id=group_id,
            expense_id=expense.id,
            amount=str(expense.amount),
            strategy=strategy.value,
        )
        return expense

    async def delete_expense(self, group_id: str, expense_id: str) -> Balances:
        removed = await self.storage.delete_expense(group_id, expense_id)
        balances = await self.refresh_balances(group_id)
        self._log.info("expense.deleted", group_id=group_id, expense_id=removed.id)
        return balances

    async def settle_split(self, group_id: str, expense_id: str, member_id: str) -> Split:
        split = await self.storage.mark_split_settled(group_id, expense_id, member_id)
        await self.refresh_balances(group_id)
        self._log.info("split.settled", group_id=group_id, expense_id=expense_id, member_id=member_id)
        return split

    async def balances(self, group_id: str) -> Balances:
        members = await self.storage.list_members(group_id)
        expenses = await self.storage.list_expenses(group_id)
        return self._compute(group_id, members, expenses)

    async def refresh_balances(self, group_id: str) -> Balances:
        balances = await self.balances(group_id)
        await self.storage.persist_balances(group_id, balances)
        return balances

    async def member_totals(self, group_id: str) -> dict[str, MemberTotals]:
        members = await self.storage.list_members(group_id)
        expenses = await self.storage.list_expenses(group_id)
        self._compute(group_id, members, expenses)
        return member_totals(members, expenses, self.quantum)

    async def expense_summary(self, group_id: str) -> ExpenseSummary:
        return expense_summary(await self.storage.list_expenses(group_id), self.quantum)

    async def settlement_plan(self, group_id: str) -> list[Transfer]:
        balances = await self.balances(group_id)
        try:
            return compute_settlement(balances, self.quantum)
        except LedgerInconsistency as exc:
            self._log.error("settlement.failed", group_id=group_id, **exc.to_dict())
            raise

    def _compute(self, group_id: str, members: Sequence[Member], expenses: Sequence[Expense]) -> Balances:
        try:
            return compute_balances(members, expenses, self.quantum)
        except (UnknownMember, LedgerInconsistency) as exc:
            self._log.error("ledger.failed", group_id=group_id, **exc.to_dict())
            raise
