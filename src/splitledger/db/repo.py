from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Protocol

import asyncpg

from splitledger.db.models import DietaryTag, Expense, Group, GroupType, Item, ItemCategory, Member, Split, SplitStrategy
from splitledger.logging import get_logger, sql_logger
from splitledger.services.errors import RecordNotFound
from splitledger.utils.money import CENT, quantize

if TYPE_CHECKING:
    from splitledger.config import Settings

# decimal places of the NUMERIC money columns
MONEY_SCALE = 6


class LedgerStorage(Protocol):
    """Everything the ledger needs from persistence, for one process."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def create_group(self, group: Group) -> Group: ...

    async def get_group(self, group_id: str) -> Group: ...

    async def list_members(self, group_id: str) -> list[Member]: ...

    async def add_member(self, group_id: str, member: Member) -> None: ...

    async def remove_member(self, group_id: str, member_id: str) -> None: ...

    async def list_expenses(self, group_id: str) -> list[Expense]: ...

    async def save_expense(self, group_id: str, expense: Expense) -> None: ...

    async def delete_expense(self, group_id: str, expense_id: str) -> Expense: ...

    async def mark_split_settled(self, group_id: str, expense_id: str, member_id: str) -> Split: ...

    async def persist_balances(self, group_id: str, balances: Mapping[str, Decimal]) -> None: ...

    async def get_balances(self, group_id: str) -> dict[str, Decimal]: ...


class InMemoryLedgerStorage:
    def __init__(self) -> None:
        self._groups: dict[str, Group] = {}
        self._expenses: dict[str, list[Expense]] = {}
        self._balances: dict[str, dict[str, Decimal]] = {}
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def _group(self, group_id: str) -> Group:
        group = self._groups.get(group_id)
        if group is None:
            raise RecordNotFound("group", group_id)
        return group

    async def create_group(self, group: Group) -> Group:
        async with self._lock:
            self._groups[group.id] = replace(group, members=list(group.members))
            self._expenses[group.id] = []
            self._balances[group.id] = {member.id: Decimal(0) for member in group.members}
        return group

    async def get_group(self, group_id: str) -> Group:
        group = self._group(group_id)
        return replace(group, members=list(group.members))

    async def list_members(self, group_id: str) -> list[Member]:
        return list(self._group(group_id).members)

    async def add_member(self, group_id: str, member: Member) -> None:
        async with self._lock:
            self._group(group_id).members.append(member)
            self._balances[group_id][member.id] = Decimal(0)

    async def remove_member(self, group_id: str, member_id: str) -> None:
        async with self._lock:
            group = self._group(group_id)
            if not any(member.id == member_id for member in group.members):
                raise RecordNotFound("member", member_id)
            group.members = [member for member in group.members if member.id != member_id]
            self._balances[group_id].pop(member_id, None)

    async def list_expenses(self, group_id: str) -> list[Expense]:
        self._group(group_id)
        return list(self._expenses[group_id])

    async def save_expense(self, group_id: str, expense: Expense) -> None:
        async with self._lock:
            self._group(group_id)
            self._expenses[group_id].append(expense)

    async def delete_expense(self, group_id: str, expense_id: str) -> Expense:
        async with self._lock:
            self._group(group_id)
            expenses = self._expenses[group_id]
            for idx, expense in enumerate(expenses):
                if expense.id == expense_id:
                    return expenses.pop(idx)
        raise RecordNotFound("expense", expense_id)

    async def mark_split_settled(self, group_id: str, expense_id: str, member_id: str) -> Split:
        async with self._lock:
            self._group(group_id)
            expenses = self._expenses[group_id]
            for idx, expense in enumerate(expenses):
                if expense.id != expense_id:
                    continue
                for split in expense.splits:
                    if split.member_id == member_id:
                        settled = replace(split, settled=True)
                        splits = tuple(settled if s is split else s for s in expense.splits)
                        expenses[idx] = replace(expense, splits=splits)
                        return settled
                raise RecordNotFound("split", f"{expense_id}/{member_id}")
        raise RecordNotFound("expense", expense_id)

    async def persist_balances(self, group_id: str, balances: Mapping[str, Decimal]) -> None:
        async with self._lock:
            self._group(group_id)
            self._balances[group_id].update(balances)

    async def get_balances(self, group_id: str) -> dict[str, Decimal]:
        self._group(group_id)
        return dict(self._balances[group_id])


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg ожидает схему postgresql/postgres, без "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._pool.fetchrow(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._pool.execute(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                sql_logger.info("sql.transaction.begin")
                yield conn
        sql_logger.info("sql.transaction.commit")

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


def _member(row: Mapping[str, Any]) -> Member:
    return Member(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        dietary=DietaryTag(row["dietary"]),
    )


class PostgresLedgerStorage:
    def __init__(self, db: Database, quantum: Decimal = CENT) -> None:
        if -quantum.as_tuple().exponent > MONEY_SCALE:
            raise ValueError(f"money columns hold at most {MONEY_SCALE} decimal places, currency needs {quantum}")
        self.db = db
        self.quantum = quantum

    def _money(self, value: Decimal) -> Decimal:
        return quantize(value, self.quantum)

    async def connect(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.db.close()

    async def create_group(self, group: Group) -> Group:
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO groups (id, name, group_type) VALUES ($1, $2, $3)",
                group.id,
                group.name,
                group.group_type.value,
            )
            await conn.executemany(
                """
                INSERT INTO group_members (group_id, id, name, email, dietary, position)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                [
                    (group.id, member.id, member.name, member.email, member.dietary.value, position)
                    for position, member in enumerate(group.members)
                ],
            )
        return group

    async def get_group(self, group_id: str) -> Group:
        row = await self.db.fetchrow("SELECT id, name, group_type FROM groups WHERE id = $1", group_id)
        if row is None:
            raise RecordNotFound("group", group_id)
        members = await self.list_members(group_id)
        return Group(id=row["id"], name=row["name"], members=members, group_type=GroupType(row["group_type"]))

    async def list_members(self, group_id: str) -> list[Member]:
        rows = await self.db.fetch(
            """
            SELECT id, name, email, dietary
            FROM group_members
            WHERE group_id = $1
            ORDER BY position, id
            """,
            group_id,
        )
        return [_member(row) for row in rows]

    async def add_member(self, group_id: str, member: Member) -> None:
        await self.db.execute(
            """
            INSERT INTO group_members (group_id, id, name, email, dietary, position)
            VALUES (
                $1, $2, $3, $4, $5,
                (SELECT COALESCE(MAX(position) + 1, 0) FROM group_members WHERE group_id = $1)
            )
            """,
            group_id,
            member.id,
            member.name,
            member.email,
            member.dietary.value,
        )

    async def remove_member(self, group_id: str, member_id: str) -> None:
        status = await self.db.execute(
            "DELETE FROM group_members WHERE group_id = $1 AND id = $2",
            group_id,
            member_id,
        )
        if status.endswith(" 0"):
            raise RecordNotFound("member", member_id)

    async def list_expenses(self, group_id: str) -> list[Expense]:
        expense_rows = await self.db.fetch(
            """
            SELECT id, description, amount, payer_id, split_type, created_at
            FROM expenses
            WHERE group_id = $1
            ORDER BY created_at, id
            """,
            group_id,
        )
        split_rows = await self.db.fetch(
            """
            SELECT s.expense_id, s.member_id, s.member_name, s.amount, s.percentage, s.settled
            FROM expense_splits s
            JOIN expenses e ON e.id = s.expense_id
            WHERE e.group_id = $1
            ORDER BY s.expense_id, s.position
            """,
            group_id,
        )
        item_rows = await self.db.fetch(
            """
            SELECT ei.expense_id, ei.name, ei.price, ei.category,
                   array_agg(eia.member_id ORDER BY eia.position)
                       FILTER (WHERE eia.member_id IS NOT NULL) AS assignees
            FROM expense_items ei
            JOIN expenses e ON e.id = ei.expense_id
            LEFT JOIN expense_item_assignees eia ON eia.item_id = ei.id
            WHERE e.group_id = $1
            GROUP BY ei.id
            ORDER BY ei.expense_id, ei.position
            """,
            group_id,
        )

        splits: dict[str, list[Split]] = {}
        for row in split_rows:
            splits.setdefault(row["expense_id"], []).append(
                Split(
                    member_id=row["member_id"],
                    member_name=row["member_name"],
                    amount=self._money(row["amount"]),
                    percentage=row["percentage"],
                    settled=row["settled"],
                )
            )

        items: dict[str, list[Item]] = {}
        for row in item_rows:
            items.setdefault(row["expense_id"], []).append(
                Item(
                    name=row["name"],
                    price=self._money(row["price"]),
                    assignees=tuple(row["assignees"] or ()),
                    category=ItemCategory(row["category"]),
                )
            )

        return [
            Expense(
                id=row["id"],
                description=row["description"],
                amount=self._money(row["amount"]),
                payer_id=row["payer_id"],
                strategy=SplitStrategy(row["split_type"]),
                splits=tuple(splits.get(row["id"], ())),
                items=tuple(items.get(row["id"], ())),
                group_id=group_id,
                created_at=row["created_at"],
            )
            for row in expense_rows
        ]

    async def save_expense(self, group_id: str, expense: Expense) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO expenses (id, group_id, description, amount, payer_id, split_type, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, COALESCE($7, now()))
                """,
                expense.id,
                group_id,
                expense.description,
                expense.amount,
                expense.payer_id,
                expense.strategy.value,
                expense.created_at,
            )
            for position, item in enumerate(expense.items):
                item_id = await conn.fetchval(
                    """
                    INSERT INTO expense_items (expense_id, name, price, category, position)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    expense.id,
                    item.name,
                    item.price,
                    item.category.value,
                    position,
                )
                await conn.executemany(
                    "INSERT INTO expense_item_assignees (item_id, member_id, position) VALUES ($1, $2, $3)",
                    [(item_id, member_id, idx) for idx, member_id in enumerate(item.assignees)],
                )
            await conn.executemany(
                """
                INSERT INTO expense_splits (expense_id, member_id, member_name, amount, percentage, settled, position)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                [
                    (expense.id, s.member_id, s.member_name, s.amount, s.percentage, s.settled, position)
                    for position, s in enumerate(expense.splits)
                ],
            )

    async def delete_expense(self, group_id: str, expense_id: str) -> Expense:
        expenses = await self.list_expenses(group_id)
        expense = next((e for e in expenses if e.id == expense_id), None)
        if expense is None:
            raise RecordNotFound("expense", expense_id)
        await self.db.execute("DELETE FROM expenses WHERE id = $1 AND group_id = $2", expense_id, group_id)
        return expense

    async def mark_split_settled(self, group_id: str, expense_id: str, member_id: str) -> Split:
        row = await self.db.fetchrow(
            """
            UPDATE expense_splits s
            SET settled = true, settled_at = now()
            FROM expenses e
            WHERE e.id = s.expense_id
              AND e.group_id = $1
              AND s.expense_id = $2
              AND s.member_id = $3
            RETURNING s.member_id, s.member_name, s.amount, s.percentage, s.settled
            """,
            group_id,
            expense_id,
            member_id,
        )
        if row is None:
            raise RecordNotFound("split", f"{expense_id}/{member_id}")
        return Split(
            member_id=row["member_id"],
            member_name=row["member_name"],
            amount=self._money(row["amount"]),
            percentage=row["percentage"],
            settled=row["settled"],
        )

    async def persist_balances(self, group_id: str, balances: Mapping[str, Decimal]) -> None:
        async with self.db.transaction() as conn:
            # serializes concurrent balance writes for the same group
            locked = await conn.fetchval("SELECT id FROM groups WHERE id = $1 FOR UPDATE", group_id)
            if locked is None:
                raise RecordNotFound("group", group_id)
            await conn.executemany(
                "UPDATE group_members SET balance = $1 WHERE group_id = $2 AND id = $3",
                [(balance, group_id, member_id) for member_id, balance in balances.items()],
            )

    async def get_balances(self, group_id: str) -> dict[str, Decimal]:
        rows = await self.db.fetch(
            "SELECT id, balance FROM group_members WHERE group_id = $1 ORDER BY position, id",
            group_id,
        )
        return {row["id"]: self._money(row["balance"]) for row in rows}


def create_storage(settings: "Settings") -> LedgerStorage:
    """Pick the storage implementation once, at process start."""
    if settings.storage_backend == "postgres":
        assert settings.database_url
        return PostgresLedgerStorage(Database(settings.database_url), settings.quantum)
    return InMemoryLedgerStorage()
