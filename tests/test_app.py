import pytest

from splitledger import app
from splitledger.config import Settings
from splitledger.db.models import ExpenseDraft, MemberDraft
from splitledger.db.repo import InMemoryLedgerStorage
from splitledger.services.groups import GroupLedgerService


@pytest.mark.asyncio
async def test_main_prints_plan(monkeypatch, capsys):
    storage = InMemoryLedgerStorage()
    service = GroupLedgerService(storage)
    await service.create_group(
        "Flat",
        [MemberDraft(name="Alex", user_id="a"), MemberDraft(name="Sam", user_id="s")],
        group_id="g1",
    )
    await service.add_expense("g1", ExpenseDraft(description="Groceries", amount="50", payer_id="a"))

    monkeypatch.setattr(app, "get_settings", lambda: Settings(_env_file=None, STORAGE_BACKEND="memory"))
    monkeypatch.setattr(app, "create_storage", lambda settings: storage)

    assert await app.main(["g1"]) == 0

    out = capsys.readouterr().out
    assert "Alex: +25.00" in out
    assert "Sam -> Alex: 25.00" in out


@pytest.mark.asyncio
async def test_main_usage():
    assert await app.main([]) == 2


@pytest.mark.asyncio
async def test_main_reports_missing_group(monkeypatch, capsys):
    monkeypatch.setattr(app, "get_settings", lambda: Settings(_env_file=None, STORAGE_BACKEND="memory"))
    monkeypatch.setattr(app, "create_storage", lambda settings: InMemoryLedgerStorage())

    assert await app.main(["nope"]) == 1

    assert "group 'nope' not found" in capsys.readouterr().err
