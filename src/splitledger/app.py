from __future__ import annotations

import asyncio
import sys
from typing import Optional, Sequence

from splitledger.config import get_settings
from splitledger.db.repo import create_storage
from splitledger.logging import configure_logging, get_logger
from splitledger.services.errors import LedgerError
from splitledger.services.groups import GroupLedgerService


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 1:
        print("usage: splitledger <group_id>", file=sys.stderr)
        return 2
    group_id = args[0]

    settings = get_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    storage = create_storage(settings)
    await storage.connect()
    service = GroupLedgerService(storage, settings.quantum)
    log.info("app.start", backend=settings.storage_backend, group_id=group_id)
    try:
        group = await storage.get_group(group_id)
        names = {member.id: member.name for member in group.members}
        balances = await service.refresh_balances(group_id)
        transfers = await service.settlement_plan(group_id)
    except LedgerError as exc:
        log.error("app.failed", **exc.to_dict())
        print(exc.message, file=sys.stderr)
        return 1
    finally:
        await storage.close()
        log.info("app.stop")

    print(group.name)
    for member_id, balance in balances.items():
        print(f"  {names[member_id]}: {balance:+}")
    for transfer in transfers:
        print(f"  {names[transfer.from_member]} -> {names[transfer.to_member]}: {transfer.amount}")
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
