from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Mapping

from splitledger.logging import get_logger
from splitledger.services.errors import LedgerInconsistency, UnknownMember
from splitledger.services.ledger import Balances, check_conservation
from splitledger.utils.money import CENT, is_zero, quantize

log = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class Transfer:
    from_member: str
    to_member: str
    amount: Decimal


def compute_settlement(balances: Mapping[str, Decimal], quantum: Decimal = CENT) -> List[Transfer]:
    """Greedy netting: most negative debtor pays the largest creditor first."""
    check_conservation(balances, quantum)

    open_balances = [(member_id, balance) for member_id, balance in balances.items() if not is_zero(balance, quantum)]
    debtors = deque(sorted((entry for entry in open_balances if entry[1] < 0), key=lambda entry: entry[1]))
    creditors = deque(sorted((entry for entry in open_balances if entry[1] > 0), key=lambda entry: -entry[1]))

    transfers: list[Transfer] = []
    while debtors and creditors:
        debtor_id, debt = debtors.popleft()
        creditor_id, credit = creditors.popleft()

        amount = min(-debt, credit)
        transfers.append(Transfer(from_member=debtor_id, to_member=creditor_id, amount=amount))

        debt += amount
        credit -= amount
        if not is_zero(debt, quantum):
            debtors.appendleft((debtor_id, debt))
        if not is_zero(credit, quantum):
            creditors.appendleft((creditor_id, credit))

    leftover = list(debtors) + list(creditors)
    if leftover:
        remaining = sum((balance for _, balance in leftover), Decimal(0))
        raise LedgerInconsistency(
            "settlement left unmatched balances",
            expected=Decimal(0),
            actual=remaining,
        )

    log.debug("settlement.computed", transfers=len(transfers))
    return transfers


def apply_transfers(
    balances: Mapping[str, Decimal],
    transfers: Iterable[Transfer],
    quantum: Decimal = CENT,
) -> Balances:
    """Apply transfers in order; a fully settled group ends at zero."""
    result = dict(balances)
    for transfer in transfers:
        for member_id in (transfer.from_member, transfer.to_member):
            if member_id not in result:
                raise UnknownMember(member_id)
        result[transfer.from_member] += transfer.amount
        result[transfer.to_member] -= transfer.amount
    return {member_id: quantize(value, quantum) for member_id, value in result.items()}
