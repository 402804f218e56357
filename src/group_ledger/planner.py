"""Derive settlement transfers that bring every balance to zero.

The planner uses deterministic greedy matching: the largest remaining
creditor is always paid by the largest remaining debtor. This yields at
most ``members - 1`` transfers and is optimal in the common cases, but is
not guaranteed minimal for every distribution (exact minimization is
NP-hard and is intentionally not attempted).
"""

import heapq
import logging
from collections.abc import Iterable, Mapping

from .aggregator import check_zero_sum
from .exceptions import InternalConsistencyError
from .models import Transfer
from .money import is_cents

logger = logging.getLogger(__name__)


def plan(balances: Mapping[str, int]) -> list[Transfer]:
    """
    Plan transfers that settle all balances.

    Args:
        balances: Mapping of user id to signed cents (positive = is owed)

    Returns:
        Ordered transfers; empty if every balance is already zero

    Raises:
        InternalConsistencyError: If the balances are not integers summing to
            zero, or the plan fails to zero them
    """
    for user_id, amount in balances.items():
        if not is_cents(amount):
            raise InternalConsistencyError(
                f"Balance for {user_id} is not integer cents: {amount!r}"
            )
    check_zero_sum(dict(balances), "settlement plan input")

    # Max-heaps keyed on (largest amount, smallest user id)
    creditors = [(-amount, user_id) for user_id, amount in balances.items() if amount > 0]
    debtors = [(amount, user_id) for user_id, amount in balances.items() if amount < 0]
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transfers: list[Transfer] = []
    while creditors and debtors:
        neg_claim, creditor = heapq.heappop(creditors)
        neg_debt, debtor = heapq.heappop(debtors)
        claim, debt = -neg_claim, -neg_debt

        amount = min(claim, debt)
        transfers.append(
            Transfer(from_user_id=debtor, to_user_id=creditor, amount_cents=amount)
        )

        if claim > amount:
            heapq.heappush(creditors, (-(claim - amount), creditor))
        if debt > amount:
            heapq.heappush(debtors, (-(debt - amount), debtor))

    if creditors or debtors:
        raise InternalConsistencyError("Settlement plan left unmatched balances")

    remaining = apply_transfers(balances, transfers)
    if any(remaining.values()):
        raise InternalConsistencyError(
            f"Settlement plan does not zero balances: {remaining}"
        )

    logger.debug(f"Planned {len(transfers)} transfers for {len(balances)} members")
    return transfers


def apply_transfers(
    balances: Mapping[str, int], transfers: Iterable[Transfer]
) -> dict[str, int]:
    """
    Return the balances that result from carrying out the transfers.

    Paying a transfer credits the debtor and debits the creditor, the same
    effect a confirmed settlement has on aggregated balances.
    """
    result = dict(balances)
    for transfer in transfers:
        result[transfer.from_user_id] = (
            result.get(transfer.from_user_id, 0) + transfer.amount_cents
        )
        result[transfer.to_user_id] = (
            result.get(transfer.to_user_id, 0) - transfer.amount_cents
        )
    return result
