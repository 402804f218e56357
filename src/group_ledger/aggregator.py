"""Fold a group's expenses and confirmed settlements into member balances.

Balances are signed cents: positive means the group owes the member,
negative means the member owes the group. They always sum to zero.
"""

import logging
from collections.abc import Iterable

from .exceptions import CurrencyMismatchError, InternalConsistencyError
from .models import Expense, Group, MemberSummary, Settlement, SettlementStatus

logger = logging.getLogger(__name__)

Balances = dict[str, int]


def _check_same_group(group: Group, entity: Expense | Settlement) -> None:
    if entity.group_id != group.id:
        raise InternalConsistencyError(
            f"{type(entity).__name__} {entity.id} belongs to group {entity.group_id}, "
            f"not {group.id}"
        )
    if entity.currency != group.currency:
        raise CurrencyMismatchError(group.currency, entity.currency)


def expense_deltas(expense: Expense) -> list[tuple[str, int]]:
    """Balance changes caused by one expense.

    The payer is credited the full amount and every participant, the payer
    included, is debited their share.
    """
    deltas = [(expense.payer_id, expense.amount_cents)]
    deltas.extend((p.user_id, -p.share_cents) for p in expense.participants)
    return deltas


def settlement_deltas(settlement: Settlement) -> list[tuple[str, int]]:
    """Balance changes caused by one settlement (none unless CONFIRMED)."""
    if settlement.status != SettlementStatus.CONFIRMED:
        return []
    return [
        (settlement.from_user_id, settlement.amount_cents),
        (settlement.to_user_id, -settlement.amount_cents),
    ]


def check_zero_sum(balances: Balances, context: str = "") -> None:
    """Raise InternalConsistencyError unless balances sum to exactly zero."""
    total = sum(balances.values())
    if total != 0:
        raise InternalConsistencyError(
            f"Balances sum to {total} cents instead of 0{f' ({context})' if context else ''}"
        )


def _finalize(group: Group, balances: Balances) -> Balances:
    # Former members only appear while they still hold a balance
    return {
        user_id: amount
        for user_id, amount in balances.items()
        if amount != 0 or group.has_member(user_id)
    }


def aggregate(
    group: Group,
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
) -> Balances:
    """
    Compute every member's balance from scratch.

    Args:
        group: The group; every member starts at zero
        expenses: All live expenses of the group
        settlements: All settlements of the group (only CONFIRMED ones count)

    Returns:
        Mapping of user id to signed cents

    Raises:
        InternalConsistencyError: If an entity belongs to another group, uses
            another currency, or the balances do not sum to zero
    """
    balances: Balances = {user_id: 0 for user_id in group.member_ids()}

    for expense in expenses:
        _check_same_group(group, expense)
        for user_id, delta in expense_deltas(expense):
            balances[user_id] = balances.get(user_id, 0) + delta

    for settlement in settlements:
        _check_same_group(group, settlement)
        for user_id, delta in settlement_deltas(settlement):
            balances[user_id] = balances.get(user_id, 0) + delta

    check_zero_sum(balances, f"group {group.id}")
    return _finalize(group, balances)


class BalanceAggregator:
    """Incrementally maintained balances for one group.

    Applies exactly the same deltas as aggregate(), so a snapshot always
    equals a full recompute over the same history.
    """

    def __init__(self, group: Group):
        """Initialize with every member at zero."""
        self.group = group
        self._balances: Balances = {user_id: 0 for user_id in group.member_ids()}

    @classmethod
    def from_history(
        cls,
        group: Group,
        expenses: Iterable[Expense],
        settlements: Iterable[Settlement],
    ) -> "BalanceAggregator":
        aggregator = cls(group)
        for expense in expenses:
            aggregator.apply_expense(expense)
        for settlement in settlements:
            aggregator.apply_settlement(settlement)
        return aggregator

    def _apply(self, deltas: list[tuple[str, int]], sign: int = 1) -> None:
        for user_id, delta in deltas:
            self._balances[user_id] = self._balances.get(user_id, 0) + sign * delta

    def apply_expense(self, expense: Expense) -> None:
        """Fold in a newly created expense."""
        _check_same_group(self.group, expense)
        self._apply(expense_deltas(expense))

    def revert_expense(self, expense: Expense) -> None:
        """Remove a deleted (or replaced) expense's contribution."""
        _check_same_group(self.group, expense)
        self._apply(expense_deltas(expense), sign=-1)

    def replace_expense(self, old: Expense, new: Expense) -> None:
        """Swap an edited expense for its re-split version."""
        self.revert_expense(old)
        self.apply_expense(new)

    def apply_settlement(self, settlement: Settlement) -> None:
        """Fold in a settlement; PENDING settlements change nothing."""
        _check_same_group(self.group, settlement)
        self._apply(settlement_deltas(settlement))

    def snapshot(self) -> Balances:
        """Return a copy of the current balances after the zero-sum check."""
        check_zero_sum(self._balances, f"group {self.group.id}")
        return _finalize(self.group, self._balances)


def summarize_members(
    group: Group,
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
) -> list[MemberSummary]:
    """
    Per-member totals: paid, owed, settled in/out and net balance.

    Net balance equals the aggregate() balance for that member.
    """
    summaries: dict[str, MemberSummary] = {
        user_id: MemberSummary(user_id=user_id) for user_id in group.member_ids()
    }

    def summary_for(user_id: str) -> MemberSummary:
        if user_id not in summaries:
            summaries[user_id] = MemberSummary(user_id=user_id)
        return summaries[user_id]

    for expense in expenses:
        _check_same_group(group, expense)
        summary_for(expense.payer_id).total_paid += expense.amount_cents
        for participant in expense.participants:
            summary_for(participant.user_id).total_owed += participant.share_cents

    for settlement in settlements:
        _check_same_group(group, settlement)
        if settlement.status != SettlementStatus.CONFIRMED:
            continue
        summary_for(settlement.from_user_id).settled_out += settlement.amount_cents
        summary_for(settlement.to_user_id).settled_in += settlement.amount_cents

    for summary in summaries.values():
        summary.net_balance = (
            summary.total_paid
            - summary.total_owed
            + summary.settled_out
            - summary.settled_in
        )

    check_zero_sum(
        {s.user_id: s.net_balance for s in summaries.values()}, f"group {group.id}"
    )
    return list(summaries.values())
