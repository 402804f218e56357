"""Tests for balance aggregation (full recompute and incremental)."""

import pytest

from group_ledger.aggregator import BalanceAggregator, aggregate, summarize_members
from group_ledger.exceptions import CurrencyMismatchError, InternalConsistencyError
from group_ledger.models import (
    Expense,
    ExpenseParticipant,
    Group,
    Member,
    Settlement,
    SettlementStatus,
    SplitType,
)


# Helper functions for tests
def make_expense(id: str, payer: str, amount: int, shares: dict[str, int]) -> Expense:
    """Create an Expense in group g1 with the given shares."""
    return Expense(
        id=id,
        group_id="g1",
        payer_id=payer,
        amount_cents=amount,
        currency="USD",
        split_type=SplitType.EXACT,
        participants=[
            ExpenseParticipant(user_id=uid, share_cents=share) for uid, share in shares.items()
        ],
    )


def make_settlement(
    id: str,
    from_user: str,
    to_user: str,
    amount: int,
    status: SettlementStatus = SettlementStatus.CONFIRMED,
) -> Settlement:
    return Settlement(
        id=id,
        group_id="g1",
        from_user_id=from_user,
        to_user_id=to_user,
        amount_cents=amount,
        currency="USD",
        status=status,
    )


@pytest.fixture
def group():
    return Group(
        id="g1",
        name="Trip",
        currency="USD",
        members=[Member(user_id="alice"), Member(user_id="bob"), Member(user_id="charlie")],
    )


@pytest.fixture
def expenses():
    """Dinner $60 split three ways, movies $30 split between alice and bob."""
    return [
        make_expense("dinner", "alice", 6000, {"alice": 2000, "bob": 2000, "charlie": 2000}),
        make_expense("movies", "bob", 3000, {"alice": 1500, "bob": 1500}),
    ]


class TestAggregate:
    """Full recompute from history."""

    def test_expense_balances(self, group, expenses):
        """Alice paid 60 owes 35, bob paid 30 owes 35, charlie owes 20."""
        balances = aggregate(group, expenses, [])

        assert balances == {"alice": 2500, "bob": -500, "charlie": -2000}
        assert sum(balances.values()) == 0

    def test_no_history_all_zero(self, group):
        assert aggregate(group, [], []) == {"alice": 0, "bob": 0, "charlie": 0}

    def test_confirmed_settlement_reduces_debt(self, group, expenses):
        settlements = [make_settlement("s1", "charlie", "alice", 2000)]

        balances = aggregate(group, expenses, settlements)

        assert balances == {"alice": 500, "bob": -500, "charlie": 0}

    def test_pending_settlement_ignored(self, group, expenses):
        settlements = [
            make_settlement("s1", "charlie", "alice", 2000, SettlementStatus.PENDING)
        ]

        assert aggregate(group, expenses, settlements) == aggregate(group, expenses, [])

    def test_payer_not_participating(self, group):
        expense = make_expense("e1", "alice", 1000, {"bob": 500, "charlie": 500})

        assert aggregate(group, [expense], []) == {"alice": 1000, "bob": -500, "charlie": -500}

    def test_former_member_with_balance_kept(self, group):
        expense = make_expense("e1", "alice", 1000, {"alice": 500, "dave": 500})

        balances = aggregate(group, [expense], [])

        assert balances["dave"] == -500
        assert sum(balances.values()) == 0

    def test_former_member_settled_up_dropped(self, group):
        expense = make_expense("e1", "alice", 1000, {"alice": 500, "dave": 500})
        settlement = make_settlement("s1", "dave", "alice", 500)

        assert "dave" not in aggregate(group, [expense], [settlement])

    def test_entity_from_other_group_rejected(self, group):
        expense = make_expense("e1", "alice", 100, {"alice": 100}).model_copy(
            update={"group_id": "g2"}
        )

        with pytest.raises(InternalConsistencyError, match="belongs to group g2"):
            aggregate(group, [expense], [])

    def test_currency_mixing_rejected(self, group):
        expense = make_expense("e1", "alice", 100, {"alice": 100}).model_copy(
            update={"currency": "EUR"}
        )

        with pytest.raises(CurrencyMismatchError):
            aggregate(group, [expense], [])

    def test_corrupted_expense_breaks_zero_sum(self, group):
        """An out-of-balance expense (e.g. bad stored data) must not be absorbed."""
        corrupted = Expense.model_construct(
            id="bad",
            group_id="g1",
            payer_id="alice",
            amount_cents=1000,
            currency="USD",
            split_type=SplitType.EXACT,
            participants=[ExpenseParticipant(user_id="bob", share_cents=999)],
        )

        with pytest.raises(InternalConsistencyError, match="sum to 1"):
            aggregate(group, [corrupted], [])


class TestBalanceAggregator:
    """Incremental updates must equal a full recompute."""

    def test_from_history_matches_aggregate(self, group, expenses):
        settlements = [
            make_settlement("s1", "charlie", "alice", 1500),
            make_settlement("s2", "bob", "alice", 500, SettlementStatus.PENDING),
        ]

        incremental = BalanceAggregator.from_history(group, expenses, settlements)

        assert incremental.snapshot() == aggregate(group, expenses, settlements)

    def test_apply_then_revert_expense(self, group, expenses):
        aggregator = BalanceAggregator.from_history(group, expenses, [])
        extra = make_expense("taxi", "charlie", 999, {"alice": 333, "bob": 333, "charlie": 333})

        aggregator.apply_expense(extra)
        assert aggregator.snapshot() == aggregate(group, [*expenses, extra], [])

        aggregator.revert_expense(extra)
        assert aggregator.snapshot() == aggregate(group, expenses, [])

    def test_replace_expense(self, group, expenses):
        aggregator = BalanceAggregator.from_history(group, expenses, [])
        edited = make_expense("movies", "bob", 4000, {"alice": 2000, "charlie": 2000})

        aggregator.replace_expense(expenses[1], edited)

        assert aggregator.snapshot() == aggregate(group, [expenses[0], edited], [])

    def test_pending_settlement_is_noop(self, group, expenses):
        aggregator = BalanceAggregator.from_history(group, expenses, [])
        before = aggregator.snapshot()

        aggregator.apply_settlement(
            make_settlement("s1", "bob", "alice", 500, SettlementStatus.PENDING)
        )

        assert aggregator.snapshot() == before

    def test_former_member_dropped_after_revert(self, group):
        aggregator = BalanceAggregator(group)
        expense = make_expense("e1", "alice", 1000, {"alice": 500, "dave": 500})

        aggregator.apply_expense(expense)
        aggregator.revert_expense(expense)

        assert aggregator.snapshot() == aggregate(group, [], [])

    def test_snapshot_is_a_copy(self, group, expenses):
        aggregator = BalanceAggregator.from_history(group, expenses, [])

        snapshot = aggregator.snapshot()
        snapshot["alice"] = 0

        assert aggregator.snapshot()["alice"] == 2500


class TestSummarizeMembers:
    """Per-member totals."""

    def test_totals(self, group, expenses):
        settlements = [make_settlement("s1", "charlie", "alice", 2000)]

        summaries = {s.user_id: s for s in summarize_members(group, expenses, settlements)}

        alice = summaries["alice"]
        assert alice.total_paid == 6000
        assert alice.total_owed == 3500
        assert alice.settled_in == 2000
        assert alice.net_balance == 500

        charlie = summaries["charlie"]
        assert charlie.total_paid == 0
        assert charlie.total_owed == 2000
        assert charlie.settled_out == 2000
        assert charlie.net_balance == 0

    def test_net_matches_aggregate(self, group, expenses):
        settlements = [make_settlement("s1", "bob", "alice", 300)]

        summaries = summarize_members(group, expenses, settlements)

        assert {s.user_id: s.net_balance for s in summaries} == aggregate(
            group, expenses, settlements
        )
