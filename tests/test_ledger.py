"""Tests for the settlement ledger lifecycle."""

import pytest

from group_ledger.db import Database
from group_ledger.exceptions import (
    InvalidSettlementError,
    InvalidStateError,
    NotFoundError,
)
from group_ledger.ledger import SettlementLedger
from group_ledger.models import (
    Group,
    Member,
    SettlementMethod,
    SettlementStatus,
    Transfer,
)


@pytest.fixture
def mock_db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def group(mock_db):
    group = Group(
        id="g1",
        name="House",
        currency="EUR",
        members=[Member(user_id="A"), Member(user_id="B"), Member(user_id="C")],
    )
    mock_db.save_group(group)
    return group


@pytest.fixture
def ledger(mock_db):
    return SettlementLedger(mock_db)


@pytest.fixture
def proposed(ledger, group):
    """Plan for {A: +500, B: -200, C: -300} stored as pending settlements."""
    return ledger.propose(
        group,
        [
            Transfer(from_user_id="C", to_user_id="A", amount_cents=300),
            Transfer(from_user_id="B", to_user_id="A", amount_cents=200),
        ],
        SettlementMethod.VENMO,
    )


class TestPropose:
    def test_creates_pending_settlements_in_order(self, ledger, group, proposed):
        assert [(s.from_user_id, s.to_user_id, s.amount_cents) for s in proposed] == [
            ("C", "A", 300),
            ("B", "A", 200),
        ]
        assert all(s.status == SettlementStatus.PENDING for s in proposed)
        assert all(s.currency == "EUR" for s in proposed)
        assert all(s.method == SettlementMethod.VENMO for s in proposed)

        stored = ledger.list_for_group(group.id)
        assert {s.id for s in stored} == {s.id for s in proposed}

    def test_empty_plan_creates_nothing(self, ledger, group):
        assert ledger.propose(group, []) == []
        assert ledger.list_for_group(group.id) == []


class TestConfirm:
    def test_confirm_pending(self, ledger, proposed):
        confirmed = ledger.confirm(proposed[0].id)

        assert confirmed.status == SettlementStatus.CONFIRMED
        assert confirmed.confirmed_at is not None
        assert ledger.get(proposed[0].id) == confirmed

    def test_confirm_twice_is_noop(self, ledger, proposed):
        first = ledger.confirm(proposed[0].id)
        second = ledger.confirm(proposed[0].id)

        assert second == first
        assert second.confirmed_at == first.confirmed_at

    def test_confirm_missing_settlement(self, ledger):
        with pytest.raises(NotFoundError, match="Settlement with id nope not found"):
            ledger.confirm("nope")

    def test_status_filter(self, ledger, group, proposed):
        ledger.confirm(proposed[1].id)

        pending = ledger.list_for_group(group.id, SettlementStatus.PENDING)
        confirmed = ledger.list_for_group(group.id, SettlementStatus.CONFIRMED)

        assert [s.id for s in pending] == [proposed[0].id]
        assert [s.id for s in confirmed] == [proposed[1].id]


class TestCancel:
    def test_cancel_pending_removes_it(self, ledger, proposed):
        ledger.cancel(proposed[0].id)

        with pytest.raises(NotFoundError):
            ledger.get(proposed[0].id)

    def test_cancel_confirmed_fails(self, ledger, proposed):
        ledger.confirm(proposed[0].id)

        with pytest.raises(InvalidStateError) as exc_info:
            ledger.cancel(proposed[0].id)

        assert exc_info.value.settlement_id == proposed[0].id
        assert exc_info.value.status == "CONFIRMED"
        # Still there, still confirmed
        assert ledger.get(proposed[0].id).status == SettlementStatus.CONFIRMED


class TestReverse:
    def test_reverse_confirmed_creates_opposite(self, ledger, proposed):
        original = ledger.confirm(proposed[0].id)

        reversal = ledger.reverse(original.id)

        assert reversal.from_user_id == original.to_user_id
        assert reversal.to_user_id == original.from_user_id
        assert reversal.amount_cents == original.amount_cents
        assert reversal.status == SettlementStatus.PENDING
        assert reversal.external_ref == f"reversal:{original.id}"

    def test_reverse_pending_fails(self, ledger, proposed):
        with pytest.raises(InvalidStateError, match="cancel it instead"):
            ledger.reverse(proposed[0].id)


class TestRecord:
    def test_record_direct_payment(self, ledger, group):
        settlement = ledger.record(
            group, "B", "A", 1250, SettlementMethod.ZELLE, external_ref="zelle-123"
        )

        assert settlement.status == SettlementStatus.PENDING
        assert settlement.external_ref == "zelle-123"
        assert ledger.get(settlement.id) == settlement

    def test_same_user_rejected(self, ledger, group):
        with pytest.raises(InvalidSettlementError, match="two different users"):
            ledger.record(group, "A", "A", 100)

    def test_non_member_rejected(self, ledger, group):
        with pytest.raises(InvalidSettlementError, match="not a member"):
            ledger.record(group, "A", "Z", 100)

    @pytest.mark.parametrize("amount", [0, -5, 1.5])
    def test_non_positive_amount_rejected(self, ledger, group, amount):
        with pytest.raises(InvalidSettlementError, match="positive integer"):
            ledger.record(group, "A", "B", amount)

    def test_former_member_may_settle(self, ledger, group):
        settlement = ledger.record(group, "Z", "A", 300, former_member_ids=["Z"])

        assert settlement.from_user_id == "Z"
        assert ledger.get(settlement.id) == settlement
