"""Exhaustive rounding tests for the expense splitter."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from group_ledger.exceptions import (
    CurrencyMismatchError,
    InternalConsistencyError,
    InvalidSplitError,
)
from group_ledger.models import (
    ExactSplit,
    Group,
    Member,
    ParticipantInput,
    PercentageSplit,
    SharesSplit,
    SplitType,
)
from group_ledger.splitter import (
    build_expense,
    policy_from_inputs,
    resplit_expense,
    split,
    split_policy,
)


# Helper functions for tests
def equal(*user_ids: str) -> list[ParticipantInput]:
    return [ParticipantInput(user_id=uid) for uid in user_ids]


def percent(**percentages: str) -> list[ParticipantInput]:
    return [
        ParticipantInput(user_id=uid, share_percentage=Decimal(pct))
        for uid, pct in percentages.items()
    ]


def counts(**share_counts: int) -> list[ParticipantInput]:
    return [
        ParticipantInput(user_id=uid, share_count=count)
        for uid, count in share_counts.items()
    ]


def exact(**shares: int) -> list[ParticipantInput]:
    return [ParticipantInput(user_id=uid, share_cents=cents) for uid, cents in shares.items()]


def cents(result) -> list[int]:
    return [p.share_cents for p in result]


@pytest.fixture
def group():
    """A three-member USD group."""
    return Group(
        id="g1",
        name="Flat",
        currency="USD",
        members=[Member(user_id="alice"), Member(user_id="bob"), Member(user_id="carol")],
    )


class TestEqualSplit:
    """EQUAL: integer division, remainder to the first participants."""

    def test_remainder_goes_to_first_participant(self):
        """100 cents among 3 -> [34, 33, 33]."""
        result = split(100, SplitType.EQUAL, equal("a", "b", "c"))

        assert cents(result) == [34, 33, 33]
        assert [p.user_id for p in result] == ["a", "b", "c"]

    def test_remainder_of_two(self):
        """101 cents among 3 -> [34, 34, 33]."""
        assert cents(split(101, SplitType.EQUAL, equal("a", "b", "c"))) == [34, 34, 33]

    def test_divides_evenly(self):
        assert cents(split(900, SplitType.EQUAL, equal("a", "b", "c"))) == [300, 300, 300]

    def test_fewer_cents_than_participants(self):
        """2 cents among 3 -> the last participant owes nothing."""
        assert cents(split(2, SplitType.EQUAL, equal("a", "b", "c"))) == [1, 1, 0]

    def test_single_participant_takes_everything(self):
        assert cents(split(1234, SplitType.EQUAL, equal("a"))) == [1234]

    def test_no_participants_fails(self):
        with pytest.raises(InvalidSplitError, match="at least one participant"):
            split(100, SplitType.EQUAL, [])


class TestPercentageSplit:
    """PERCENTAGE: floor each share, leftover cents left to right."""

    def test_leftover_cent_goes_to_first(self):
        """{40, 30, 30} on 1001 -> base {400, 300, 300}, final {401, 300, 300}."""
        result = split(1001, SplitType.PERCENTAGE, percent(a="40", b="30", c="30"))

        assert cents(result) == [401, 300, 300]

    def test_fractional_percentages(self):
        """33.33 / 33.33 / 33.34 on 1000 -> floors of 333 each, 1 cent left over."""
        result = split(
            1000, SplitType.PERCENTAGE, percent(a="33.33", b="33.33", c="33.34")
        )

        assert cents(result) == [334, 333, 333]

    def test_zero_percent_participant_never_gets_leftover(self):
        result = split(101, SplitType.PERCENTAGE, percent(a="0", b="50", c="50"))

        assert cents(result) == [0, 51, 50]

    def test_percentages_under_100_fail(self):
        with pytest.raises(InvalidSplitError, match="exactly 100"):
            split(1000, SplitType.PERCENTAGE, percent(a="33.33", b="33.33", c="33.33"))

    def test_percentages_over_100_fail(self):
        with pytest.raises(InvalidSplitError, match="exactly 100"):
            split(1000, SplitType.PERCENTAGE, percent(a="60", b="40.01"))

    def test_no_tolerance_near_100(self):
        """99.999 is not 100: reject rather than auto-normalize."""
        with pytest.raises(InvalidSplitError):
            split(1000, SplitType.PERCENTAGE, percent(a="50", b="49.999"))

    def test_out_of_range_percentage_in_policy_fails(self):
        policy = PercentageSplit(percentages={"a": Decimal("120"), "b": Decimal("-20")})

        with pytest.raises(InvalidSplitError, match="between 0 and 100"):
            split_policy(1000, policy)

    def test_missing_percentage_fails(self):
        participants = [
            ParticipantInput(user_id="a", share_percentage=Decimal("100")),
            ParticipantInput(user_id="b"),
        ]

        with pytest.raises(InvalidSplitError, match="share_percentage"):
            split(1000, SplitType.PERCENTAGE, participants)


class TestSharesSplit:
    """SHARES: weighted by share count, leftover cents left to right."""

    def test_weighted_with_leftover(self):
        """{2, 1, 1} on 1001 -> base {500, 250, 250}, final {501, 250, 250}."""
        assert cents(split(1001, SplitType.SHARES, counts(a=2, b=1, c=1))) == [501, 250, 250]

    def test_even_weights_behave_like_equal(self):
        assert cents(split(100, SplitType.SHARES, counts(a=3, b=3, c=3))) == [34, 33, 33]

    def test_zero_count_fails(self):
        with pytest.raises(InvalidSplitError, match="positive integer"):
            split_policy(100, SharesSplit(counts={"a": 0, "b": 1}))

    def test_missing_count_fails(self):
        with pytest.raises(InvalidSplitError, match="share_count"):
            split(100, SplitType.SHARES, equal("a", "b"))


class TestExactSplit:
    """EXACT: caller supplies every share; they must add up."""

    def test_exact_shares_kept(self):
        assert cents(split(1000, SplitType.EXACT, exact(a=600, b=400))) == [600, 400]

    def test_zero_share_allowed(self):
        assert cents(split(1000, SplitType.EXACT, exact(a=1000, b=0))) == [1000, 0]

    def test_shares_short_by_one_cent_fail(self):
        """Shares summing to 999 against an amount of 1000."""
        with pytest.raises(InvalidSplitError, match="999"):
            split(1000, SplitType.EXACT, exact(a=500, b=499))

    def test_shares_over_amount_fail(self):
        with pytest.raises(InvalidSplitError):
            split(1000, SplitType.EXACT, exact(a=500, b=501))

    def test_negative_share_fails(self):
        with pytest.raises(InvalidSplitError, match="negative"):
            split(1000, SplitType.EXACT, exact(a=1001, b=-1))

    def test_non_integer_share_in_policy_fails(self):
        with pytest.raises(InvalidSplitError, match="integer"):
            split_policy(100, ExactSplit.model_construct(kind="EXACT", shares={"a": 99.5, "b": 0.5}))

    def test_missing_share_fails(self):
        with pytest.raises(InvalidSplitError, match="share_cents"):
            split(1000, SplitType.EXACT, equal("a", "b"))


class TestSplitValidation:
    """Inputs rejected regardless of policy."""

    @pytest.mark.parametrize("amount", [0, -100, True, 10.5, "100"])
    def test_amount_must_be_positive_int(self, amount):
        with pytest.raises(InvalidSplitError, match="positive integer"):
            split(amount, SplitType.EQUAL, equal("a", "b"))

    def test_duplicate_participant_fails(self):
        with pytest.raises(InvalidSplitError, match="only be listed once"):
            split(100, SplitType.EQUAL, equal("a", "b", "a"))

    def test_policy_from_inputs_builds_tagged_policy(self):
        policy = policy_from_inputs(SplitType.SHARES, counts(a=2, b=1))

        assert isinstance(policy, SharesSplit)
        assert list(policy.counts.items()) == [("a", 2), ("b", 1)]

    def test_broken_distribution_fails_closed(self):
        """A distribution bug must raise, never return an out-of-balance split."""
        with patch(
            "group_ledger.splitter._floor_and_distribute",
            return_value=[("a", 50), ("b", 49)],
        ):
            with pytest.raises(InternalConsistencyError, match="99 cents"):
                split(100, SplitType.EQUAL, equal("a", "b"))


class TestSumInvariant:
    """Every policy sums exactly to the amount."""

    @pytest.mark.parametrize("amount", [1, 2, 7, 99, 100, 1001, 123457, 10**12 + 3])
    def test_all_policies_sum_to_amount(self, amount):
        cases = [
            (SplitType.EQUAL, equal("a", "b", "c", "d", "e", "f", "g")),
            (SplitType.PERCENTAGE, percent(a="12.5", b="37.5", c="0.01", d="49.99")),
            (SplitType.SHARES, counts(a=7, b=3, c=11)),
            (SplitType.EXACT, exact(a=amount - 1, b=1) if amount > 1 else exact(a=1)),
        ]

        for split_type, participants in cases:
            result = split(amount, split_type, participants)
            assert sum(cents(result)) == amount, split_type
            assert all(share >= 0 for share in cents(result))


class TestBuildExpense:
    """Expense construction against a group."""

    def test_builds_expense_with_group_currency(self, group):
        expense = build_expense(
            group, "alice", 100, SplitType.EQUAL, equal("alice", "bob", "carol"), "Pizza"
        )

        assert expense.group_id == "g1"
        assert expense.currency == "USD"
        assert expense.split_type == SplitType.EQUAL
        assert cents(expense.participants) == [34, 33, 33]
        assert expense.description == "Pizza"

    def test_payer_must_be_member(self, group):
        with pytest.raises(InvalidSplitError, match="Payer mallory"):
            build_expense(group, "mallory", 100, SplitType.EQUAL, equal("alice"))

    def test_participants_must_be_members(self, group):
        with pytest.raises(InvalidSplitError, match="mallory"):
            build_expense(group, "alice", 100, SplitType.EQUAL, equal("alice", "mallory"))

    def test_currency_must_match_group(self, group):
        with pytest.raises(CurrencyMismatchError):
            build_expense(group, "alice", 100, SplitType.EQUAL, equal("alice"), currency="EUR")


class TestResplitExpense:
    """Edits re-run the splitter and keep the expense identity."""

    def test_equal_expense_resplits_on_new_amount(self, group):
        original = build_expense(group, "alice", 100, SplitType.EQUAL, equal("alice", "bob"))

        updated = resplit_expense(original, group, amount_cents=301)

        assert updated.id == original.id
        assert updated.created_at == original.created_at
        assert cents(updated.participants) == [151, 150]

    def test_description_only_edit_keeps_shares(self, group):
        original = build_expense(
            group, "alice", 1001, SplitType.PERCENTAGE, percent(alice="40", bob="60")
        )

        updated = resplit_expense(original, group, description="Groceries")

        assert updated.split_type == SplitType.PERCENTAGE
        assert cents(updated.participants) == cents(original.participants)
        assert updated.description == "Groceries"

    def test_percentage_amount_change_needs_participants(self, group):
        original = build_expense(
            group, "alice", 1000, SplitType.PERCENTAGE, percent(alice="50", bob="50")
        )

        with pytest.raises(InvalidSplitError, match="Participants are required"):
            resplit_expense(original, group, amount_cents=2000)

    def test_switching_split_type_with_new_participants(self, group):
        original = build_expense(group, "alice", 1000, SplitType.EQUAL, equal("alice", "bob"))

        updated = resplit_expense(
            original,
            group,
            split_type=SplitType.SHARES,
            participants=counts(alice=1, bob=1, carol=2),
        )

        assert updated.split_type == SplitType.SHARES
        assert cents(updated.participants) == [250, 250, 500]
