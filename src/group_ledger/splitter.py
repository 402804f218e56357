"""Split an expense amount into per-participant integer-cent shares.

Every policy works in integer cents. Base shares are floored and the
leftover cents are handed out one at a time, in participant order, so the
result always sums exactly to the expense amount.
"""

import logging
import math
from collections.abc import Sequence
from decimal import Decimal
from fractions import Fraction
from typing import assert_never

from .exceptions import CurrencyMismatchError, InternalConsistencyError, InvalidSplitError
from .models import (
    EqualSplit,
    ExactSplit,
    Expense,
    ExpenseParticipant,
    Group,
    ParticipantInput,
    PercentageSplit,
    SharesSplit,
    SplitPolicy,
    SplitType,
)
from .money import is_cents

logger = logging.getLogger(__name__)

HUNDRED_PERCENT = Decimal(100)


def policy_from_inputs(
    split_type: SplitType, participants: Sequence[ParticipantInput]
) -> SplitPolicy:
    """
    Convert flat participant inputs into a tagged split policy.

    Args:
        split_type: The requested split type
        participants: Participant inputs in the order shares are assigned

    Returns:
        The matching split policy

    Raises:
        InvalidSplitError: If a user is listed twice or a participant omits
            the field its split type needs
    """
    user_ids = [p.user_id for p in participants]
    if len(set(user_ids)) != len(user_ids):
        raise InvalidSplitError("Each participant may only be listed once")

    split_type = SplitType(split_type)
    if split_type == SplitType.EQUAL:
        return EqualSplit(user_ids=user_ids)

    if split_type == SplitType.EXACT:
        missing = [p.user_id for p in participants if p.share_cents is None]
        if missing:
            raise InvalidSplitError(f"EXACT split needs share_cents for {missing}")
        return ExactSplit(shares={p.user_id: p.share_cents for p in participants})

    if split_type == SplitType.PERCENTAGE:
        missing = [p.user_id for p in participants if p.share_percentage is None]
        if missing:
            raise InvalidSplitError(
                f"PERCENTAGE split needs share_percentage for {missing}"
            )
        return PercentageSplit(
            percentages={p.user_id: p.share_percentage for p in participants}
        )

    if split_type == SplitType.SHARES:
        missing = [p.user_id for p in participants if p.share_count is None]
        if missing:
            raise InvalidSplitError(f"SHARES split needs share_count for {missing}")
        return SharesSplit(counts={p.user_id: p.share_count for p in participants})

    assert_never(split_type)


def split(
    amount_cents: int,
    split_type: SplitType,
    participants: Sequence[ParticipantInput],
) -> list[ExpenseParticipant]:
    """Split an amount among participant inputs. See split_policy."""
    return split_policy(amount_cents, policy_from_inputs(split_type, participants))


def split_policy(amount_cents: int, policy: SplitPolicy) -> list[ExpenseParticipant]:
    """
    Split an amount according to a split policy.

    Args:
        amount_cents: Positive expense amount in cents
        policy: The split policy

    Returns:
        Participant shares, in policy order, summing exactly to amount_cents

    Raises:
        InvalidSplitError: If the inputs are inconsistent for the policy
        InternalConsistencyError: If the computed shares do not sum to the amount
    """
    if not is_cents(amount_cents) or amount_cents < 1:
        raise InvalidSplitError(
            f"Amount must be a positive integer number of cents, got {amount_cents!r}"
        )

    match policy:
        case EqualSplit():
            shares = _split_equal(amount_cents, policy.user_ids)
        case ExactSplit():
            shares = _split_exact(amount_cents, policy.shares)
        case PercentageSplit():
            shares = _split_percentage(amount_cents, policy.percentages)
        case SharesSplit():
            shares = _split_shares(amount_cents, policy.counts)
        case _:
            assert_never(policy)

    # Final verification
    total = sum(share for _, share in shares)
    if total != amount_cents:
        raise InternalConsistencyError(
            f"{policy.kind} split produced {total} cents for an amount of "
            f"{amount_cents} cents"
        )

    return [
        ExpenseParticipant(user_id=user_id, share_cents=share)
        for user_id, share in shares
    ]


def _split_equal(amount_cents: int, user_ids: list[str]) -> list[tuple[str, int]]:
    if not user_ids:
        raise InvalidSplitError("EQUAL split needs at least one participant")
    return _floor_and_distribute(amount_cents, [(uid, Fraction(1)) for uid in user_ids])


def _split_exact(amount_cents: int, shares: dict[str, int]) -> list[tuple[str, int]]:
    if not shares:
        raise InvalidSplitError("EXACT split needs at least one participant")
    for user_id, share in shares.items():
        if not is_cents(share):
            raise InvalidSplitError(f"Share for {user_id} must be integer cents")
        if share < 0:
            raise InvalidSplitError(f"Share for {user_id} is negative: {share}")

    total = sum(shares.values())
    if total != amount_cents:
        raise InvalidSplitError(
            f"Exact shares sum to {total} cents, expected {amount_cents} cents"
        )
    return list(shares.items())


def _split_percentage(
    amount_cents: int, percentages: dict[str, Decimal]
) -> list[tuple[str, int]]:
    if not percentages:
        raise InvalidSplitError("PERCENTAGE split needs at least one participant")

    weights = []
    for user_id, percentage in percentages.items():
        percentage = Decimal(percentage)
        if not percentage.is_finite() or not 0 <= percentage <= HUNDRED_PERCENT:
            raise InvalidSplitError(
                f"Percentage for {user_id} must be between 0 and 100, got {percentage}"
            )
        weights.append((user_id, Fraction(percentage)))

    total = sum(Decimal(p) for p in percentages.values())
    if total != HUNDRED_PERCENT:
        raise InvalidSplitError(f"Percentages must sum to exactly 100, got {total}")

    return _floor_and_distribute(amount_cents, weights)


def _split_shares(amount_cents: int, counts: dict[str, int]) -> list[tuple[str, int]]:
    if not counts:
        raise InvalidSplitError("SHARES split needs at least one participant")
    for user_id, count in counts.items():
        if not is_cents(count) or count < 1:
            raise InvalidSplitError(
                f"Share count for {user_id} must be a positive integer, got {count!r}"
            )
    return _floor_and_distribute(
        amount_cents, [(uid, Fraction(count)) for uid, count in counts.items()]
    )


def _floor_and_distribute(
    amount_cents: int, weights: list[tuple[str, Fraction]]
) -> list[tuple[str, int]]:
    """
    Floor each weighted share, then hand leftover cents out left to right.

    Participants with zero weight never receive a leftover cent. The
    leftover is always smaller than the number of weighted participants,
    since each floor drops less than one cent.
    """
    total_weight = sum(weight for _, weight in weights)
    shares = [
        (user_id, math.floor(amount_cents * weight / total_weight))
        for user_id, weight in weights
    ]

    remainder = amount_cents - sum(share for _, share in shares)
    if remainder:
        logger.debug(f"Distributing {remainder} leftover cents in participant order")

    result = []
    for (user_id, share), (_, weight) in zip(shares, weights, strict=True):
        if remainder > 0 and weight > 0:
            share += 1
            remainder -= 1
        result.append((user_id, share))
    return result


# ============================================================================
# Expense construction
# ============================================================================


def policy_user_ids(policy: SplitPolicy) -> list[str]:
    """User ids named by a split policy, in order."""
    match policy:
        case EqualSplit():
            return list(policy.user_ids)
        case ExactSplit():
            return list(policy.shares)
        case PercentageSplit():
            return list(policy.percentages)
        case SharesSplit():
            return list(policy.counts)
        case _:
            assert_never(policy)


def build_expense(
    group: Group,
    payer_id: str,
    amount_cents: int,
    split_type: SplitType,
    participants: Sequence[ParticipantInput],
    description: str = "",
    currency: str | None = None,
) -> Expense:
    """
    Validate a new expense against its group and split it.

    Args:
        group: The group the expense belongs to
        payer_id: Member who advanced the money
        amount_cents: Expense amount in cents
        split_type: How to split the amount
        participants: Who shares the cost, in remainder order
        description: Free-text description
        currency: Expense currency, defaults to the group's

    Returns:
        The new expense with computed shares

    Raises:
        InvalidSplitError: If the payer or a participant is not a group member,
            or the split inputs are inconsistent
        CurrencyMismatchError: If currency differs from the group's currency
    """
    policy = policy_from_inputs(split_type, participants)
    return expense_from_policy(
        group,
        payer_id,
        amount_cents,
        policy,
        description=description,
        currency=currency,
    )


def expense_from_policy(
    group: Group,
    payer_id: str,
    amount_cents: int,
    policy: SplitPolicy,
    description: str = "",
    currency: str | None = None,
    **fields,
) -> Expense:
    """Build an expense from an already-tagged split policy. See build_expense."""
    currency = currency or group.currency
    if currency != group.currency:
        raise CurrencyMismatchError(group.currency, currency)

    if not group.has_member(payer_id):
        raise InvalidSplitError(f"Payer {payer_id} is not a member of group {group.id}")

    outsiders = [uid for uid in policy_user_ids(policy) if not group.has_member(uid)]
    if outsiders:
        raise InvalidSplitError(
            f"Participants {outsiders} are not members of group {group.id}"
        )

    shares = split_policy(amount_cents, policy)

    return Expense(
        group_id=group.id,
        payer_id=payer_id,
        amount_cents=amount_cents,
        currency=currency,
        split_type=SplitType(policy.kind),
        participants=shares,
        description=description,
        **fields,
    )


def resplit_expense(
    expense: Expense,
    group: Group,
    payer_id: str | None = None,
    amount_cents: int | None = None,
    split_type: SplitType | None = None,
    participants: Sequence[ParticipantInput] | None = None,
    description: str | None = None,
) -> Expense:
    """
    Apply an edit to an expense by re-running the splitter.

    When participants are omitted the stored shares are reused: an EQUAL
    expense is re-split among the same users, any other split type keeps
    its cents as they are, which only works while the amount and split
    type are unchanged.

    Returns:
        A new Expense with the same id and creation time

    Raises:
        InvalidSplitError: If the edited expense cannot be split
    """
    new_amount = expense.amount_cents if amount_cents is None else amount_cents
    new_type = expense.split_type if split_type is None else SplitType(split_type)

    if participants is not None:
        policy = policy_from_inputs(new_type, participants)
    elif new_type == SplitType.EQUAL:
        policy = EqualSplit(user_ids=[p.user_id for p in expense.participants])
    elif new_type == expense.split_type and new_amount == expense.amount_cents:
        policy = ExactSplit(
            shares={p.user_id: p.share_cents for p in expense.participants}
        )
    else:
        raise InvalidSplitError(
            f"Participants are required to re-split a {new_type.value} expense"
        )

    updated = expense_from_policy(
        group,
        payer_id or expense.payer_id,
        new_amount,
        policy,
        description=expense.description if description is None else description,
        currency=expense.currency,
        id=expense.id,
        created_at=expense.created_at,
    )

    logger.info(
        f"Re-split expense {expense.id}: {expense.amount_cents} -> {new_amount} cents"
    )

    # Stored shares reused as-is keep their original split type
    return updated.model_copy(update={"split_type": new_type})
