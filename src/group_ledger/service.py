"""Service layer that composes storage and the ledger engine.

This module provides the API the outside world uses. The engine modules
(splitter, aggregator, planner) stay pure; this layer loads snapshots from
the database, serializes writes per group and keeps a cached, incrementally
updated balance map per group.
"""

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from .aggregator import Balances, BalanceAggregator, aggregate, summarize_members
from .config import Settings
from .db import Database
from .exceptions import (
    InternalConsistencyError,
    InvalidMembershipError,
    NothingToSettleError,
    NotFoundError,
)
from .ledger import SettlementLedger
from .models import (
    Expense,
    ExpenseParticipant,
    Group,
    Member,
    MemberRole,
    MemberSummary,
    ParticipantInput,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    SplitType,
    Transfer,
)
from .planner import apply_transfers, plan
from .splitter import build_expense, resplit_expense, split

logger = logging.getLogger(__name__)


class GroupLocks:
    """One re-entrant lock per group id, created on first use.

    Locks are discarded when their group is deleted or turns out not to
    exist, so the registry only grows with the number of live groups.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, group_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = self._locks[group_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, group_id: str) -> Iterator[None]:
        with self.get(group_id):
            yield

    def discard(self, group_id: str) -> None:
        with self._registry_lock:
            self._locks.pop(group_id, None)


class LedgerService:
    """Service for recording expenses and settling a group's balances."""

    def __init__(self, settings: Settings, database: Database):
        """Initialize the ledger service."""
        self.settings = settings
        self.db = database
        self.ledger = SettlementLedger(database)
        self._locks = GroupLocks()
        self._balance_cache: dict[str, BalanceAggregator] = {}

    @contextmanager
    def _group_lock(self, group_id: str) -> Iterator[None]:
        """Hold a group's lock, forgetting the group if it does not exist."""
        with self._locks.hold(group_id):
            try:
                yield
            except NotFoundError as e:
                if e.resource == "Group" and e.resource_id == group_id:
                    self._forget(group_id)
                raise

    @contextmanager
    def _group_scope(self, group_id: str) -> Iterator[None]:
        """Single-writer scope for one group: group lock plus one DB transaction.

        Any failure drops the cached balances so the next read recomputes
        them from storage.
        """
        with self._group_lock(group_id):
            try:
                with self.db.transaction():
                    yield
            except BaseException:
                self._invalidate(group_id)
                raise

    def _invalidate(self, group_id: str):
        if self._balance_cache.pop(group_id, None) is not None:
            logger.debug(f"Invalidated cached balances for group {group_id}")

    def _cached(self, group_id: str) -> BalanceAggregator | None:
        return self._balance_cache.get(group_id)

    def _forget(self, group_id: str):
        self._balance_cache.pop(group_id, None)
        self._locks.discard(group_id)

    # ========================================================================
    # Groups
    # ========================================================================

    def get_group(self, group_id: str) -> Group:
        """
        Get a group.

        Raises:
            NotFoundError: If the group does not exist
        """
        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    def list_groups(self) -> list[Group]:
        return self.db.list_groups()

    def create_group(
        self,
        name: str,
        owner_id: str,
        currency: str | None = None,
        owner_name: str | None = None,
    ) -> Group:
        """Create a group with its owner as first member."""
        group = Group(
            name=name,
            currency=(currency or self.settings.default_currency).upper(),
            members=[
                Member(user_id=owner_id, role=MemberRole.OWNER, display_name=owner_name)
            ],
        )
        self.db.save_group(group)
        logger.info(f"Created group {group.id} ({group.name}, {group.currency})")
        return group

    def add_member(
        self,
        group_id: str,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        display_name: str | None = None,
    ) -> Group:
        """Add a member to a group. Adding an existing member is a no-op."""
        with self._group_scope(group_id):
            group = self.get_group(group_id)
            if group.has_member(user_id):
                logger.info(f"User {user_id} already in group {group_id}")
                return group

            group.members.append(
                Member(user_id=user_id, role=role, display_name=display_name)
            )
            self.db.save_group(group)
            self._invalidate(group_id)

        logger.info(f"Added {user_id} to group {group_id}")
        return group

    def remove_member(self, group_id: str, user_id: str) -> Group:
        """
        Remove a member from a group.

        The member's balance stays attached to their user id until it is
        settled, so the group's balances still sum to zero.

        Raises:
            NotFoundError: If the group does not exist or the user is not a member
            InvalidMembershipError: If the user is the group's last owner
        """
        with self._group_scope(group_id):
            group = self.get_group(group_id)
            member = next((m for m in group.members if m.user_id == user_id), None)
            if member is None:
                raise NotFoundError("Member", user_id)

            owners = [m for m in group.members if m.role == MemberRole.OWNER]
            if member.role == MemberRole.OWNER and len(owners) == 1:
                raise InvalidMembershipError(
                    f"Cannot remove the last owner of group {group_id}"
                )

            group.members.remove(member)
            self.db.save_group(group)
            self._invalidate(group_id)

        logger.info(f"Removed {user_id} from group {group_id}")
        return group

    def delete_group(self, group_id: str) -> None:
        """
        Delete a group with all of its expenses and settlements.

        Raises:
            NotFoundError: If the group does not exist
        """
        with self._group_scope(group_id):
            self.get_group(group_id)
            self.db.delete_group(group_id)

        self._forget(group_id)
        logger.info(f"Deleted group {group_id}")

    # ========================================================================
    # Expenses
    # ========================================================================

    @staticmethod
    def compute_split(
        amount_cents: int,
        split_type: SplitType,
        participants: Sequence[ParticipantInput],
    ) -> list[ExpenseParticipant]:
        """Compute participant shares without storing anything."""
        return split(amount_cents, split_type, participants)

    def get_expense(self, expense_id: str) -> Expense:
        """
        Get an expense.

        Raises:
            NotFoundError: If the expense does not exist
        """
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        return expense

    def list_expenses(self, group_id: str) -> list[Expense]:
        self.get_group(group_id)
        return self.db.list_expenses(group_id)

    def create_expense(
        self,
        group_id: str,
        payer_id: str,
        amount_cents: int,
        split_type: SplitType,
        participants: Sequence[ParticipantInput],
        description: str = "",
    ) -> Expense:
        """
        Split and store a new expense.

        Raises:
            NotFoundError: If the group does not exist
            InvalidSplitError: If the split inputs are inconsistent
        """
        with self._group_scope(group_id):
            group = self.get_group(group_id)
            expense = build_expense(
                group,
                payer_id=payer_id,
                amount_cents=amount_cents,
                split_type=split_type,
                participants=participants,
                description=description,
            )
            self.db.save_expense(expense)

            if cached := self._cached(group_id):
                cached.apply_expense(expense)

        logger.info(
            f"Created expense {expense.id} in group {group_id}: "
            f"{expense.amount_cents} cents paid by {payer_id} "
            f"({expense.split_type.value} among {len(expense.participants)})"
        )
        return expense

    def update_expense(
        self,
        expense_id: str,
        payer_id: str | None = None,
        amount_cents: int | None = None,
        split_type: SplitType | None = None,
        participants: Sequence[ParticipantInput] | None = None,
        description: str | None = None,
    ) -> Expense:
        """
        Edit an expense by re-splitting it.

        Raises:
            NotFoundError: If the expense does not exist
            InvalidSplitError: If the edited expense cannot be split
        """
        group_id = self.get_expense(expense_id).group_id

        with self._group_scope(group_id):
            old = self.get_expense(expense_id)
            group = self.get_group(group_id)
            updated = resplit_expense(
                old,
                group,
                payer_id=payer_id,
                amount_cents=amount_cents,
                split_type=split_type,
                participants=participants,
                description=description,
            )
            self.db.save_expense(updated)

            if cached := self._cached(group_id):
                cached.replace_expense(old, updated)

        return updated

    def delete_expense(self, expense_id: str) -> None:
        """
        Delete an expense, removing it from all future balances.

        Raises:
            NotFoundError: If the expense does not exist
        """
        group_id = self.get_expense(expense_id).group_id

        with self._group_scope(group_id):
            expense = self.get_expense(expense_id)
            self.db.delete_expense(expense_id)

            if cached := self._cached(group_id):
                cached.revert_expense(expense)

        logger.info(f"Deleted expense {expense_id} from group {group_id}")

    # ========================================================================
    # Balances
    # ========================================================================

    def compute_balances(self, group_id: str) -> Balances:
        """
        Current balance of every member, in signed cents.

        Positive means the group owes the member. Served from the cache when
        possible, otherwise recomputed from storage.

        Raises:
            NotFoundError: If the group does not exist
        """
        with self._group_lock(group_id):
            if cached := self._cached(group_id):
                logger.debug(f"Balance cache hit for group {group_id}")
                return cached.snapshot()

            logger.debug(f"Balance cache miss for group {group_id}")
            with self.db.transaction():
                group = self.get_group(group_id)
                aggregator = BalanceAggregator.from_history(
                    group,
                    self.db.list_expenses(group_id),
                    self.db.list_settlements(group_id),
                )
            self._balance_cache[group_id] = aggregator
            return aggregator.snapshot()

    def verify_balances(self, group_id: str) -> Balances:
        """
        Recompute balances from scratch and compare them with the cache.

        Raises:
            InternalConsistencyError: If the cached balances drifted
        """
        with self._group_lock(group_id):
            with self.db.transaction():
                group = self.get_group(group_id)
                full = aggregate(
                    group,
                    self.db.list_expenses(group_id),
                    self.db.list_settlements(group_id),
                )

            cached = self._cached(group_id)
            if cached is not None and cached.snapshot() != full:
                self._invalidate(group_id)
                raise InternalConsistencyError(
                    f"Cached balances for group {group_id} differ from a full recompute"
                )
        return full

    def member_summaries(self, group_id: str) -> list[MemberSummary]:
        """Paid/owed/settled totals for every member of a group."""
        with self._group_lock(group_id), self.db.transaction():
            group = self.get_group(group_id)
            return summarize_members(
                group,
                self.db.list_expenses(group_id),
                self.db.list_settlements(group_id),
            )

    # ========================================================================
    # Settlements
    # ========================================================================

    def propose_settlement_plan(self, group_id: str) -> list[Transfer]:
        """Plan the transfers that would settle the group's current balances."""
        return plan(self.compute_balances(group_id))

    def plan_settlements(self, group_id: str) -> list[Transfer]:
        """
        Plan the transfers still needed once pending settlements are paid.

        This is exactly the plan propose_settlements() stores.

        Raises:
            NotFoundError: If the group does not exist
        """
        with self._group_lock(group_id), self.db.transaction():
            balances = self.compute_balances(group_id)
            pending = self.ledger.list_for_group(group_id, SettlementStatus.PENDING)
            projected = apply_transfers(
                balances,
                (
                    Transfer(
                        from_user_id=s.from_user_id,
                        to_user_id=s.to_user_id,
                        amount_cents=s.amount_cents,
                    )
                    for s in pending
                ),
            )
            return plan(projected)

    def propose_settlements(
        self, group_id: str, method: SettlementMethod | None = None
    ) -> list[Settlement]:
        """
        Persist a settlement plan as PENDING settlements.

        Settlements still pending are treated as if they will be paid, so
        proposing twice does not double up.

        Raises:
            NothingToSettleError: If nothing would be left to settle
        """
        method = method or self.settings.default_settlement_method

        with self._group_scope(group_id):
            group = self.get_group(group_id)
            transfers = self.plan_settlements(group_id)
            if not transfers:
                raise NothingToSettleError(group_id)

            return self.ledger.propose(group, transfers, method)

    def record_settlement(
        self,
        group_id: str,
        from_user_id: str,
        to_user_id: str,
        amount_cents: int,
        method: SettlementMethod | None = None,
        external_ref: str | None = None,
    ) -> Settlement:
        """
        Record a payment one member made to another (starts PENDING).

        Former members that still hold a balance may take part.
        """
        with self._group_scope(group_id):
            group = self.get_group(group_id)
            former = [
                user_id
                for user_id in self.compute_balances(group_id)
                if not group.has_member(user_id)
            ]
            return self.ledger.record(
                group,
                from_user_id,
                to_user_id,
                amount_cents,
                method or self.settings.default_settlement_method,
                external_ref,
                former_member_ids=former,
            )

    def list_settlements(
        self, group_id: str, status: SettlementStatus | None = None
    ) -> list[Settlement]:
        self.get_group(group_id)
        return self.ledger.list_for_group(group_id, status)

    def confirm_settlement(self, settlement_id: str) -> Settlement:
        """
        Confirm a settlement. Confirming twice has the effect of confirming once.

        Raises:
            NotFoundError: If the settlement does not exist
        """
        group_id = self.ledger.get(settlement_id).group_id

        with self._group_scope(group_id):
            before = self.ledger.get(settlement_id)
            confirmed = self.ledger.confirm(settlement_id)

            if not before.is_confirmed and (cached := self._cached(group_id)):
                cached.apply_settlement(confirmed)

        return confirmed

    def cancel_settlement(self, settlement_id: str) -> None:
        """
        Cancel a PENDING settlement. Balances are unaffected.

        Raises:
            NotFoundError: If the settlement does not exist
            InvalidStateError: If the settlement is CONFIRMED
        """
        group_id = self.ledger.get(settlement_id).group_id
        with self._group_scope(group_id):
            self.ledger.cancel(settlement_id)

    def reverse_settlement(self, settlement_id: str) -> Settlement:
        """
        Create a PENDING settlement that offsets a CONFIRMED one.

        Raises:
            NotFoundError: If the settlement does not exist
            InvalidStateError: If the settlement is still PENDING
        """
        group_id = self.ledger.get(settlement_id).group_id
        with self._group_scope(group_id):
            return self.ledger.reverse(settlement_id)
