"""Settlement ledger: proposed and confirmed transfers between members.

Lifecycle rules:
- New settlements start PENDING and do not affect balances.
- PENDING -> CONFIRMED happens once; confirming again returns the stored
  settlement unchanged.
- Only PENDING settlements can be cancelled. CONFIRMED settlements are
  history and can only be offset by an opposite settlement (reverse()).
"""

import logging
from collections.abc import Collection, Iterable

from .db import Database
from .exceptions import InvalidSettlementError, InvalidStateError, NotFoundError
from .models import (
    Group,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    Transfer,
    utcnow,
)
from .money import is_cents

logger = logging.getLogger(__name__)


class SettlementLedger:
    """Records settlements through the storage collaborator."""

    def __init__(self, database: Database):
        """Initialize the ledger."""
        self.db = database

    def get(self, settlement_id: str) -> Settlement:
        """
        Get a settlement by id.

        Raises:
            NotFoundError: If no such settlement exists
        """
        settlement = self.db.get_settlement(settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement", settlement_id)
        return settlement

    def list_for_group(
        self, group_id: str, status: SettlementStatus | None = None
    ) -> list[Settlement]:
        """List a group's settlements, optionally filtered by status."""
        return self.db.list_settlements(group_id, status)

    def propose(
        self,
        group: Group,
        transfers: Iterable[Transfer],
        method: SettlementMethod = SettlementMethod.MARK_ONLY,
    ) -> list[Settlement]:
        """
        Persist planned transfers as PENDING settlements.

        Args:
            group: The group being settled
            transfers: Planned transfers, in order
            method: Payment method recorded on every settlement

        Returns:
            The new PENDING settlements, in transfer order
        """
        settlements = [
            Settlement(
                group_id=group.id,
                from_user_id=transfer.from_user_id,
                to_user_id=transfer.to_user_id,
                amount_cents=transfer.amount_cents,
                currency=group.currency,
                method=method,
            )
            for transfer in transfers
        ]

        with self.db.transaction():
            for settlement in settlements:
                self.db.save_settlement(settlement)

        if settlements:
            logger.info(
                f"Proposed {len(settlements)} settlements for group {group.id} "
                f"via {SettlementMethod(method).value}"
            )
        return settlements

    def record(
        self,
        group: Group,
        from_user_id: str,
        to_user_id: str,
        amount_cents: int,
        method: SettlementMethod = SettlementMethod.MARK_ONLY,
        external_ref: str | None = None,
        former_member_ids: Collection[str] = (),
    ) -> Settlement:
        """
        Record a settlement a member made directly (outside a plan).

        Users in former_member_ids may take part even though they left the
        group, so a balance they still hold can be paid off.

        Returns:
            The new PENDING settlement

        Raises:
            InvalidSettlementError: If a party is not a member, both parties
                are the same user, or the amount is not a positive integer
        """
        if from_user_id == to_user_id:
            raise InvalidSettlementError("A settlement needs two different users")
        for user_id in (from_user_id, to_user_id):
            if not group.has_member(user_id) and user_id not in former_member_ids:
                raise InvalidSettlementError(
                    f"User {user_id} is not a member of group {group.id}"
                )
        if not is_cents(amount_cents) or amount_cents < 1:
            raise InvalidSettlementError(
                f"Settlement amount must be a positive integer, got {amount_cents!r}"
            )

        settlement = Settlement(
            group_id=group.id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount_cents=amount_cents,
            currency=group.currency,
            method=method,
            external_ref=external_ref,
        )
        self.db.save_settlement(settlement)

        logger.info(
            f"Recorded settlement {settlement.id}: {from_user_id} -> {to_user_id} "
            f"{amount_cents} cents"
        )
        return settlement

    def confirm(self, settlement_id: str) -> Settlement:
        """
        Confirm a settlement. Idempotent.

        Returns:
            The CONFIRMED settlement; an already confirmed one is returned
            unchanged

        Raises:
            NotFoundError: If no such settlement exists
        """
        with self.db.transaction():
            settlement = self.get(settlement_id)
            if settlement.is_confirmed:
                logger.warning(f"Settlement {settlement_id} already confirmed")
                return settlement

            confirmed = settlement.model_copy(
                update={
                    "status": SettlementStatus.CONFIRMED,
                    "confirmed_at": utcnow(),
                }
            )
            self.db.save_settlement(confirmed)

        logger.info(f"Confirmed settlement {settlement_id}")
        return confirmed

    def cancel(self, settlement_id: str) -> None:
        """
        Cancel (delete) a PENDING settlement.

        Raises:
            NotFoundError: If no such settlement exists
            InvalidStateError: If the settlement is already CONFIRMED
        """
        with self.db.transaction():
            settlement = self.get(settlement_id)
            if settlement.is_confirmed:
                raise InvalidStateError(
                    settlement_id,
                    settlement.status.value,
                    f"Settlement {settlement_id} is confirmed and cannot be cancelled; "
                    f"reverse it instead",
                )
            self.db.delete_settlement(settlement_id)

        logger.info(f"Cancelled settlement {settlement_id}")

    def reverse(self, settlement_id: str) -> Settlement:
        """
        Create the opposite PENDING settlement of a CONFIRMED one.

        Confirming the returned settlement undoes the original's effect on
        balances while keeping both in the history.

        Raises:
            NotFoundError: If no such settlement exists
            InvalidStateError: If the settlement is still PENDING
        """
        with self.db.transaction():
            original = self.get(settlement_id)
            if not original.is_confirmed:
                raise InvalidStateError(
                    settlement_id,
                    original.status.value,
                    f"Settlement {settlement_id} is pending; cancel it instead",
                )

            reversal = Settlement(
                group_id=original.group_id,
                from_user_id=original.to_user_id,
                to_user_id=original.from_user_id,
                amount_cents=original.amount_cents,
                currency=original.currency,
                method=original.method,
                external_ref=f"reversal:{original.id}",
            )
            self.db.save_settlement(reversal)

        logger.info(f"Created reversal {reversal.id} for settlement {settlement_id}")
        return reversal
