"""Custom exceptions for GroupLedger."""


class GroupLedgerError(Exception):
    """Base exception for all GroupLedger errors."""

    pass


class ConfigurationError(GroupLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidSplitError(GroupLedgerError):
    """Raised when split inputs are inconsistent for the chosen split policy."""

    pass


class InvalidSettlementError(GroupLedgerError):
    """Raised when a directly recorded settlement is malformed."""

    pass


class InvalidMembershipError(GroupLedgerError):
    """Raised when a membership change would leave a group without an owner."""

    pass


class InternalConsistencyError(GroupLedgerError):
    """Raised when a ledger post-condition fails (sum or zero-sum check).

    This always indicates a bug in the engine or corrupted stored data and
    must never be swallowed.
    """

    pass


class CurrencyMismatchError(InternalConsistencyError):
    """Raised when an expense or settlement currency differs from its group's."""

    def __init__(self, expected: str, actual: str, message: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Currency mismatch: group uses {expected}, got {actual}"
        )


class InvalidStateError(GroupLedgerError):
    """Raised on an illegal settlement transition (e.g. cancel after confirm)."""

    def __init__(self, settlement_id: str, status: str, message: str | None = None):
        self.settlement_id = settlement_id
        self.status = status
        super().__init__(
            message or f"Settlement {settlement_id} is {status}; transition not allowed"
        )


class NotFoundError(GroupLedgerError):
    """Raised when a referenced group, expense or settlement does not exist."""

    def __init__(self, resource: str, resource_id: str | None = None):
        self.resource = resource
        self.resource_id = resource_id
        suffix = f" with id {resource_id}" if resource_id else ""
        super().__init__(f"{resource}{suffix} not found")


class NothingToSettleError(GroupLedgerError):
    """Raised when settlements are requested for a group that is already settled."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group {group_id} has no outstanding balances")
