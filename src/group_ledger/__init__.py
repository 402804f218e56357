"""GroupLedger - Split shared expenses and settle group balances."""

__version__ = "0.1.0"

from .aggregator import BalanceAggregator, aggregate
from .config import Settings, load_settings
from .db import Database
from .ledger import SettlementLedger
from .models import (
    Expense,
    ExpenseParticipant,
    Group,
    Member,
    ParticipantInput,
    Settlement,
    SettlementStatus,
    SplitType,
    Transfer,
)
from .planner import plan
from .service import LedgerService
from .splitter import split, split_policy

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "Expense",
    "ExpenseParticipant",
    "Group",
    "Member",
    "ParticipantInput",
    "Settlement",
    "SettlementStatus",
    "SplitType",
    "Transfer",
    "split",
    "split_policy",
    "aggregate",
    "BalanceAggregator",
    "plan",
    "SettlementLedger",
    "LedgerService",
]
