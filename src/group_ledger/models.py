"""Pydantic domain models for GroupLedger."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from .exceptions import InternalConsistencyError
from .money import Money


def new_id() -> str:
    """Generate a new entity id."""
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Groups & Members
# ============================================================================


class MemberRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class Member(BaseModel):
    """A member of a group, referenced by user id."""

    user_id: str
    role: MemberRole = MemberRole.MEMBER
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.user_id


class Group(BaseModel):
    """A group sharing expenses in one currency."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")  # ISO 4217
    members: list[Member] = Field(default_factory=list)

    def member_ids(self) -> list[str]:
        return [member.user_id for member in self.members]

    def has_member(self, user_id: str) -> bool:
        return any(member.user_id == user_id for member in self.members)


# ============================================================================
# Split policies
# ============================================================================


class SplitType(str, Enum):
    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    SHARES = "SHARES"
    EXACT = "EXACT"


class ParticipantInput(BaseModel):
    """A participant as supplied by a caller, before splitting.

    Which optional field is required depends on the split type:
    EXACT needs share_cents, PERCENTAGE needs share_percentage and
    SHARES needs share_count. EQUAL needs none. Ranges are checked by
    the splitter so bad values surface as InvalidSplitError.
    """

    user_id: str
    share_cents: int | None = None
    share_percentage: Decimal | None = None
    share_count: int | None = None


class EqualSplit(BaseModel):
    kind: Literal["EQUAL"] = "EQUAL"
    user_ids: list[str]


class ExactSplit(BaseModel):
    kind: Literal["EXACT"] = "EXACT"
    shares: dict[str, int]  # user_id -> cents


class PercentageSplit(BaseModel):
    kind: Literal["PERCENTAGE"] = "PERCENTAGE"
    percentages: dict[str, Decimal]  # user_id -> percent of total


class SharesSplit(BaseModel):
    kind: Literal["SHARES"] = "SHARES"
    counts: dict[str, int]  # user_id -> number of shares


SplitPolicy = Annotated[
    EqualSplit | ExactSplit | PercentageSplit | SharesSplit,
    Field(discriminator="kind"),
]


# ============================================================================
# Expenses
# ============================================================================


class ExpenseParticipant(BaseModel):
    """One participant's share of an expense."""

    user_id: str
    share_cents: int = Field(ge=0)


class Expense(BaseModel):
    """An expense paid by one member on behalf of its participants.

    The participants' shares always sum to amount_cents. Edits go through
    the splitter again (replace-and-resplit); the model itself is never
    patched field by field.
    """

    id: str = Field(default_factory=new_id)
    group_id: str
    payer_id: str
    amount_cents: int = Field(ge=1)
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    split_type: SplitType
    participants: list[ExpenseParticipant]
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_shares_sum(self) -> "Expense":
        total = sum(p.share_cents for p in self.participants)
        if total != self.amount_cents:
            raise InternalConsistencyError(
                f"Expense {self.id}: participant shares sum to {total}, "
                f"expected {self.amount_cents}"
            )
        user_ids = [p.user_id for p in self.participants]
        if len(set(user_ids)) != len(user_ids):
            raise InternalConsistencyError(
                f"Expense {self.id}: duplicate participant"
            )
        return self

    @property
    def amount(self) -> Money:
        return Money(cents=self.amount_cents, currency=self.currency)


# ============================================================================
# Settlements
# ============================================================================


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class SettlementMethod(str, Enum):
    VENMO = "VENMO"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"
    STRIPE_LINK = "STRIPE_LINK"
    MARK_ONLY = "MARK_ONLY"


class Transfer(BaseModel):
    """A planned transfer from a debtor to a creditor."""

    model_config = {"frozen": True}

    from_user_id: str
    to_user_id: str
    amount_cents: int = Field(ge=1)


class Settlement(BaseModel):
    """A recorded transfer that reduces a debtor's balance toward a creditor.

    Only CONFIRMED settlements count toward balances.
    """

    id: str = Field(default_factory=new_id)
    group_id: str
    from_user_id: str  # debtor
    to_user_id: str  # creditor
    amount_cents: int = Field(ge=1)
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    method: SettlementMethod = SettlementMethod.MARK_ONLY
    external_ref: str | None = None
    status: SettlementStatus = SettlementStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    confirmed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_parties(self) -> "Settlement":
        if self.from_user_id == self.to_user_id:
            raise ValueError("A settlement needs two different users")
        return self

    @property
    def amount(self) -> Money:
        return Money(cents=self.amount_cents, currency=self.currency)

    @property
    def is_confirmed(self) -> bool:
        return self.status == SettlementStatus.CONFIRMED


# ============================================================================
# Reporting
# ============================================================================


class MemberSummary(BaseModel):
    """Totals for one member of a group."""

    user_id: str
    total_paid: int = 0  # expenses advanced
    total_owed: int = 0  # own shares of expenses
    settled_out: int = 0  # confirmed settlements paid
    settled_in: int = 0  # confirmed settlements received
    net_balance: int = 0
