"""Order and subscription domain models.

The host platform owns these records and their storage. The adapter only
touches them through the narrow mutation methods below: read fields, set
status, set the processor transaction ID if it is still empty, assign the
order reference once, and append notes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


class OrderStatus(str, Enum):
    """Local order status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# Statuses only the server-to-server channel can set or leave.
SETTLED_STATUSES = frozenset({OrderStatus.COMPLETE, OrderStatus.REFUNDED})


class SubscriptionStatus(str, Enum):
    """Local subscription status."""

    INITIAL = "INITIAL"
    ACTIVE = "ACTIVE"
    FAILING = "FAILING"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Money:
    """Decimal amount with an ISO 4217 currency code."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError("amount cannot be negative")
        if not self.currency:
            raise ValueError("currency is required")

    def format_decimal(self) -> str:
        """Amount as a two-decimal string, the processor's wire format."""
        return str(self.amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    def scaled(self, factor: Decimal | str) -> "Money":
        return Money(self.amount * Decimal(str(factor)), self.currency)


@dataclass(frozen=True)
class BillingAddress:
    country: str = ""
    state: str = ""
    city: str = ""
    zip: str = ""
    address1: str = ""
    address2: str = ""


@dataclass(frozen=True)
class PayerIdentity:
    first_name: str
    last_name: str
    email: str
    billing: BillingAddress = field(default_factory=BillingAddress)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Note:
    """Single append-only note entry."""

    text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Order:
    """
    One donation or one subscription charge attempt.

    Attributes:
        id: Host platform record ID
        amount: Charged amount
        payer: Donor identity and billing address
        order_ref: Correlation string sent to the processor (immutable once set)
        transaction_id: Processor transaction ID (first write wins)
        status: Current local status
        notes: Append-only audit trail
    """

    id: str
    amount: Money
    payer: PayerIdentity
    order_ref: str = ""
    transaction_id: str = ""
    status: OrderStatus = OrderStatus.PENDING
    notes: list[Note] = field(default_factory=list)

    def set_status(self, status: OrderStatus) -> None:
        self.status = status

    def set_transaction_id_if_empty(self, transaction_id: str | None) -> bool:
        """Store the processor transaction ID unless one is already recorded."""
        if self.transaction_id or not transaction_id:
            return False
        self.transaction_id = str(transaction_id)
        return True

    def assign_order_ref(self, order_ref: str) -> None:
        if self.order_ref and self.order_ref != order_ref:
            raise ValueError(f"Order {self.id} already has order reference {self.order_ref}")
        self.order_ref = order_ref

    def add_note(self, text: str) -> Note:
        note = Note(text=text)
        self.notes.append(note)
        return note


@dataclass
class Subscription:
    """
    Recurring donation backed by an ordered chain of processor tokens.

    The active token is ``tokens[tokens_used]``; once ``tokens_used`` reaches
    the chain length the subscription can no longer renew itself.
    """

    id: str
    parent_order_id: str
    amount: Money
    status: SubscriptionStatus = SubscriptionStatus.INITIAL
    tokens: list[str] = field(default_factory=list)
    tokens_used: int = 0
    order_ref: str = ""
    transaction_id: str = ""
    notes: list[Note] = field(default_factory=list)

    def set_status(self, status: SubscriptionStatus) -> None:
        self.status = status

    def add_note(self, text: str) -> Note:
        note = Note(text=text)
        self.notes.append(note)
        return note
