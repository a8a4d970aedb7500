"""Processor-facing value objects: return events, IPN statuses, API responses."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from simplepay_gateway.models.order import OrderStatus


class ReturnEventKind(str, Enum):
    """Event code carried in the browser return payload (field ``e``)."""

    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    CANCEL = "CANCEL"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "ReturnEventKind":
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ReturnEvent:
    """Normalized, signature-verified browser redirect."""

    kind: ReturnEventKind
    transaction_id: str = ""
    response_code: str = ""
    raw_event: str = ""
    order_ref: str = ""


class ProcessorStatus(str, Enum):
    """Transaction statuses reported by IPN and the query endpoint."""

    FINISHED = "FINISHED"
    REFUND = "REFUND"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    AUTHORISED = "AUTHORISED"
    REVERSED = "REVERSED"


# Authoritative mapping from processor status to local order status.
PROCESSOR_STATUS_MAP: dict[ProcessorStatus, OrderStatus] = {
    ProcessorStatus.FINISHED: OrderStatus.COMPLETE,
    ProcessorStatus.REFUND: OrderStatus.REFUNDED,
    ProcessorStatus.CANCELLED: OrderStatus.CANCELLED,
    ProcessorStatus.TIMEOUT: OrderStatus.FAILED,
    ProcessorStatus.AUTHORISED: OrderStatus.PROCESSING,
    ProcessorStatus.REVERSED: OrderStatus.CANCELLED,
}

# Note wording per processor status.
PROCESSOR_STATUS_VERBS: dict[ProcessorStatus, str] = {
    ProcessorStatus.FINISHED: "completed",
    ProcessorStatus.REFUND: "refunded",
    ProcessorStatus.CANCELLED: "cancelled",
    ProcessorStatus.TIMEOUT: "timed out",
    ProcessorStatus.AUTHORISED: "authorised",
    ProcessorStatus.REVERSED: "reversed",
}


def parse_processor_status(value: Any) -> ProcessorStatus | None:
    try:
        return ProcessorStatus(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class RecurringSpec:
    """Token chain request sent with a recurring ``start`` call."""

    times: int
    until: str
    max_amount: str

    def to_payload(self) -> dict[str, Any]:
        return {"times": self.times, "until": self.until, "maxAmount": self.max_amount}


@dataclass(frozen=True)
class StartResponse:
    """Verified answer of the ``start`` endpoint."""

    transaction_id: str
    payment_url: str
    tokens: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "StartResponse":
        tokens = data.get("tokens")
        return cls(
            transaction_id=str(data.get("transactionId") or ""),
            payment_url=str(data.get("paymentUrl") or ""),
            tokens=[str(t) for t in tokens] if isinstance(tokens, list) else [],
            raw=data,
        )
