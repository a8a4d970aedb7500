"""Domain models for the SimplePay gateway adapter."""

from simplepay_gateway.models.events import (
    PROCESSOR_STATUS_MAP,
    ProcessorStatus,
    RecurringSpec,
    ReturnEvent,
    ReturnEventKind,
    StartResponse,
)
from simplepay_gateway.models.exceptions import (
    ErrorKind,
    GatewayError,
    HttpStatusError,
    InvalidPayload,
    PaymentGatewayError,
    PreconditionError,
    ProcessorError,
    SignatureError,
    TransportError,
)
from simplepay_gateway.models.order import (
    BillingAddress,
    Money,
    Note,
    Order,
    OrderStatus,
    PayerIdentity,
    Subscription,
    SubscriptionStatus,
)

__all__ = [
    "PROCESSOR_STATUS_MAP",
    "BillingAddress",
    "ErrorKind",
    "GatewayError",
    "HttpStatusError",
    "InvalidPayload",
    "Money",
    "Note",
    "Order",
    "OrderStatus",
    "PayerIdentity",
    "PaymentGatewayError",
    "PreconditionError",
    "ProcessorError",
    "ProcessorStatus",
    "RecurringSpec",
    "ReturnEvent",
    "ReturnEventKind",
    "SignatureError",
    "StartResponse",
    "Subscription",
    "SubscriptionStatus",
    "TransportError",
]
