"""Custom exceptions for the SimplePay gateway adapter."""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to every gateway error."""

    TRANSPORT = "TRANSPORT"
    HTTP_STATUS = "HTTP_STATUS"
    SIGNATURE = "SIGNATURE"
    PROCESSOR = "PROCESSOR"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    PRECONDITION = "PRECONDITION"


class GatewayError(Exception):
    """Base exception for gateway errors."""

    kind: ErrorKind = ErrorKind.PROCESSOR


class TransportError(GatewayError):
    """
    Raised when the processor cannot be reached or the request times out.

    Never retried inside the adapter; retry policy belongs to the caller.
    """

    kind = ErrorKind.TRANSPORT


class HttpStatusError(GatewayError):
    """Raised when the processor answers with a non-2xx status."""

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"SimplePay API returned HTTP {status_code}")


class SignatureError(GatewayError):
    """
    Raised when a signature is missing or does not verify.

    The associated request or response is never trusted.
    """

    kind = ErrorKind.SIGNATURE


class ProcessorError(GatewayError):
    """Raised when the processor reports explicit error codes."""

    kind = ErrorKind.PROCESSOR

    def __init__(self, error_codes: list, message: str | None = None):
        self.error_codes = [str(code) for code in error_codes]
        super().__init__(message or f"SimplePay API error: {', '.join(self.error_codes)}")


class InvalidPayload(GatewayError):
    """Raised for a malformed browser-return payload or notification body."""

    kind = ErrorKind.INVALID_PAYLOAD


class PreconditionError(GatewayError):
    """
    Raised when a trigger's precondition does not hold.

    Examples:
    - Refund of an order without a processor transaction ID
    - Renewal without an active token
    - Renewal with a token the processor reports as inactive
    """

    kind = ErrorKind.PRECONDITION


class PaymentGatewayError(GatewayError):
    """
    Gateway-level error surfaced to the host platform.

    Raised after the local record has been moved to its failure state; the
    host decides what to show the donor. ``kind`` mirrors the underlying cause.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.PROCESSOR):
        self.kind = kind
        super().__init__(message)

    @classmethod
    def from_error(cls, error: GatewayError) -> "PaymentGatewayError":
        return cls(str(error), kind=error.kind)
