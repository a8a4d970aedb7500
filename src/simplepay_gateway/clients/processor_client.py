"""SimplePay API client.

Every call follows the same contract:

1. Merge the caller's fields over the default scaffold, then add a fresh salt
2. Serialize to JSON bytes and sign them (``Signature`` header)
3. POST to ``{base}/{endpoint}``
4. Verify the response ``Signature`` header over the raw body bytes
5. Only then parse the JSON and check for ``errorCodes``

Failures raise classified GatewayError subclasses and never touch local
records; the caller decides what to do with them.
"""

import hashlib
import json
import random
import secrets
import uuid
from typing import Any

import httpx
import structlog

from simplepay_gateway.config import GatewayConfig
from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.models.events import RecurringSpec, StartResponse
from simplepay_gateway.models.exceptions import (
    HttpStatusError,
    InvalidPayload,
    ProcessorError,
    SignatureError,
    TransportError,
)

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "Signature"

# Processor endpoints under {base}/payment/v2/
ENDPOINT_START = "start"
ENDPOINT_DO_RECURRING = "dorecurring"
ENDPOINT_QUERY = "query"
ENDPOINT_REFUND = "refund"
ENDPOINT_TOKEN_QUERY = "tokenquery"
ENDPOINT_TOKEN_CANCEL = "tokencancel"

DEFAULT_METHODS = ["CARD"]
DEFAULT_PAYMENT_TIMEOUT_SECONDS = 1800
THREE_DS_REGISTERED_WITH_MERCHANT = "02"


def generate_salt() -> str:
    """
    Generate a per-request salt.

    Uses the OS CSPRNG. Only if that source is unavailable does it fall back
    to a non-cryptographic id, which is logged as a degraded path.
    """
    try:
        return secrets.token_hex(16)
    except NotImplementedError:
        logger.warning("salt_strong_random_unavailable")
        seed = f"{uuid.uuid1().hex}{random.random()}"
        return hashlib.md5(seed.encode("utf-8")).hexdigest()


class SimplePayClient:
    """
    Client for the SimplePay v2 payment API.

    Requests are synchronous with a bounded timeout; exceeding it is a
    TransportError and nothing is retried here.
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.Client | None = None,
    ):
        """
        Initialize the SimplePay client.

        Args:
            config: Merchant credentials and environment selection
            http_client: Optional pre-built httpx client (tests, connection reuse)
        """
        self.config = config
        self.base_url = config.api_base_url.rstrip("/")
        self.signer = Signer(config.secret_key)
        self.http_client = http_client or httpx.Client(timeout=config.timeout_seconds)

        logger.info(
            "simplepay_client_initialized",
            base_url=self.base_url,
            sandbox=config.sandbox,
            timeout_seconds=config.timeout_seconds,
        )

    def close(self) -> None:
        """Close the HTTP client connection pool."""
        self.http_client.close()

    def __enter__(self) -> "SimplePayClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Payment operations
    # ------------------------------------------------------------------

    def create_payment(self, transaction_data: dict[str, Any]) -> StartResponse:
        """
        Start a one-off payment.

        Args:
            transaction_data: orderRef, total, currency, customerEmail, invoice,
                url/urls and any other start fields. Caller fields override the
                scaffold; the salt is always regenerated.

        Returns:
            StartResponse with transactionId and paymentUrl
        """
        data = self._build_payload(self._start_scaffold(), transaction_data)
        return StartResponse.from_response(self._make_request(ENDPOINT_START, data))

    def create_recurring_payment(
        self,
        transaction_data: dict[str, Any],
        recurring: RecurringSpec,
    ) -> StartResponse:
        """Start a payment that also registers a token chain for future charges."""
        scaffold = self._start_scaffold()
        scaffold["recurring"] = recurring.to_payload()
        data = self._build_payload(scaffold, transaction_data)
        return StartResponse.from_response(self._make_request(ENDPOINT_START, data))

    def process_recurring_payment(
        self,
        payment_data: dict[str, Any],
        token: str,
    ) -> dict[str, Any]:
        """Charge a stored token (merchant initiated transaction)."""
        scaffold = {
            "merchant": self.config.merchant_id,
            "sdkVersion": self.config.sdk_version,
            "token": token,
            "type": "MIT",
            "threeDSReqAuthMethod": THREE_DS_REGISTERED_WITH_MERCHANT,
        }
        data = self._build_payload(scaffold, payment_data)
        return self._make_request(ENDPOINT_DO_RECURRING, data)

    def query_transaction(self, transaction_id: str) -> dict[str, Any]:
        data = self._build_payload(self._base_scaffold(), {"transactionIds": [transaction_id]})
        return self._make_request(ENDPOINT_QUERY, data)

    def refund_transaction(
        self,
        transaction_id: str,
        amount: str,
        currency: str,
    ) -> dict[str, Any]:
        data = self._build_payload(
            self._base_scaffold(),
            {"transactionId": transaction_id, "refundTotal": amount, "currency": currency},
        )
        return self._make_request(ENDPOINT_REFUND, data)

    def query_token(self, token: str) -> dict[str, Any]:
        data = self._build_payload(self._base_scaffold(), {"token": token})
        return self._make_request(ENDPOINT_TOKEN_QUERY, data)

    def cancel_token(self, token: str) -> dict[str, Any]:
        data = self._build_payload(self._base_scaffold(), {"token": token})
        return self._make_request(ENDPOINT_TOKEN_CANCEL, data)

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _base_scaffold(self) -> dict[str, Any]:
        return {
            "merchant": self.config.merchant_id,
            "sdkVersion": self.config.sdk_version,
        }

    def _start_scaffold(self) -> dict[str, Any]:
        scaffold = self._base_scaffold()
        scaffold["methods"] = list(DEFAULT_METHODS)
        scaffold["timeout"] = DEFAULT_PAYMENT_TIMEOUT_SECONDS
        return scaffold

    @staticmethod
    def _build_payload(scaffold: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        data = {**scaffold, **fields}
        data["salt"] = generate_salt()
        return data

    def _make_request(self, endpoint: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Sign, send and verify a single API call.

        Raises:
            TransportError: Network failure or timeout
            HttpStatusError: Non-2xx response
            SignatureError: Response signature missing or invalid
            InvalidPayload: Response body is not a JSON object
            ProcessorError: Response carries errorCodes
        """
        url = f"{self.base_url}/{endpoint}"
        body = json.dumps(data, separators=(",", ":")).encode("utf-8")
        signature = self.signer.sign(body)

        logger.info(
            "simplepay_request",
            endpoint=endpoint,
            url=url,
            order_ref=data.get("orderRef"),
        )

        try:
            response = self.http_client.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    SIGNATURE_HEADER: signature,
                },
                content=body,
            )
        except httpx.TimeoutException as e:
            logger.error("simplepay_timeout", endpoint=endpoint, error=str(e))
            raise TransportError(f"SimplePay API timeout calling {endpoint}") from e
        except httpx.RequestError as e:
            logger.error("simplepay_request_error", endpoint=endpoint, error=str(e))
            raise TransportError(f"SimplePay API connection error: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                "simplepay_http_error",
                endpoint=endpoint,
                status_code=response.status_code,
            )
            raise HttpStatusError(response.status_code)

        raw_body = response.content
        if not self.signer.verify(raw_body, response.headers.get(SIGNATURE_HEADER, "")):
            logger.error("simplepay_response_signature_invalid", endpoint=endpoint)
            raise SignatureError("Invalid response signature from SimplePay")

        try:
            response_data = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidPayload(f"Non-JSON response from SimplePay {endpoint}") from e

        if not isinstance(response_data, dict):
            raise InvalidPayload(f"Unexpected response shape from SimplePay {endpoint}")

        error_codes = response_data.get("errorCodes")
        if error_codes:
            codes = error_codes if isinstance(error_codes, list) else [error_codes]
            logger.warning(
                "simplepay_error_codes",
                endpoint=endpoint,
                error_codes=codes,
            )
            raise ProcessorError(codes)

        logger.info(
            "simplepay_response",
            endpoint=endpoint,
            transaction_id=response_data.get("transactionId"),
        )
        return response_data
