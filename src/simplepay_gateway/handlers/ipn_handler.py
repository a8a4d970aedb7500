"""
IPN (instant payment notification) handler.

The processor POSTs a signed JSON body. The signature is checked over the raw
request bytes before anything is parsed; a verified body is applied to the
order and echoed back with ``receiveDate`` added and a fresh signature, which
is how the processor knows the notification was received.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from simplepay_gateway.clients.processor_client import SIGNATURE_HEADER
from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.domain.state_machine import TransactionStateMachine
from simplepay_gateway.models.exceptions import InvalidPayload, SignatureError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IpnAcknowledgement:
    """Signed echo returned to the processor."""

    body: bytes
    signature: str
    outcome: str

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Accept-Language": "EN",
            SIGNATURE_HEADER: self.signature,
        }


class IpnHandler:
    """Verifies, applies and acknowledges processor notifications."""

    def __init__(self, state_machine: TransactionStateMachine, signer: Signer | None = None):
        self.state_machine = state_machine
        self.signer = signer or state_machine.signer

    def handle(self, raw_body: bytes, signature: str | None) -> IpnAcknowledgement:
        """
        Process one IPN request.

        Args:
            raw_body: Exact request body bytes
            signature: Value of the ``Signature`` request header

        Returns:
            IpnAcknowledgement with the echo body and its signature

        Raises:
            SignatureError: Signature missing or invalid (nothing is mutated)
            InvalidPayload: Body is not a JSON object
        """
        try:
            self.signer.require_valid(raw_body, signature)
        except SignatureError:
            logger.warning("ipn_signature_invalid", body_length=len(raw_body))
            raise

        try:
            ipn_data = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidPayload("Invalid JSON") from e

        if not isinstance(ipn_data, dict) or not ipn_data:
            raise InvalidPayload("Invalid JSON")

        logger.info(
            "ipn_received",
            order_ref=ipn_data.get("orderRef"),
            transaction_id=ipn_data.get("transactionId"),
            processor_status=ipn_data.get("status"),
        )

        outcome = self.state_machine.apply_notification(dict(ipn_data))

        ipn_data["receiveDate"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        body = json.dumps(ipn_data, separators=(",", ":")).encode("utf-8")

        logger.info("ipn_acknowledged", order_ref=ipn_data.get("orderRef"), outcome=outcome)
        return IpnAcknowledgement(body=body, signature=self.signer.sign(body), outcome=outcome)
