"""Browser return payload decoding.

After payment SimplePay redirects the donor back with two query parameters:
``r`` is a base64-encoded JSON document and ``s`` its signature. The document
carries the event code (``e``), transaction ID (``t``), response code (``r``)
and order reference (``o``). The signature covers the decoded bytes, so
verification happens on those bytes before any field is read.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

import structlog

from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.models.events import ReturnEvent, ReturnEventKind
from simplepay_gateway.models.exceptions import InvalidPayload

logger = structlog.get_logger(__name__)

PAYLOAD_PARAM = "r"
SIGNATURE_PARAM = "s"


class ReturnEventMapper:
    """Turns raw return query parameters into a verified ReturnEvent."""

    def __init__(self, signer: Signer):
        self.signer = signer

    def decode(self, params: Mapping[str, Any]) -> ReturnEvent:
        """
        Decode and verify a browser return.

        Args:
            params: Raw query parameters of the return request

        Returns:
            ReturnEvent; unrecognised event codes map to UNKNOWN

        Raises:
            InvalidPayload: Missing fields, bad base64, bad signature or a
                payload that is not a JSON object
        """
        encoded = params.get(PAYLOAD_PARAM)
        signature = params.get(SIGNATURE_PARAM)

        if not encoded or not signature:
            raise InvalidPayload("Missing SimplePay response parameters.")

        try:
            payload = base64.b64decode(str(encoded), validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidPayload("Failed to decode SimplePay response payload.") from e

        if not self.signer.verify(payload, str(signature)):
            logger.warning("return_signature_invalid")
            raise InvalidPayload("Invalid SimplePay response signature.")

        try:
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidPayload("Invalid SimplePay response payload.") from e

        if not isinstance(data, dict):
            raise InvalidPayload("Invalid SimplePay response payload.")

        raw_event = data.get("e") or ""
        event = ReturnEvent(
            kind=ReturnEventKind.parse(raw_event),
            transaction_id=str(data.get("t") or ""),
            response_code=str(data.get("r") or ""),
            raw_event=str(raw_event),
            order_ref=str(data.get("o") or ""),
        )

        logger.info(
            "return_event_decoded",
            event_kind=event.kind.value,
            raw_event=event.raw_event,
            transaction_id=event.transaction_id,
            response_code=event.response_code,
        )
        return event
