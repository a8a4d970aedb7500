"""HMAC-SHA384 request/response signing.

SimplePay signs every message with ``base64(HMAC-SHA384(body, secret_key))``
carried in a ``Signature`` header (or the ``s`` query parameter on browser
returns). Signatures are always computed over the literal bytes sent or
received; re-serializing JSON before verifying can reorder keys or change
escaping and break the signature.
"""

import base64
import hashlib
import hmac

from simplepay_gateway.models.exceptions import SignatureError


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(payload: bytes | str, key: bytes | str) -> str:
    """Calculate the base64-encoded HMAC-SHA384 signature of a payload.

    Args:
        payload: Exact bytes to sign (str is UTF-8 encoded)
        key: Merchant secret key

    Returns:
        Base64 signature string

    Raises:
        SignatureError: If the key is missing or empty
    """
    if not key:
        raise SignatureError("Signing key is not configured")

    digest = hmac.new(_as_bytes(key), _as_bytes(payload), hashlib.sha384).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(payload: bytes | str, signature: str | None, key: bytes | str | None) -> bool:
    """Check a signature against a payload in constant time.

    A missing key or signature always fails verification.
    """
    if not key or not signature:
        return False

    expected = sign(payload, key).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


class Signer:
    """Signs and verifies payloads with a bound merchant secret key."""

    def __init__(self, secret_key: str):
        self._secret_key = secret_key

    @property
    def has_key(self) -> bool:
        return bool(self._secret_key)

    def sign(self, payload: bytes | str) -> str:
        return sign(payload, self._secret_key)

    def verify(self, payload: bytes | str, signature: str | None) -> bool:
        return verify(payload, signature, self._secret_key)

    def require_valid(self, payload: bytes | str, signature: str | None) -> None:
        """Raise SignatureError unless the signature verifies."""
        if not self.verify(payload, signature):
            raise SignatureError("Invalid SimplePay signature")
