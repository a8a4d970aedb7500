"""Inbound request handlers (browser returns and IPN)."""

from simplepay_gateway.handlers.ipn_handler import IpnAcknowledgement, IpnHandler
from simplepay_gateway.handlers.return_handler import (
    RedirectHints,
    ReturnHandler,
    determine_redirect_url,
)

__all__ = [
    "IpnAcknowledgement",
    "IpnHandler",
    "RedirectHints",
    "ReturnHandler",
    "determine_redirect_url",
]
