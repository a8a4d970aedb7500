"""Outbound clients for the SimplePay payment API."""

from simplepay_gateway.clients.processor_client import SimplePayClient, generate_salt

__all__ = ["SimplePayClient", "generate_salt"]
