"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- Gateway configuration and signer bound to a test secret key
- In-memory order store pre-populated with sample records
- Factories for signed processor responses and browser return payloads
"""

import base64
import json
import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from simplepay_gateway.clients.processor_client import SimplePayClient
from simplepay_gateway.config import GatewayConfig
from simplepay_gateway.domain.flows import ReturnRoutes
from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.domain.state_machine import TransactionStateMachine
from simplepay_gateway.infrastructure.store import InMemoryOrderStore
from simplepay_gateway.models.order import (
    BillingAddress,
    Money,
    Order,
    PayerIdentity,
    Subscription,
    SubscriptionStatus,
)

TEST_SECRET_KEY = "FxDa5w314kLlNseq2sKuVwaqZshZT5d6"
TEST_MERCHANT_ID = "PUBLICTESTHUF"


@pytest.fixture
def gateway_config():
    """Sandbox configuration with a known secret key."""
    return GatewayConfig(
        merchant_id=TEST_MERCHANT_ID,
        secret_key=TEST_SECRET_KEY,
        sandbox=True,
        timeout_seconds=5.0,
    )


@pytest.fixture
def signer():
    return Signer(TEST_SECRET_KEY)


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def routes():
    return ReturnRoutes(
        public_base_url="https://donate.example.org",
        success_page_url="https://donate.example.org/donation/success",
        failure_page_url="https://donate.example.org/donation/failed",
    )


@pytest.fixture
def payer():
    return PayerIdentity(
        first_name="Jane",
        last_name="Doe",
        email="jane@example.org",
        billing=BillingAddress(
            country="HU",
            city="Budapest",
            zip="1111",
            address1="Fo utca 1",
        ),
    )


@pytest.fixture
def order(store, payer):
    """PENDING one-off donation saved in the store."""
    record = Order(id="1001", amount=Money(Decimal("25.00"), "HUF"), payer=payer)
    store.save_order(record)
    return record


@pytest.fixture
def subscription_order(store, payer):
    record = Order(id="2001", amount=Money(Decimal("10.00"), "HUF"), payer=payer)
    store.save_order(record)
    return record


@pytest.fixture
def subscription(store, subscription_order):
    """INITIAL subscription whose first payment is ``subscription_order``."""
    record = Subscription(
        id="301",
        parent_order_id=subscription_order.id,
        amount=subscription_order.amount,
    )
    store.save_subscription(record)
    return record


@pytest.fixture
def active_subscription(store, subscription_order):
    """ACTIVE subscription with a three token chain."""
    record = Subscription(
        id="302",
        parent_order_id=subscription_order.id,
        amount=subscription_order.amount,
        status=SubscriptionStatus.ACTIVE,
        tokens=["SPT_A", "SPT_B", "SPT_C"],
    )
    store.save_subscription(record)
    return record


@pytest.fixture
def mock_client(signer):
    """Processor client double; tests configure the API methods they need."""
    client = MagicMock(spec=SimplePayClient)
    client.signer = signer
    return client


@pytest.fixture
def state_machine(mock_client, store, routes):
    return TransactionStateMachine(client=mock_client, store=store, routes=routes)


@pytest.fixture
def client(gateway_config):
    """Real SimplePay client; tests patch ``client.http_client.post``."""
    simplepay_client = SimplePayClient(gateway_config)
    yield simplepay_client
    simplepay_client.close()


@pytest.fixture
def make_response(signer):
    """Build a mocked httpx response carrying a signed JSON body."""

    def _make(data, status_code=200, signature=None, raw_body=None):
        body = raw_body if raw_body is not None else json.dumps(data).encode("utf-8")
        mock_response = MagicMock(spec=httpx.Response)
        mock_response.status_code = status_code
        mock_response.content = body
        mock_response.headers = httpx.Headers(
            {"Signature": signature if signature is not None else signer.sign(body)}
        )
        return mock_response

    return _make


@pytest.fixture
def make_return_params(signer):
    """Build the r/s query parameters SimplePay appends to a browser return."""

    def _make(event="SUCCESS", transaction_id="504233881", response_code="0", order_ref="donation_abc", **extra):
        payload = json.dumps(
            {
                "r": response_code,
                "t": transaction_id,
                "e": event,
                "m": TEST_MERCHANT_ID,
                "o": order_ref,
            }
        ).encode("utf-8")
        params = {
            "r": base64.b64encode(payload).decode("ascii"),
            "s": signer.sign(payload),
        }
        params.update(extra)
        return params

    return _make
