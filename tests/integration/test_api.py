"""Integration tests for the SimplePay HTTP endpoints."""

import json
from unittest.mock import patch
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from simplepay_gateway.api import main
from simplepay_gateway.api.dependencies import get_client, get_routes, get_store
from simplepay_gateway.api.main import app
from simplepay_gateway.domain.flows import offsite_route_signature
from simplepay_gateway.models.exceptions import TransportError
from simplepay_gateway.models.order import OrderStatus


@pytest.fixture
def api_client(mock_client, store, routes):
    """TestClient with the store, processor client and routes replaced."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_client] = lambda: mock_client
    app.dependency_overrides[get_routes] = lambda: routes
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def referenced_order(store, order):
    order.order_ref = "donation_abc"
    store.save_order(order)
    return order


@pytest.fixture
def processing_order(store, order):
    order.order_ref = "donation_abc"
    order.transaction_id = "504233881"
    order.status = OrderStatus.PROCESSING
    store.save_order(order)
    return order


def test_health_check(api_client):
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "simplepay-gateway"
    assert "environment" in response.json()


def test_root_endpoint(api_client):
    response = api_client.get("/")

    assert response.json()["service"] == "SimplePay Gateway"
    assert response.json()["version"] == "0.1.0"


def test_lifespan_logs_startup_and_shutdown():
    with patch.object(main, "logger") as logger:
        with TestClient(app) as client:
            client.get("/health")

    events = [call.args[0] for call in logger.info.call_args_list]
    assert events == ["starting_simplepay_gateway", "simplepay_gateway_shutdown_complete"]


class TestReturnEndpoint:
    """GET /simplepay/return"""

    def test_success_redirects_to_hint(self, api_client, store, referenced_order, make_return_params):
        params = make_return_params(
            event="SUCCESS",
            **{"donation-id": referenced_order.id, "success-url": "https://donate.example.org/thanks"},
        )

        response = api_client.get("/simplepay/return", params=params, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://donate.example.org/thanks"
        assert store.find_order(referenced_order.id).status == OrderStatus.PROCESSING

    def test_foreign_hint_redirects_to_configured_page(self, api_client, referenced_order, routes, make_return_params):
        params = make_return_params(
            event="SUCCESS",
            **{"donation-id": referenced_order.id, "success-url": "https://evil.example.com/phish"},
        )

        response = api_client.get("/simplepay/return", params=params, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == routes.success_page_url

    def test_timeout_falls_back_to_failure_page(self, api_client, referenced_order, routes, make_return_params):
        params = make_return_params(event="TIMEOUT", **{"donation-id": referenced_order.id})

        response = api_client.get("/simplepay/return", params=params, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == routes.failure_page_url

    def test_return_for_other_transaction_is_400(self, api_client, store, processing_order, make_return_params):
        params = make_return_params(
            event="CANCEL", transaction_id="999999", **{"donation-id": processing_order.id}
        )

        response = api_client.get("/simplepay/return", params=params, follow_redirects=False)

        assert response.status_code == 400
        assert "does not belong" in response.json()["detail"]
        assert store.find_order(processing_order.id).status == OrderStatus.PROCESSING

    def test_invalid_signature_is_400(self, api_client, store, referenced_order, make_return_params):
        params = make_return_params(**{"donation-id": referenced_order.id})
        params["s"] = "forged"

        response = api_client.get("/simplepay/return", params=params, follow_redirects=False)

        assert response.status_code == 400
        assert "signature" in response.json()["detail"]
        assert store.find_order(referenced_order.id).status == OrderStatus.PENDING

    def test_missing_donation_id_is_400(self, api_client, make_return_params):
        response = api_client.get("/simplepay/return", params=make_return_params(), follow_redirects=False)

        assert response.status_code == 400


class TestOffsiteReturnEndpoint:
    """GET /simplepay/offsite-return"""

    def test_query_reconciles_and_redirects(self, api_client, mock_client, store, processing_order, signer):
        mock_client.query_transaction.return_value = {"transactions": [{"status": "FINISHED"}]}
        params = {
            "donation-id": processing_order.id,
            "success-url": quote("https://donate.example.org/thanks", safe=""),
            "route-signature": offsite_route_signature(signer, processing_order.id),
        }

        response = api_client.get("/simplepay/offsite-return", params=params, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://donate.example.org/thanks"
        assert store.find_order(processing_order.id).status == OrderStatus.COMPLETE

    def test_foreign_success_url_redirects_to_success_page(self, api_client, mock_client, processing_order, signer, routes):
        mock_client.query_transaction.return_value = {"transactions": [{"status": "FINISHED"}]}
        params = {
            "donation-id": processing_order.id,
            "success-url": "https://evil.example.com/phish",
            "route-signature": offsite_route_signature(signer, processing_order.id),
        }

        response = api_client.get("/simplepay/offsite-return", params=params, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == routes.success_page_url

    def test_forged_route_signature_is_400(self, api_client, mock_client, processing_order):
        params = {"donation-id": processing_order.id, "route-signature": "forged"}

        response = api_client.get("/simplepay/offsite-return", params=params, follow_redirects=False)

        assert response.status_code == 400
        mock_client.query_transaction.assert_not_called()

    def test_query_failure_is_400(self, api_client, mock_client, store, processing_order, signer):
        mock_client.query_transaction.side_effect = TransportError("SimplePay API timeout calling query")
        params = {
            "donation-id": processing_order.id,
            "route-signature": offsite_route_signature(signer, processing_order.id),
        }

        response = api_client.get("/simplepay/offsite-return", params=params, follow_redirects=False)

        assert response.status_code == 400
        assert store.find_order(processing_order.id).status == OrderStatus.PROCESSING


class TestIpnEndpoint:
    """POST /simplepay/ipn"""

    def _body(self, status="FINISHED"):
        return json.dumps(
            {
                "orderRef": "donation_abc",
                "transactionId": 504233881,
                "status": status,
                "merchant": "PUBLICTESTHUF",
            }
        ).encode("utf-8")

    def test_valid_ipn_is_applied_and_echoed(self, api_client, signer, store, processing_order):
        body = self._body()

        response = api_client.post(
            "/simplepay/ipn",
            content=body,
            headers={"Content-Type": "application/json", "Signature": signer.sign(body)},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.headers["accept-language"] == "EN"
        assert signer.verify(response.content, response.headers["signature"])
        echoed = response.json()
        assert echoed["orderRef"] == "donation_abc"
        assert "receiveDate" in echoed
        assert store.find_order(processing_order.id).status == OrderStatus.COMPLETE

    def test_repeated_ipn_is_idempotent(self, api_client, signer, store, processing_order):
        body = self._body()
        headers = {"Signature": signer.sign(body)}

        api_client.post("/simplepay/ipn", content=body, headers=headers)
        api_client.post("/simplepay/ipn", content=body, headers=headers)

        saved = store.find_order(processing_order.id)
        assert saved.status == OrderStatus.COMPLETE
        assert saved.transaction_id == "504233881"

    def test_bad_signature_is_400_without_mutation(self, api_client, signer, store, processing_order):
        body = self._body(status="CANCELLED")

        response = api_client.post(
            "/simplepay/ipn",
            content=body,
            headers={"Signature": signer.sign(self._body())},
        )

        assert response.status_code == 400
        saved = store.find_order(processing_order.id)
        assert saved.status == OrderStatus.PROCESSING
        assert saved.notes == []

    def test_missing_signature_header_is_400(self, api_client, processing_order):
        response = api_client.post("/simplepay/ipn", content=self._body())

        assert response.status_code == 400

    def test_invalid_json_is_400(self, api_client, signer):
        body = b"not-json"

        response = api_client.post("/simplepay/ipn", content=body, headers={"Signature": signer.sign(body)})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON"
