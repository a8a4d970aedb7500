"""Unit tests for order domain models."""

from decimal import Decimal

import pytest

from simplepay_gateway.models.events import ReturnEventKind, StartResponse, parse_processor_status
from simplepay_gateway.models.exceptions import ErrorKind, PaymentGatewayError, ProcessorError
from simplepay_gateway.models.order import Money, Order, OrderStatus


class TestMoney:
    def test_format_decimal_rounds_half_up(self):
        assert Money(Decimal("10.005"), "EUR").format_decimal() == "10.01"
        assert Money(Decimal("25"), "HUF").format_decimal() == "25.00"

    def test_float_input_is_coerced(self):
        assert Money(12.5, "EUR").amount == Decimal("12.5")

    def test_scaled(self):
        assert Money(Decimal("10.00"), "HUF").scaled("1.5").format_decimal() == "15.00"

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            Money(Decimal("-1"), "HUF")


class TestOrder:
    def test_transaction_id_first_write_wins(self, payer):
        order = Order(id="1", amount=Money(Decimal("1"), "HUF"), payer=payer)

        assert order.set_transaction_id_if_empty("111") is True
        assert order.set_transaction_id_if_empty("222") is False
        assert order.set_transaction_id_if_empty("") is False
        assert order.transaction_id == "111"

    def test_order_ref_is_immutable(self, payer):
        order = Order(id="1", amount=Money(Decimal("1"), "HUF"), payer=payer)
        order.assign_order_ref("donation_a")
        order.assign_order_ref("donation_a")

        with pytest.raises(ValueError, match="already has order reference"):
            order.assign_order_ref("donation_b")

        assert order.order_ref == "donation_a"
        assert order.status == OrderStatus.PENDING


class TestEvents:
    def test_parse_processor_status(self):
        assert parse_processor_status("FINISHED").value == "FINISHED"
        assert parse_processor_status("INPAYMENT") is None
        assert parse_processor_status(None) is None

    def test_return_event_kind_parse_is_exact(self):
        assert ReturnEventKind.parse("CANCEL") == ReturnEventKind.CANCEL
        assert ReturnEventKind.parse("cancel") == ReturnEventKind.UNKNOWN
        assert ReturnEventKind.parse(None) == ReturnEventKind.UNKNOWN

    def test_start_response_ignores_malformed_tokens(self):
        response = StartResponse.from_response({"transactionId": 5, "tokens": "SPT_A"})

        assert response.transaction_id == "5"
        assert response.tokens == []
        assert response.payment_url == ""


class TestExceptions:
    def test_payment_gateway_error_keeps_cause_kind(self):
        error = PaymentGatewayError.from_error(ProcessorError(["5321"]))

        assert error.kind == ErrorKind.PROCESSOR
        assert str(error) == "SimplePay API error: 5321"
