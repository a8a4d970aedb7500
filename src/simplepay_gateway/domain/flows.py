"""Payment flow variants.

The redirect (offsite) and embedded-form (onsite) gateways share one state
machine; what differs is configuration: where the processor sends the donor
back, which return fields are sent, and where the order reference comes from.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlencode, urlsplit

from simplepay_gateway.clients.processor_client import THREE_DS_REGISTERED_WITH_MERCHANT
from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.models.order import Order, PayerIdentity

# Routes exposed by simplepay_gateway.api
RETURN_PATH = "/simplepay/return"
OFFSITE_RETURN_PATH = "/simplepay/offsite-return"
IPN_PATH = "/simplepay/ipn"


class ReturnMode(str, Enum):
    """How the donor's browser comes back from the processor."""

    # Signed route on our side; the order is reconciled with a transaction query.
    QUERY_ON_RETURN = "QUERY_ON_RETURN"
    # Shared listener; the processor appends the signed r/s payload.
    SIGNED_LISTENER = "SIGNED_LISTENER"


@dataclass(frozen=True)
class ReturnRoutes:
    """Public URLs of the host platform used to build return links."""

    public_base_url: str
    success_page_url: str
    failure_page_url: str

    @property
    def allowed_hosts(self) -> frozenset[str]:
        """Hosts a donor may be redirected to after a return."""
        urls = (self.public_base_url, self.success_page_url, self.failure_page_url)
        return frozenset(host.lower() for host in (urlsplit(url).hostname for url in urls) if host)

    def listener_url(self, correlation_param: str, record_id: str, per_event: bool = False) -> str:
        params = {correlation_param: record_id}
        if per_event:
            params.update(
                {
                    "success-url": self.success_page_url,
                    "failure-url": self.failure_page_url,
                    "cancel-url": self.failure_page_url,
                    "timeout-url": self.failure_page_url,
                }
            )
        return f"{self.public_base_url.rstrip('/')}{RETURN_PATH}?{urlencode(params)}"

    def offsite_return_url(self, order_id: str, signer: Signer) -> str:
        params = {
            "donation-id": order_id,
            "success-url": self.success_page_url,
            "route-signature": offsite_route_signature(signer, order_id),
        }
        return f"{self.public_base_url.rstrip('/')}{OFFSITE_RETURN_PATH}?{urlencode(params)}"


def offsite_route_signature(signer: Signer, order_id: str) -> str:
    """Signature that makes the offsite return route unforgeable per order."""
    return signer.sign(f"offsite-return:{order_id}")


def build_invoice(payer: PayerIdentity) -> dict[str, str]:
    billing = payer.billing
    return {
        "name": payer.full_name,
        "country": billing.country or "US",
        "state": billing.state or "",
        "city": billing.city or "",
        "zip": billing.zip or "",
        "address": billing.address1 or "",
        "address2": billing.address2 or "",
    }


@dataclass(frozen=True)
class PaymentFlow:
    """
    Capability set of one gateway variant.

    Attributes:
        id: Gateway identifier registered with the host platform
        name: Human readable gateway name
        return_mode: How the donor returns from the processor
        requires_order_ref: The order reference must come from the caller
            (the embedded form generates it client side)
        order_ref_prefix: Prefix for references generated by the adapter
        store_payment_url: Keep the processor payment URL in order metadata
    """

    id: str
    name: str
    return_mode: ReturnMode
    requires_order_ref: bool = False
    order_ref_prefix: str = "donation_"
    store_payment_url: bool = False

    def return_fields(self, order: Order, routes: ReturnRoutes, signer: Signer) -> dict[str, Any]:
        if self.return_mode == ReturnMode.QUERY_ON_RETURN:
            return {"url": routes.offsite_return_url(order.id, signer)}

        listener = routes.listener_url("donation-id", order.id, per_event=True)
        return {
            "urls": {
                "success": listener,
                "fail": listener,
                "cancel": listener,
                "timeout": listener,
            }
        }

    def build_transaction_data(
        self,
        order: Order,
        routes: ReturnRoutes,
        signer: Signer,
        language: str = "EN",
    ) -> dict[str, Any]:
        data = base_transaction_data(order, language)
        data.update(self.return_fields(order, routes, signer))
        return data


def base_transaction_data(order: Order, language: str = "EN") -> dict[str, Any]:
    """Fields common to every ``start`` call."""
    return {
        "orderRef": order.order_ref,
        "currency": order.amount.currency,
        "total": order.amount.format_decimal(),
        "customerEmail": order.payer.email,
        "language": language,
        "invoice": build_invoice(order.payer),
        "threeDSReqAuthMethod": THREE_DS_REGISTERED_WITH_MERCHANT,
    }


OFFSITE_REDIRECT = PaymentFlow(
    id="simplepay-offsite",
    name="SimplePay - Redirect",
    return_mode=ReturnMode.QUERY_ON_RETURN,
)

ONSITE_EMBEDDED = PaymentFlow(
    id="simplepay-onsite",
    name="SimplePay - Credit Card",
    return_mode=ReturnMode.SIGNED_LISTENER,
    requires_order_ref=True,
    store_payment_url=True,
)

FLOWS: dict[str, PaymentFlow] = {flow.id: flow for flow in (OFFSITE_REDIRECT, ONSITE_EMBEDDED)}


def get_flow(flow_id: str) -> PaymentFlow:
    try:
        return FLOWS[flow_id]
    except KeyError:
        available = ", ".join(sorted(FLOWS))
        raise ValueError(f"Unknown payment flow: {flow_id}. Available flows: {available}") from None
