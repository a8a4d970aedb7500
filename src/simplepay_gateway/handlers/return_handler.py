"""Browser return handling.

Two return routes exist:

- The shared listener (onsite flow and subscriptions): the processor appends
  the signed ``r``/``s`` payload, which is decoded and applied provisionally.
- The offsite return route: carries our own per-order route signature and
  reconciles the order with a server-side transaction query.

Both validate everything before touching records and hand back the URL to
redirect the donor to.
"""

import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlsplit

import structlog

from simplepay_gateway.domain.flows import ReturnRoutes, offsite_route_signature
from simplepay_gateway.domain.return_events import ReturnEventMapper
from simplepay_gateway.domain.state_machine import TransactionStateMachine
from simplepay_gateway.infrastructure.store import OrderStore
from simplepay_gateway.models.events import ReturnEvent, ReturnEventKind
from simplepay_gateway.models.exceptions import InvalidPayload, PreconditionError, SignatureError
from simplepay_gateway.models.order import Order

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RedirectHints:
    """Per-event redirect targets carried on the return URL (may be blank)."""

    success: str = ""
    fail: str = ""
    cancel: str = ""
    timeout: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "RedirectHints":
        return cls(
            success=str(params.get("success-url") or ""),
            fail=str(params.get("failure-url") or ""),
            cancel=str(params.get("cancel-url") or ""),
            timeout=str(params.get("timeout-url") or ""),
        )


def _decode_url(url: str) -> str:
    return unquote(url) or url


def safe_redirect_url(hint: str, fallback: str, routes: ReturnRoutes) -> str:
    """
    Decode a redirect hint and keep it only if it stays on the platform.

    Hints travel unsigned on the return URL, so anything pointing at a
    foreign host (or a scheme-relative ``//host`` path) falls back to the
    configured page.
    """
    if not hint:
        return fallback

    url = _decode_url(hint).strip()
    if url.startswith("/") and not url.startswith(("//", "/\\")):
        return url

    parts = urlsplit(url)
    if parts.scheme in ("http", "https") and (parts.hostname or "").lower() in routes.allowed_hosts:
        return url

    logger.warning("redirect_hint_rejected", redirect_url=url)
    return fallback


def determine_redirect_url(
    kind: ReturnEventKind,
    hints: RedirectHints,
    routes: ReturnRoutes,
) -> str:
    """Pick the donor's redirect target; FAIL and unknown events go to the failure page."""
    event_hints = {
        ReturnEventKind.SUCCESS: hints.success,
        ReturnEventKind.CANCEL: hints.cancel,
        ReturnEventKind.TIMEOUT: hints.timeout,
    }
    fallback = routes.success_page_url if kind == ReturnEventKind.SUCCESS else routes.failure_page_url
    return safe_redirect_url(event_hints.get(kind, hints.fail), fallback, routes)


def ensure_event_belongs_to(order: Order, event: ReturnEvent) -> None:
    """
    Reject a verified return whose transaction or order reference is not this order's.

    The correlation ID on the URL is unsigned; only the payload is, so the
    payload has to agree with the record it is about to change.
    """
    if event.order_ref and event.order_ref != order.order_ref:
        raise InvalidPayload("SimplePay response does not belong to this donation.")
    if order.transaction_id and event.transaction_id and event.transaction_id != order.transaction_id:
        raise InvalidPayload("SimplePay response does not belong to this donation.")


class ReturnHandler:
    """Resolves return requests to an order, applies them and picks the redirect."""

    def __init__(
        self,
        state_machine: TransactionStateMachine,
        mapper: ReturnEventMapper,
        store: OrderStore,
        routes: ReturnRoutes,
    ):
        self.state_machine = state_machine
        self.mapper = mapper
        self.store = store
        self.routes = routes

    def handle_listener_request(self, params: Mapping[str, Any]) -> str:
        """
        Process a shared-listener return.

        Args:
            params: Query parameters (r, s, donation-id or subscription-id, hints)

        Returns:
            Redirect URL for the donor

        Raises:
            InvalidPayload: Missing correlation ID, bad payload/signature, or a
                payload issued for another transaction
            PreconditionError: Referenced record does not exist
        """
        donation_id = params.get("donation-id")
        subscription_id = params.get("subscription-id")
        if not donation_id and not subscription_id:
            raise InvalidPayload("Missing donation reference in SimplePay return URL.")

        event = self.mapper.decode(params)
        order = self._resolve_order(donation_id, subscription_id)
        ensure_event_belongs_to(order, event)

        self.state_machine.apply_return_event(order, event)
        redirect_url = determine_redirect_url(event.kind, RedirectHints.from_params(params), self.routes)

        logger.info(
            "return_handled",
            order_id=order.id,
            event_kind=event.kind.value,
            redirect_url=redirect_url,
        )
        return redirect_url

    def handle_offsite_return(self, params: Mapping[str, Any]) -> str:
        """
        Process the offsite flow's signed return route.

        Raises:
            InvalidPayload: Missing donation ID
            SignatureError: Route signature does not match the donation
            PreconditionError: Unknown donation or no transaction to query
            GatewayError: Transaction query failed
        """
        order_id = params.get("donation-id")
        if not order_id:
            raise InvalidPayload("Missing donation ID")

        signer = self.state_machine.signer
        supplied = str(params.get("route-signature") or "")
        if not signer.has_key or not supplied:
            raise SignatureError("Invalid return route signature")
        expected = offsite_route_signature(signer, str(order_id))
        if not hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8")):
            raise SignatureError("Invalid return route signature")

        order = self.store.find_order(str(order_id))
        if order is None:
            raise PreconditionError("Donation not found")

        # The success page renders whatever status the query left behind.
        order = self.state_machine.reconcile_with_query(order)
        redirect_url = safe_redirect_url(
            str(params.get("success-url") or ""), self.routes.success_page_url, self.routes
        )

        logger.info("offsite_return_handled", order_id=order.id, status=order.status.value)
        return redirect_url

    def _resolve_order(self, donation_id: Any, subscription_id: Any) -> Order:
        if donation_id:
            order = self.store.find_order(str(donation_id))
        else:
            subscription = self.store.find_subscription(str(subscription_id))
            order = self.store.find_order(subscription.parent_order_id) if subscription else None

        if order is None:
            raise PreconditionError("Unable to locate the donation referenced by SimplePay.")
        return order
