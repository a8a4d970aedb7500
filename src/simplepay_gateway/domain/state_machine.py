"""
Payment transaction lifecycle.

An order moves through its statuses in response to independent triggers that
may race or repeat:

- Create: start the payment at the processor (PENDING -> PROCESSING | FAILED)
- BrowserReturn: signed redirect from the donor's browser (provisional)
- AsyncNotify: server-to-server IPN, the only authority for COMPLETE
- QueryReconcile: server-side transaction query after an offsite return
- Renewal: merchant-initiated charge against the subscription's active token
- Cancel: cancel every token of a subscription, then the subscription
- Refund: ask the processor to refund; the REFUND notification sets the status

Every status change is paired with exactly one note on the record. The
processor transaction ID is first-write-wins and the order reference is
assigned before the first processor call.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from simplepay_gateway.clients.processor_client import SimplePayClient
from simplepay_gateway.domain.flows import (
    PaymentFlow,
    ReturnMode,
    ReturnRoutes,
    base_transaction_data,
)
from simplepay_gateway.domain.signer import Signer
from simplepay_gateway.domain.token_rotator import TokenRotator
from simplepay_gateway.infrastructure.store import META_PAYMENT_URL, OrderStore
from simplepay_gateway.models.events import (
    PROCESSOR_STATUS_MAP,
    PROCESSOR_STATUS_VERBS,
    ProcessorStatus,
    RecurringSpec,
    ReturnEvent,
    ReturnEventKind,
    parse_processor_status,
)
from simplepay_gateway.models.exceptions import (
    ErrorKind,
    GatewayError,
    InvalidPayload,
    PaymentGatewayError,
    PreconditionError,
)
from simplepay_gateway.models.order import (
    SETTLED_STATUSES,
    Order,
    OrderStatus,
    Subscription,
    SubscriptionStatus,
)

logger = structlog.get_logger(__name__)

# Recurring chain requested at subscription start
RECURRING_TIMES = 24
RECURRING_HORIZON = timedelta(days=5 * 365)
RECURRING_MAX_AMOUNT_FACTOR = "1.5"

TOKEN_STATUS_ACTIVE = "active"

# Browser return events only ever move an order provisionally.
RETURN_EVENT_STATUS: dict[ReturnEventKind, OrderStatus] = {
    ReturnEventKind.SUCCESS: OrderStatus.PROCESSING,
    ReturnEventKind.FAIL: OrderStatus.FAILED,
    ReturnEventKind.TIMEOUT: OrderStatus.FAILED,
    ReturnEventKind.CANCEL: OrderStatus.CANCELLED,
}


class IpnOutcome:
    """Result of applying an IPN to local records."""

    APPLIED = "applied"
    IGNORED_MISSING_FIELDS = "ignored_missing_fields"
    IGNORED_UNKNOWN_ORDER = "ignored_unknown_order"
    IGNORED_UNKNOWN_STATUS = "ignored_unknown_status"


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a successful Create trigger."""

    order: Order
    transaction_id: str
    payment_url: str
    redirect_url: str | None = None


def new_order_ref(prefix: str) -> str:
    """Unique correlation string for one payment attempt."""
    return f"{prefix}{uuid.uuid4().hex}"


def _can_apply_authoritative(current: OrderStatus, target: OrderStatus) -> bool:
    """Out-of-order notifications must not roll a settled order back."""
    if current == OrderStatus.REFUNDED and target in (OrderStatus.COMPLETE, OrderStatus.PROCESSING):
        return False
    if current == OrderStatus.COMPLETE and target == OrderStatus.PROCESSING:
        return False
    return True


class TransactionStateMachine:
    """Applies lifecycle triggers to orders and subscriptions."""

    def __init__(
        self,
        client: SimplePayClient,
        store: OrderStore,
        routes: ReturnRoutes,
        rotator: TokenRotator | None = None,
        language: str = "EN",
    ):
        self.client = client
        self.store = store
        self.routes = routes
        self.rotator = rotator or TokenRotator()
        self.signer: Signer = client.signer
        self.language = language

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_payment(
        self,
        order: Order,
        flow: PaymentFlow,
        order_ref: str | None = None,
    ) -> CreateResult:
        """
        Start a one-off payment for a PENDING order.

        Args:
            order: Order in PENDING status
            flow: Offsite redirect or onsite embedded flow
            order_ref: Caller generated reference (required by the onsite flow)

        Returns:
            CreateResult; for the offsite flow ``redirect_url`` is the
            processor payment page

        Raises:
            PaymentGatewayError: Order was moved to FAILED with a note, or
                kind PRECONDITION if the order was not PENDING (untouched)
        """
        log = logger.bind(order_id=order.id, flow=flow.id)
        self._require_pending(order)

        try:
            self._assign_order_ref(order, order_ref, flow.requires_order_ref, flow.order_ref_prefix)
            transaction_data = flow.build_transaction_data(
                order, self.routes, self.signer, self.language
            )
            response = self.client.create_payment(transaction_data)
        except GatewayError as e:
            log.error("payment_create_failed", error_kind=e.kind.value, error=str(e))
            self._fail_order(order, f"SimplePay payment failed: {e}")
            raise PaymentGatewayError.from_error(e) from e

        order = self._mark_initiated(
            order,
            response.transaction_id,
            f"SimplePay payment initiated (Transaction ID: {response.transaction_id or 'N/A'})",
        )
        if flow.store_payment_url and response.payment_url:
            self.store.set_meta(order.id, META_PAYMENT_URL, response.payment_url)

        log.info(
            "payment_created",
            order_ref=order.order_ref,
            transaction_id=response.transaction_id,
        )
        return CreateResult(
            order=order,
            transaction_id=response.transaction_id,
            payment_url=response.payment_url,
            redirect_url=response.payment_url if flow.return_mode == ReturnMode.QUERY_ON_RETURN else None,
        )

    def create_subscription(
        self,
        order: Order,
        subscription: Subscription,
        order_ref: str | None = None,
    ) -> CreateResult:
        """
        Start the first payment of a subscription and register its token chain.

        The donor returns through the shared listener keyed by subscription ID.
        On failure the order becomes FAILED and the subscription FAILING.
        """
        log = logger.bind(order_id=order.id, subscription_id=subscription.id)
        self._require_pending(order)

        try:
            self._assign_order_ref(order, order_ref or subscription.order_ref, False, "subscription_")
            subscription.order_ref = order.order_ref
            self.store.save_subscription(subscription)

            transaction_data = base_transaction_data(order, self.language)
            transaction_data["url"] = self.routes.listener_url("subscription-id", subscription.id)
            recurring = RecurringSpec(
                times=RECURRING_TIMES,
                until=(datetime.now(timezone.utc) + RECURRING_HORIZON).isoformat(timespec="seconds"),
                max_amount=subscription.amount.scaled(RECURRING_MAX_AMOUNT_FACTOR).format_decimal(),
            )
            response = self.client.create_recurring_payment(transaction_data, recurring)
        except GatewayError as e:
            log.error("subscription_create_failed", error_kind=e.kind.value, error=str(e))
            self._fail_order(order, f"SimplePay recurring payment failed: {e}")
            subscription.set_status(SubscriptionStatus.FAILING)
            subscription.add_note(f"SimplePay subscription could not be started: {e}")
            self.store.save_subscription(subscription)
            raise PaymentGatewayError.from_error(e) from e

        if response.transaction_id and not subscription.transaction_id:
            subscription.transaction_id = response.transaction_id
        if response.tokens:
            self.rotator.store_chain(subscription, response.tokens)
        self.store.save_subscription(subscription)

        order = self._mark_initiated(
            order,
            response.transaction_id,
            f"SimplePay recurring payment initiated (Transaction ID: {response.transaction_id or 'N/A'})",
        )

        log.info(
            "subscription_created",
            order_ref=order.order_ref,
            transaction_id=response.transaction_id,
            token_count=len(subscription.tokens),
        )
        return CreateResult(
            order=order,
            transaction_id=response.transaction_id,
            payment_url=response.payment_url,
            redirect_url=response.payment_url,
        )

    # ------------------------------------------------------------------
    # Browser return
    # ------------------------------------------------------------------

    def apply_return_event(self, order: Order, event: ReturnEvent) -> Order:
        """
        Apply a verified browser return to an order.

        SUCCESS only moves the order to PROCESSING; completion waits for the
        IPN. Orders already settled by the processor keep their status.
        """
        transaction_label = event.transaction_id or "unknown"
        result_label = event.response_code or "n/a"
        order.set_transaction_id_if_empty(event.transaction_id)

        if event.kind == ReturnEventKind.SUCCESS:
            note = (
                f"SimplePay reported SUCCESS (Transaction ID: {transaction_label}, "
                f"Result: {result_label}). Awaiting IPN for final confirmation."
            )
        elif event.kind == ReturnEventKind.FAIL:
            note = f"SimplePay reported FAIL (Transaction ID: {transaction_label}, Result: {result_label})."
        elif event.kind in (ReturnEventKind.CANCEL, ReturnEventKind.TIMEOUT):
            note = f"SimplePay reported {event.kind.value} (Transaction ID: {transaction_label})."
        else:
            note = "Received SimplePay return without a recognised event code."

        target = RETURN_EVENT_STATUS.get(event.kind)
        if target is not None and order.status in SETTLED_STATUSES:
            note += f" Status kept at {order.status.value}, already confirmed by SimplePay."
        elif target is not None:
            order.set_status(target)

        order.add_note(note)
        self.store.save_order(order)

        logger.info(
            "return_event_applied",
            order_id=order.id,
            event_kind=event.kind.value,
            status=order.status.value,
            transaction_id=order.transaction_id,
        )
        return order

    # ------------------------------------------------------------------
    # Async notification (IPN)
    # ------------------------------------------------------------------

    def apply_notification(self, ipn_data: dict[str, Any]) -> str:
        """
        Apply a signature-verified IPN body.

        Re-delivery of the same status is a no-op apart from one more note.

        Returns:
            IpnOutcome constant
        """
        order_ref = ipn_data.get("orderRef")
        transaction_id = ipn_data.get("transactionId")

        if not order_ref or not transaction_id:
            logger.warning("ipn_missing_fields", order_ref=order_ref, transaction_id=transaction_id)
            return IpnOutcome.IGNORED_MISSING_FIELDS

        order = self.store.find_order_by_ref(str(order_ref))
        if order is None:
            logger.warning("ipn_order_not_found", order_ref=order_ref, transaction_id=transaction_id)
            return IpnOutcome.IGNORED_UNKNOWN_ORDER

        status = parse_processor_status(ipn_data.get("status"))
        if status is None:
            logger.warning(
                "ipn_unknown_status",
                order_id=order.id,
                status=ipn_data.get("status"),
            )
            return IpnOutcome.IGNORED_UNKNOWN_STATUS

        self._apply_processor_status(order, status, str(transaction_id), channel="ipn")
        return IpnOutcome.APPLIED

    # ------------------------------------------------------------------
    # Query reconciliation (offsite return)
    # ------------------------------------------------------------------

    def reconcile_with_query(self, order: Order) -> Order:
        """
        Query the processor for the order's transaction and apply its status.

        The query answer is signed server-to-server traffic, so it is mapped
        like an IPN. In-flight statuses keep the order PROCESSING.

        Raises:
            PreconditionError: Order has no transaction ID
            InvalidPayload: Processor does not know the transaction
            GatewayError: Any client failure, with no local mutation
        """
        transaction_id = order.transaction_id
        if not transaction_id:
            raise PreconditionError("Transaction ID not found")

        response = self.client.query_transaction(transaction_id)
        transactions = response.get("transactions") or []
        if not transactions or not isinstance(transactions[0], dict):
            raise InvalidPayload("Transaction not found in SimplePay")

        raw_status = transactions[0].get("status")
        status = parse_processor_status(raw_status)
        if status is not None:
            return self._apply_processor_status(order, status, transaction_id, channel="query")

        if order.status not in SETTLED_STATUSES:
            order.set_status(OrderStatus.PROCESSING)
        order.add_note(
            f"SimplePay payment in progress with status: {raw_status} (Transaction ID: {transaction_id})"
        )
        self.store.save_order(order)

        logger.info(
            "query_reconciled_in_progress",
            order_id=order.id,
            processor_status=raw_status,
            status=order.status.value,
        )
        return order

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    def renew(self, subscription: Subscription, order: Order) -> Order:
        """
        Charge the subscription's active token for a renewal order.

        Success completes the order and advances the token chain. Any failure
        leaves the order FAILED, does not advance the chain and is never
        retried here; an inactive token also moves the subscription to FAILING.

        Raises:
            PaymentGatewayError: kind PRECONDITION for subscription/token
                problems, otherwise the kind of the processor failure
        """
        log = logger.bind(order_id=order.id, subscription_id=subscription.id)
        token_inactive = False

        try:
            if subscription.status != SubscriptionStatus.ACTIVE:
                raise PreconditionError(
                    f"Subscription {subscription.id} is {subscription.status.value}, not ACTIVE"
                )

            token = self.rotator.active_token(subscription)
            if not token:
                raise PreconditionError("No active token found for renewal")

            token_status = self.client.query_token(token).get("status")
            if token_status != TOKEN_STATUS_ACTIVE:
                token_inactive = True
                raise PreconditionError("Token is not active")

            self._assign_order_ref(order, None, False, "renewal_")
            payment_data = {
                "orderRef": order.order_ref,
                "currency": order.amount.currency,
                "total": order.amount.format_decimal(),
                "customerEmail": order.payer.email,
            }
            response = self.client.process_recurring_payment(payment_data, token)
        except GatewayError as e:
            log.error("renewal_failed", error_kind=e.kind.value, error=str(e))
            self._fail_order(order, f"SimplePay recurring payment failed: {e}")
            if token_inactive:
                subscription.set_status(SubscriptionStatus.FAILING)
                subscription.add_note("SimplePay renewal token is no longer active.")
                self.store.save_subscription(subscription)
            raise PaymentGatewayError.from_error(e) from e

        transaction_id = str(response.get("transactionId") or "")
        order.set_status(OrderStatus.COMPLETE)
        order.set_transaction_id_if_empty(transaction_id)
        order.add_note(f"SimplePay recurring payment successful (Transaction ID: {transaction_id or 'N/A'})")
        self.store.save_order(order)

        self.rotator.record_use(subscription)
        self.rotator.rotate_if_needed(subscription)
        self.store.save_subscription(subscription)

        log.info(
            "renewal_completed",
            transaction_id=transaction_id,
            tokens_used=subscription.tokens_used,
            subscription_status=subscription.status.value,
        )
        return order

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_subscription(self, subscription: Subscription) -> Subscription:
        """
        Cancel every token, then the subscription.

        Token failures are noted and skipped; the subscription always ends
        CANCELLED. Tokens cancelled before a failure stay cancelled.
        """
        failed = 0
        for position, token in enumerate(subscription.tokens, start=1):
            try:
                self.client.cancel_token(token)
            except GatewayError as e:
                failed += 1
                subscription.add_note(f"SimplePay token #{position} could not be cancelled: {e}")
                logger.warning(
                    "token_cancel_failed",
                    subscription_id=subscription.id,
                    position=position,
                    error_kind=e.kind.value,
                    error=str(e),
                )

        subscription.set_status(SubscriptionStatus.CANCELLED)
        subscription.add_note(
            f"SimplePay subscription cancelled ({len(subscription.tokens) - failed} of "
            f"{len(subscription.tokens)} tokens cancelled)."
        )
        self.store.save_subscription(subscription)

        logger.info(
            "subscription_cancelled",
            subscription_id=subscription.id,
            token_count=len(subscription.tokens),
            failed_cancellations=failed,
        )
        return subscription

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund(self, order: Order) -> dict[str, Any]:
        """
        Request a full refund of the order's transaction.

        The local status is not changed here; the processor's REFUND
        notification sets REFUNDED.

        Returns:
            Verified processor response
        """
        if not order.transaction_id:
            raise PaymentGatewayError("No transaction ID found for refund", kind=ErrorKind.PRECONDITION)

        try:
            result = self.client.refund_transaction(
                order.transaction_id,
                order.amount.format_decimal(),
                order.amount.currency,
            )
        except GatewayError as e:
            logger.error("refund_failed", order_id=order.id, error_kind=e.kind.value, error=str(e))
            raise PaymentGatewayError.from_error(e) from e

        order.add_note(f"SimplePay refund requested (Transaction ID: {order.transaction_id})")
        self.store.save_order(order)

        logger.info("refund_requested", order_id=order.id, transaction_id=order.transaction_id)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_pending(order: Order) -> None:
        if order.status != OrderStatus.PENDING:
            raise PaymentGatewayError(
                f"Order {order.id} is {order.status.value}, expected PENDING",
                kind=ErrorKind.PRECONDITION,
            )

    def _assign_order_ref(
        self,
        order: Order,
        order_ref: str | None,
        required: bool,
        prefix: str,
    ) -> None:
        """Fix the order reference and persist it before any processor call."""
        if order_ref:
            try:
                order.assign_order_ref(order_ref)
            except ValueError as e:
                raise PreconditionError(str(e)) from e
        elif not order.order_ref:
            if required:
                raise PreconditionError("Missing order reference")
            order.assign_order_ref(new_order_ref(prefix))
        self.store.save_order(order)

    def _fail_order(self, order: Order, note: str) -> None:
        order.set_status(OrderStatus.FAILED)
        order.add_note(note)
        self.store.save_order(order)

    def _mark_initiated(self, order: Order, transaction_id: str, note: str) -> Order:
        """
        Record a successful start call.

        An IPN may have landed while the start call was in flight, so the
        stored record is re-read and only a still-PENDING order moves to
        PROCESSING.
        """
        current = self.store.find_order(order.id) or order
        if current.status == OrderStatus.PENDING:
            current.set_status(OrderStatus.PROCESSING)
        current.set_transaction_id_if_empty(transaction_id)
        current.add_note(note)
        self.store.save_order(current)
        return current

    def _apply_processor_status(
        self,
        order: Order,
        status: ProcessorStatus,
        transaction_id: str,
        channel: str,
    ) -> Order:
        target = PROCESSOR_STATUS_MAP[status]
        note = f"SimplePay payment {PROCESSOR_STATUS_VERBS[status]} (Transaction ID: {transaction_id})"

        if _can_apply_authoritative(order.status, target):
            order.set_status(target)
        else:
            note += f". Status kept at {order.status.value}."
        order.set_transaction_id_if_empty(transaction_id)
        order.add_note(note)
        self.store.save_order(order)

        logger.info(
            "processor_status_applied",
            channel=channel,
            order_id=order.id,
            processor_status=status.value,
            status=order.status.value,
            transaction_id=transaction_id,
        )

        if status == ProcessorStatus.FINISHED and order.status == OrderStatus.COMPLETE:
            self._activate_subscription(order)
        return order

    def _activate_subscription(self, order: Order) -> None:
        subscription = self.store.find_subscription_by_order(order.id)
        if subscription is None or subscription.status != SubscriptionStatus.INITIAL:
            return

        subscription.set_status(SubscriptionStatus.ACTIVE)
        subscription.add_note(f"SimplePay subscription activated by first payment (Order: {order.id})")
        self.store.save_subscription(subscription)

        logger.info("subscription_activated", subscription_id=subscription.id, order_id=order.id)
