"""Recurring-payment token chain management.

A recurring ``start`` call returns an ordered list of tokens, each good for
one merchant-initiated charge. The subscription keeps the whole chain plus a
usage counter; the active token is simply ``tokens[tokens_used]``.
"""

import structlog

from simplepay_gateway.models.order import Subscription, SubscriptionStatus

logger = structlog.get_logger(__name__)


class TokenRotator:
    """Selects, advances and exhausts a subscription's token chain."""

    def store_chain(self, subscription: Subscription, tokens: list[str]) -> None:
        """Replace the chain with freshly issued tokens and reset usage."""
        subscription.tokens = [t for t in tokens if t]
        subscription.tokens_used = 0

        logger.info(
            "token_chain_stored",
            subscription_id=subscription.id,
            token_count=len(subscription.tokens),
        )

    def active_token(self, subscription: Subscription) -> str | None:
        if 0 <= subscription.tokens_used < len(subscription.tokens):
            return subscription.tokens[subscription.tokens_used]
        return None

    def record_use(self, subscription: Subscription) -> None:
        subscription.tokens_used += 1

    def is_exhausted(self, subscription: Subscription) -> bool:
        return subscription.tokens_used >= len(subscription.tokens)

    def rotate_if_needed(self, subscription: Subscription) -> bool:
        """
        Move to the next token after a use, or mark the chain exhausted.

        Exhaustion needs a new card registration by the donor, which the
        adapter does not drive, so the subscription is left FAILING.

        Returns:
            True if the subscription can still renew, False if exhausted
        """
        if self.is_exhausted(subscription):
            subscription.set_status(SubscriptionStatus.FAILING)
            subscription.add_note(
                f"SimplePay token chain exhausted after {subscription.tokens_used} "
                "charges. The donor must authorize the card again."
            )
            logger.warning(
                "token_chain_exhausted",
                subscription_id=subscription.id,
                tokens_used=subscription.tokens_used,
                token_count=len(subscription.tokens),
            )
            return False

        logger.info(
            "token_rotated",
            subscription_id=subscription.id,
            tokens_used=subscription.tokens_used,
            tokens_remaining=len(subscription.tokens) - subscription.tokens_used,
        )
        return True
