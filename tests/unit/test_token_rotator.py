"""Unit tests for token chain rotation."""

from decimal import Decimal

import pytest

from simplepay_gateway.domain.token_rotator import TokenRotator
from simplepay_gateway.models.order import Money, Subscription, SubscriptionStatus


@pytest.fixture
def rotator():
    return TokenRotator()


@pytest.fixture
def chain():
    return Subscription(
        id="sub_1",
        parent_order_id="1",
        amount=Money(Decimal("10"), "HUF"),
        status=SubscriptionStatus.ACTIVE,
        tokens=["A", "B", "C"],
    )


class TestTokenRotator:
    """Test suite for TokenRotator."""

    def test_three_token_chain(self, rotator, chain):
        """Three charges use A, B, C in order and the chain then runs out."""
        used = []
        for _ in range(3):
            used.append(rotator.active_token(chain))
            rotator.record_use(chain)
            rotator.rotate_if_needed(chain)

        assert used == ["A", "B", "C"]
        assert rotator.is_exhausted(chain) is True
        assert rotator.active_token(chain) is None
        assert chain.status == SubscriptionStatus.FAILING

    def test_rotate_keeps_active_while_tokens_remain(self, rotator, chain):
        rotator.record_use(chain)

        assert rotator.rotate_if_needed(chain) is True
        assert rotator.active_token(chain) == "B"
        assert chain.status == SubscriptionStatus.ACTIVE
        assert chain.notes == []

    def test_exhaustion_adds_note(self, rotator, chain):
        chain.tokens_used = 3

        assert rotator.rotate_if_needed(chain) is False
        assert len(chain.notes) == 1
        assert "exhausted after 3 charges" in chain.notes[0].text

    def test_empty_chain_has_no_active_token(self, rotator, chain):
        chain.tokens = []

        assert rotator.active_token(chain) is None
        assert rotator.is_exhausted(chain) is True

    def test_store_chain_resets_usage_and_drops_blanks(self, rotator, chain):
        chain.tokens_used = 2

        rotator.store_chain(chain, ["X", "", "Y"])

        assert chain.tokens == ["X", "Y"]
        assert chain.tokens_used == 0
        assert rotator.active_token(chain) == "X"
