"""
Payment status transition rules.

Pure functions, no app or database needed.
"""

import pytest

from kasir.services.payment_state import (
    PaymentStatus,
    Effect,
    TERMINAL_STATUSES,
    map_gateway_status,
    parse_status,
    transition,
)


PENDING = PaymentStatus.PENDING
PAID = PaymentStatus.PAID
FAILED = PaymentStatus.FAILED
EXPIRED = PaymentStatus.EXPIRED


class TestTransition:

    def test_pending_to_paid_decrements_and_notifies(self):
        status, effects = transition(PENDING, PAID)
        assert status == PAID
        assert effects == (Effect.DECREMENT_STOCK, Effect.NOTIFY_PAYMENT_RECEIVED)

    def test_pending_to_failed_notifies_failure(self):
        status, effects = transition(PENDING, FAILED)
        assert status == FAILED
        assert effects == (Effect.NOTIFY_PAYMENT_FAILED,)

    def test_pending_to_expired_has_no_effects(self):
        assert transition(PENDING, EXPIRED) == (EXPIRED, ())

    @pytest.mark.parametrize("incoming", [PENDING, PAID, FAILED, EXPIRED])
    def test_paid_is_absorbing(self, incoming):
        assert transition(PAID, incoming) == (PAID, ())

    @pytest.mark.parametrize("status", [PENDING, PAID, FAILED, EXPIRED])
    def test_same_status_is_noop(self, status):
        assert transition(status, status) == (status, ())

    @pytest.mark.parametrize("current", [FAILED, EXPIRED])
    def test_terminal_failure_never_returns_to_pending(self, current):
        assert transition(current, PENDING) == (current, ())

    @pytest.mark.parametrize("current", TERMINAL_STATUSES)
    def test_no_terminal_status_reopens(self, current):
        status, effects = transition(current, PENDING)
        assert status == current
        assert effects == ()

    @pytest.mark.parametrize("current", [FAILED, EXPIRED])
    def test_late_payment_after_failure_is_accepted(self, current):
        status, effects = transition(current, PAID)
        assert status == PAID
        assert Effect.DECREMENT_STOCK in effects

    def test_accepts_plain_strings(self):
        status, effects = transition("PENDING", "PAID")
        assert status == PAID
        assert len(effects) == 2


class TestGatewayStatusMapping:

    @pytest.mark.parametrize("raw", ["PAID", "SETTLED", "SUCCEEDED", "paid", " settled "])
    def test_paid_family(self, raw):
        assert map_gateway_status(raw) == PAID

    def test_failed_and_expired(self):
        assert map_gateway_status("FAILED") == FAILED
        assert map_gateway_status("EXPIRED") == EXPIRED

    @pytest.mark.parametrize("raw", [None, "", "PENDING", "ACTIVE", "SOMETHING_NEW"])
    def test_unknown_means_pending(self, raw):
        assert map_gateway_status(raw) == PENDING


class TestParseStatus:

    def test_parses_case_insensitively(self):
        assert parse_status("paid") == PAID

    def test_rejects_gateway_only_vocabulary(self):
        with pytest.raises(ValueError):
            parse_status("SETTLED")
