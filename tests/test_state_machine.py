"""
Tests for the order state machine, including a randomized lifecycle check.
"""

import random

import pytest

from orderflow.core.exceptions import InvalidTransitionError
from orderflow.core.state_machine import OrderStateMachine
from orderflow.core.types import OrderEvent, OrderStatus


class TestTransitions:
    """Every (status, event) pair either maps to one next status or raises"""

    @pytest.mark.parametrize(
        ("status", "event", "expected"),
        [
            (OrderStatus.PENDING, OrderEvent.START_PROCESSING, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderEvent.PAYMENT_CONFIRMED, OrderStatus.COMPLETED),
            (OrderStatus.PROCESSING, OrderEvent.PAYMENT_REJECTED, OrderStatus.FAILED),
            (OrderStatus.PROCESSING, OrderEvent.BUSINESS_RULE_VIOLATION, OrderStatus.FAILED),
        ],
    )
    def test_valid_transitions(self, status, event, expected):
        assert OrderStateMachine().try_transition(status, event) is expected

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.FAILED])
    @pytest.mark.parametrize("event", list(OrderEvent))
    def test_terminal_statuses_reject_every_event(self, status, event):
        with pytest.raises(InvalidTransitionError):
            OrderStateMachine().try_transition(status, event)

    @pytest.mark.parametrize(
        ("status", "event"),
        [
            (OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED),
            (OrderStatus.PENDING, OrderEvent.PAYMENT_REJECTED),
            (OrderStatus.PENDING, OrderEvent.BUSINESS_RULE_VIOLATION),
            (OrderStatus.PROCESSING, OrderEvent.START_PROCESSING),
        ],
    )
    def test_skipping_or_repeating_a_stage_raises(self, status, event):
        sm = OrderStateMachine()

        assert not sm.can_transition(status, event)
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.try_transition(status, event)
        assert event.value in str(exc_info.value)

    def test_callback_runs_only_for_committed_transitions(self):
        seen = []
        sm = OrderStateMachine(on_transition=lambda *args: seen.append(args))

        next_status = sm.try_transition(OrderStatus.PENDING, OrderEvent.START_PROCESSING)
        assert seen == []

        sm.transition_committed(OrderStatus.PENDING, OrderEvent.START_PROCESSING, next_status)
        assert seen == [(OrderStatus.PENDING, OrderEvent.START_PROCESSING, OrderStatus.PROCESSING)]


class TestEventOrdering:
    def test_payment_before_processing_is_premature(self):
        sm = OrderStateMachine()

        assert sm.is_premature(OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED)
        assert sm.is_premature(None, OrderEvent.PAYMENT_REJECTED)
        assert sm.is_premature(None, OrderEvent.START_PROCESSING)

    def test_events_for_earlier_stages_are_stale(self):
        sm = OrderStateMachine()

        assert not sm.is_premature(OrderStatus.PROCESSING, OrderEvent.START_PROCESSING)
        assert not sm.is_premature(OrderStatus.COMPLETED, OrderEvent.PAYMENT_CONFIRMED)
        assert not sm.is_premature(OrderStatus.FAILED, OrderEvent.START_PROCESSING)

    def test_failure_path_follows_valid_edges(self):
        sm = OrderStateMachine()

        for status in (OrderStatus.PENDING, OrderStatus.PROCESSING):
            current = status
            for event in sm.failure_path(status):
                current = sm.try_transition(current, event)
            assert current is OrderStatus.FAILED

        assert sm.failure_path(OrderStatus.COMPLETED) == []
        assert sm.failure_path(OrderStatus.FAILED) == []


class TestRandomLifecycles:
    """Random event sequences never leave the documented lifecycle"""

    ORDER = [OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.COMPLETED]

    def _rank(self, status):
        return 2 if status is OrderStatus.FAILED else self.ORDER.index(status)

    @pytest.mark.parametrize("seed", range(20))
    def test_status_only_moves_forward_and_terminal_is_final(self, seed):
        rng = random.Random(seed)
        sm = OrderStateMachine()
        status = OrderStatus.PENDING
        history = [status]

        for _ in range(50):
            event = rng.choice(list(OrderEvent))
            try:
                next_status = sm.try_transition(status, event)
            except InvalidTransitionError:
                continue

            assert not status.is_terminal
            assert self._rank(next_status) == self._rank(status) + 1
            status = next_status
            history.append(status)

        assert len(history) <= 3
        assert history[0] is OrderStatus.PENDING
        if len(history) > 1:
            assert history[1] is OrderStatus.PROCESSING
