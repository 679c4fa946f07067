from types import SimpleNamespace

import pytest

from qrmenu.exceptions import InvalidStatus, TerminalStateViolation
from qrmenu.models import OrderStatus
from qrmenu.services.lifecycle import apply_transition, parse_status, resolve_transition


class TestParseStatus:

    @pytest.mark.parametrize("value", ["pending", "process", "ready", "billed", "complete", "cancelled"])
    def test_accepts_every_status(self, value):
        assert parse_status(value) == OrderStatus(value)

    def test_is_case_and_whitespace_insensitive(self):
        assert parse_status("  Process ") is OrderStatus.PROCESS

    def test_passes_enum_through(self):
        assert parse_status(OrderStatus.READY) is OrderStatus.READY

    @pytest.mark.parametrize("value", ["bogus", "", "done", None, 3, ["pending"]])
    def test_rejects_unknown(self, value):
        with pytest.raises(InvalidStatus) as exc:
            parse_status(value)
        assert exc.value.message == "Invalid status"
        assert exc.value.status_code == 400


class TestResolveTransition:

    def test_forward_path(self):
        status = OrderStatus.PENDING
        for target in ("process", "ready", "billed", "complete"):
            status = resolve_transition(status, target)
        assert status is OrderStatus.COMPLETE

    def test_moving_backwards_is_allowed(self):
        assert resolve_transition(OrderStatus.PROCESS, "pending") is OrderStatus.PENDING

    def test_same_status_is_allowed(self):
        assert resolve_transition(OrderStatus.PROCESS, "process") is OrderStatus.PROCESS

    @pytest.mark.parametrize("current", ["pending", "process", "ready", "billed"])
    def test_any_live_order_can_be_cancelled(self, current):
        assert resolve_transition(OrderStatus(current), "cancelled") is OrderStatus.CANCELLED

    @pytest.mark.parametrize("current", [OrderStatus.COMPLETE, OrderStatus.CANCELLED])
    @pytest.mark.parametrize("target", ["pending", "process", "complete", "cancelled"])
    def test_terminal_orders_never_move(self, current, target):
        with pytest.raises(TerminalStateViolation) as exc:
            resolve_transition(current, target, order_id="abc")
        assert exc.value.order_id == "abc"
        assert exc.value.current == current.value
        assert exc.value.requested == target

    def test_unknown_status_wins_over_terminal_check(self):
        with pytest.raises(InvalidStatus):
            resolve_transition(OrderStatus.COMPLETE, "bogus")


class TestApplyTransition:

    def test_only_status_changes(self):
        order = SimpleNamespace(id="o1", status=OrderStatus.PENDING, table_number="5", total_amount=10)
        apply_transition(order, "process")
        assert order.status is OrderStatus.PROCESS
        assert order.table_number == "5"
        assert order.total_amount == 10

    def test_failed_transition_leaves_order_untouched(self):
        order = SimpleNamespace(id="o1", status=OrderStatus.CANCELLED)
        with pytest.raises(TerminalStateViolation):
            apply_transition(order, "process")
        assert order.status is OrderStatus.CANCELLED
