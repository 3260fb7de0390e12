"""
Stock accounting engine tests.

The engine is pure, so these run without a database.
"""

import logging

import pytest

from branchstock.errors import InsufficientCentralStockError, InsufficientStockError, ValidationError
from branchstock.services import stock_engine
from branchstock.services.stock_engine import FulfillmentMode, StockLevels


class TestReserve:

    def test_moves_available_to_reserved(self):
        assert stock_engine.reserve(StockLevels(10, 0), 3) == StockLevels(7, 3)

    def test_exact_quantity_is_allowed(self):
        assert stock_engine.reserve(StockLevels(3, 1), 3) == StockLevels(0, 4)

    def test_short_raises_with_available_and_requested(self):
        with pytest.raises(InsufficientStockError) as exc:
            stock_engine.reserve(StockLevels(2, 0), 5, product_id=9)
        assert exc.value.available == 2
        assert exc.value.requested == 5
        assert exc.value.details["product_id"] == 9

    @pytest.mark.parametrize("qty", [0, -1, True, 1.5])
    def test_rejects_non_positive_or_non_integer(self, qty):
        with pytest.raises(ValidationError):
            stock_engine.reserve(StockLevels(10, 0), qty)


class TestConsumeAndRestore:

    def test_consume_direct_leaves_reserved_alone(self):
        assert stock_engine.consume_direct(StockLevels(10, 2), 4) == StockLevels(6, 2)

    def test_consume_direct_short(self):
        with pytest.raises(InsufficientStockError):
            stock_engine.consume_direct(StockLevels(1, 5), 2)

    def test_restore_available_leaves_reserved_alone(self):
        assert stock_engine.restore_available(StockLevels(6, 2), 4) == StockLevels(10, 2)


class TestReleaseAndConfirm:

    def test_release_returns_reservation(self):
        assert stock_engine.release(StockLevels(7, 3), 3) == StockLevels(10, 0)

    def test_release_beyond_reserved_clamps_and_logs(self, caplog):
        with caplog.at_level(logging.WARNING, logger="branchstock.services.stock_engine"):
            result = stock_engine.release(StockLevels(7, 1), 3, product_id=4)
        assert result == StockLevels(10, 0)
        assert "stock clamp" in caplog.text

    def test_confirm_keeps_available(self):
        assert stock_engine.confirm_reservation(StockLevels(7, 3), 3) == StockLevels(7, 0)

    def test_confirm_beyond_reserved_clamps_and_logs(self, caplog):
        with caplog.at_level(logging.WARNING, logger="branchstock.services.stock_engine"):
            result = stock_engine.confirm_reservation(StockLevels(7, 0), 2)
        assert result == StockLevels(7, 0)
        assert "stock clamp" in caplog.text

    def test_no_log_without_clamp(self, caplog):
        with caplog.at_level(logging.WARNING, logger="branchstock.services.stock_engine"):
            stock_engine.release(StockLevels(0, 5), 5)
        assert "stock clamp" not in caplog.text


class TestTransfers:

    def test_transfer_out(self):
        assert stock_engine.transfer_out(50, 20) == 30

    def test_transfer_out_whole_central(self):
        assert stock_engine.transfer_out(5, 5) == 0

    def test_transfer_out_short(self):
        with pytest.raises(InsufficientCentralStockError) as exc:
            stock_engine.transfer_out(5, 6)
        assert exc.value.available == 5
        assert exc.value.requested == 6

    def test_transfer_in_missing_entry_starts_empty(self):
        assert stock_engine.transfer_in(None, 4) == StockLevels(4, 0)

    def test_transfer_in_keeps_reserved(self):
        assert stock_engine.transfer_in(StockLevels(1, 2), 4) == StockLevels(5, 2)


class TestOrderModes:

    def test_reserved_mode_round_trip_restores_levels(self):
        start = StockLevels(10, 1)
        taken = stock_engine.take_for_order(start, 4, FulfillmentMode.RESERVED)
        assert taken == StockLevels(6, 5)
        assert stock_engine.give_back_for_order(taken, 4, FulfillmentMode.RESERVED) == start

    def test_direct_mode_round_trip_restores_levels(self):
        start = StockLevels(10, 1)
        taken = stock_engine.take_for_order(start, 4, FulfillmentMode.DIRECT)
        assert taken == StockLevels(6, 1)
        assert stock_engine.give_back_for_order(taken, 4, FulfillmentMode.DIRECT) == start

    def test_total_never_grows_on_take(self):
        start = StockLevels(10, 3)
        for mode in FulfillmentMode:
            assert stock_engine.take_for_order(start, 2, mode).total <= start.total

    def test_mixed_sequence_conserves_stock(self):
        steps = [
            (stock_engine.reserve, 4),
            (stock_engine.confirm_reservation, 2),
            (stock_engine.reserve, 3),
            (stock_engine.release, 1),
            (stock_engine.confirm_reservation, 2),
            (stock_engine.reserve, 3),
            (stock_engine.release, 2),
            (stock_engine.consume_direct, 1),
            (stock_engine.confirm_reservation, 1),
        ]
        levels = StockLevels(10, 0)
        for operation, qty in steps:
            previous = levels
            levels = operation(levels, qty)
            assert levels.available >= 0 and levels.reserved >= 0
            assert levels.total <= previous.total <= 10
        assert levels == StockLevels(2, 2)
