# Overview: Pytest coverage for the stock audit and reorder recommendations.

from datetime import timedelta

import pytest

from pharmapos.services import audit_service, checkout_service, stock_ledger_service
from pharmapos.services.audit_service import AuditInput, compute_audit
from pharmapos.time_utils import utcnow


def _input(product_id=1, **overrides):
    values = {
        "product_id": product_id,
        "name": f"Product {product_id}",
        "total_sold": 0,
        "total_lost": 0,
        "total_adjusted": 0,
        "current_stock": 0,
        "cost_price_cents": 10,
    }
    values.update(overrides)
    return AuditInput(**values)


class TestReorderRecommendations:

    def test_fast_mover_low_stock_is_critical(self):
        summary = compute_audit([_input(total_sold=120, current_stock=15)], period_days=30, minimum=100)

        rec = summary.recommendations[0]
        assert rec.avg_daily_sales == 4.0
        assert rec.days_of_stock == 3.75
        assert rec.suggested_reorder == 120
        assert rec.priority == "critical"
        assert rec.reorder_value_cents == 1200

    def test_no_sales_uses_sentinel_and_minimum(self):
        summary = compute_audit([_input(current_stock=60)])

        rec = summary.recommendations[0]
        assert rec.days_of_stock == 999
        assert rec.suggested_reorder == 100
        assert rec.priority == "low"

    @pytest.mark.parametrize("stock,sold,priority", [
        (19, 0, "critical"),
        (20, 0, "high"),
        (49, 200, "high"),
        (150, 101, "medium"),
        (150, 60, "low"),
    ])
    def test_priority_bands(self, stock, sold, priority):
        assert audit_service.reorder_priority(stock, sold) == priority

    def test_well_stocked_slow_movers_are_skipped(self):
        summary = compute_audit([_input(current_stock=200, total_sold=50)])
        assert summary.recommendations == []

    def test_sorted_by_priority_then_sales(self):
        summary = compute_audit([
            _input(1, current_stock=150, total_sold=300),
            _input(2, current_stock=10, total_sold=5),
            _input(3, current_stock=30, total_sold=80),
            _input(4, current_stock=5, total_sold=40),
        ])

        assert [r.product_id for r in summary.recommendations] == [4, 2, 3, 1]

    def test_avg_rounds_to_two_decimals(self):
        rec = compute_audit([_input(total_sold=10, current_stock=7)], period_days=3).recommendations[0]
        assert rec.avg_daily_sales == 3.33
        assert rec.days_of_stock == 2.1
        assert rec.suggested_reorder == 100


class TestAuditLines:

    def test_valuation(self):
        line = compute_audit([
            _input(total_sold=120, total_lost=5, total_adjusted=95, current_stock=15, cost_price_cents=10),
        ]).lines[0]

        assert line.opening_stock == 15 + 120 - 95
        assert line.opening_value_cents == 400
        assert line.cogs_cents == 1200
        assert line.closing_value_cents == 150
        assert line.loss_value_cents == 50

    def test_missing_cost_and_negative_loss_are_anomalies(self):
        summary = compute_audit([_input(total_lost=-3, cost_price_cents=None, current_stock=5)])

        line = summary.lines[0]
        assert line.cost_price_cents == 0
        assert line.total_lost == 0
        assert sorted(a.kind for a in summary.anomalies) == ["MISSING_COST", "NEGATIVE_LOSS"]

    def test_count_shortfall_is_loss(self):
        line = compute_audit([_input(current_stock=50, total_lost=2, counted_stock=45)]).lines[0]

        assert line.closing_stock == 45
        assert line.total_lost == 7
        assert line.loss_value_cents == 70

    def test_count_surplus_is_anomaly(self):
        summary = compute_audit([_input(current_stock=50, counted_stock=53)])

        assert summary.lines[0].closing_stock == 53
        assert summary.lines[0].total_lost == 0
        assert [a.kind for a in summary.anomalies] == ["COUNT_SURPLUS"]

    def test_totals_and_best_sellers(self):
        summary = compute_audit([
            _input(1, total_sold=5, current_stock=500),
            _input(2, total_sold=50, current_stock=500),
            _input(3, total_sold=0, current_stock=500),
        ])

        assert [line.product_id for line in summary.best_sellers()] == [2, 1]
        assert summary.total_cogs_cents == 550
        assert summary.to_dict()["summary"]["product_count"] == 3


class TestAuditFromLedger:

    def test_report_reconciles_with_ledger(self, cart, make_product):
        product = make_product("Amoxicillin 250mg", stock=100, cost=10)
        stock_ledger_service.apply_movement(product.id, -5, "LOSS", "Expired")
        cart.add_item(product.id, "STRIP", quantity=3)
        checkout_service.checkout(cart)

        start, end = utcnow() - timedelta(days=1), utcnow() + timedelta(days=1)
        summary = audit_service.build_audit_report(start, end, {product.id: 60, 999: 4})

        line = summary.lines[0]
        assert line.total_sold == 30
        assert line.total_adjusted == 95
        assert line.current_stock == 65
        assert line.opening_stock == 0
        assert line.closing_stock == 60
        assert line.total_lost == 10
        assert [a.kind for a in summary.anomalies] == ["UNKNOWN_PRODUCT"]
        assert summary.recommendations[0].current_stock == 60

    def test_window_before_any_movement(self, paracetamol):
        end = utcnow() - timedelta(days=1)
        summary = audit_service.build_audit_report(end - timedelta(days=30), end)

        line = summary.lines[0]
        assert (line.total_sold, line.current_stock, line.opening_stock) == (0, 0, 0)
