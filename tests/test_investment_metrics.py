import math
import unittest
from datetime import datetime, timezone

from fakes import USD_FIGI, op, pos
from schemas.investment import CurrencyInfo, Operation
from services.investment.metrics import (
    buy_baseline_cost,
    compute_position_metrics,
    compute_totals,
    currency_rate,
    operations_cost,
)

FIGI = "BBG000B9XRY4"


class TestPositionMetrics(unittest.TestCase):
    def test_single_buy_priced_at_last_price(self):
        slots = {"A": pos(FIGI, 10, price=5)}
        ops = {"A": [op("Buy", -50, figi=FIGI, quantity=10)]}

        [row] = compute_position_metrics(slots, ops, 2.0)

        self.assertEqual(row.brokerAccountId, "A")
        self.assertEqual(row.operationsTotal, -50)
        self.assertEqual(row.buyCost, -50)
        self.assertEqual(row.instrumentQuantity, 10)
        self.assertEqual(row.totalNet, -30)
        self.assertEqual(row.lastPrice, 2.0)
        self.assertEqual(row.currency, "RUB")
        self.assertAlmostEqual(row.netPercent, 60.0)

    def test_buys_only_history(self):
        slots = {"A": pos(FIGI, 5, price=10)}
        ops = {
            "A": [
                op("Buy", -30, figi=FIGI, quantity=3, day=1, commission=-0.5),
                op("Buy", -20, figi=FIGI, quantity=2, day=2),
            ]
        }
        [row] = compute_position_metrics(slots, ops, 12.0)

        self.assertAlmostEqual(row.buyCost, row.operationsTotal)
        self.assertAlmostEqual(row.operationsTotal, -50.5)
        self.assertTrue(math.isfinite(row.netPercent))
        self.assertGreaterEqual(row.netPercent, 0)

    def test_net_percent_undefined_without_buys(self):
        slots = {"A": pos(FIGI, 0, price=10)}
        ops = {"A": [op("Dividend", 15, figi=FIGI)]}
        [row] = compute_position_metrics(slots, ops, 12.0)

        self.assertEqual(row.operationsTotal, 15)
        self.assertEqual(row.buyCost, 0)
        self.assertIsNone(row.netPercent)

    def test_net_percent_undefined_with_sells_only(self):
        slots = {"A": pos(FIGI, 0, price=10)}
        ops = {"A": [op("Sell", 50, figi=FIGI, quantity=5)]}
        [row] = compute_position_metrics(slots, ops, 12.0)

        self.assertEqual(row.operationsTotal, 50)
        self.assertEqual(buy_baseline_cost(ops["A"]), 0)
        self.assertIsNone(row.netPercent)

    def test_mixed_naive_and_aware_dates_sort(self):
        naive = Operation(
            operationType="Buy", payment=-60, quantity=5, currency="RUB", figi=FIGI, date=datetime(2021, 1, 3)
        )
        aware = op("Buy", -100, figi=FIGI, quantity=10, day=1)

        self.assertEqual(naive.date.tzinfo, timezone.utc)
        self.assertEqual(buy_baseline_cost([naive, aware]), -160)

    def test_declined_and_commission_operations_ignored(self):
        slots = {"A": pos(FIGI, 10, price=5)}
        clean = [op("Buy", -50, figi=FIGI, quantity=10)]
        noisy = clean + [
            op("Buy", -999, figi=FIGI, quantity=100, day=1, status="Decline"),
            op("BrokerCommission", -7, figi=FIGI, day=2),
        ]
        [a] = compute_position_metrics(slots, {"A": clean}, 2.0)
        [b] = compute_position_metrics(slots, {"A": noisy}, 2.0)

        self.assertEqual(a.model_dump(), b.model_dump())

    def test_dividend_tax_counts_as_cost(self):
        ops = [
            op("Buy", -100, figi=FIGI, quantity=1),
            op("Dividend", 10, figi=FIGI, day=1),
            op("TaxDividend", -1.3, figi=FIGI, day=1),
            op("Sell", 120, figi=FIGI, quantity=1, day=2),
        ]
        operations_total, buy_cost = operations_cost(ops)
        self.assertAlmostEqual(operations_total, 28.7)
        self.assertAlmostEqual(buy_cost, -101.3)

    def test_rows_follow_slot_order_and_share_net_percent(self):
        slots = {"B": pos(FIGI, 0), "A": pos(FIGI, 4, price=10)}
        ops = {
            "A": [op("Buy", -40, figi=FIGI, quantity=4)],
            "B": [op("Buy", -10, figi=FIGI, quantity=1), op("Sell", 12, figi=FIGI, quantity=1, day=1)],
        }
        rows = compute_position_metrics(slots, ops, 11.0)

        self.assertEqual([r.brokerAccountId for r in rows], ["B", "A"])
        self.assertEqual(rows[0].netPercent, rows[1].netPercent)
        self.assertEqual(rows[0].totalNet, 2)
        self.assertEqual(rows[1].totalNet, 4)

    def test_unknown_price_counts_as_zero(self):
        slots = {"A": pos(FIGI, 10, price=5)}
        ops = {"A": [op("Buy", -50, figi=FIGI, quantity=10)]}
        [row] = compute_position_metrics(slots, ops, None)

        self.assertIsNone(row.lastPrice)
        self.assertEqual(row.totalNet, -50)


class TestCurrencyQuantity(unittest.TestCase):
    def test_balance_without_trades_counts_as_zero(self):
        slots = {"A": pos(USD_FIGI, 100, instrument_type="Currency")}
        [row] = compute_position_metrics(slots, {"A": []}, 75.0)

        self.assertEqual(row.instrumentQuantity, 0)
        self.assertEqual(row.totalNet, 0)

    def test_quantity_replayed_from_trades(self):
        slots = {"A": pos(USD_FIGI, 100, instrument_type="Currency")}
        ops = {
            "A": [
                op("Buy", -700, figi=USD_FIGI, quantity=10),
                op("Sell", 225, figi=USD_FIGI, quantity=3, day=1),
            ]
        }
        [row] = compute_position_metrics(slots, ops, 75.0)

        self.assertEqual(row.instrumentQuantity, 7)
        self.assertEqual(row.totalNet, -475 + 7 * 75)


class TestBuyBaseline(unittest.TestCase):
    def test_rebuy_up_to_previous_high_not_counted(self):
        ops = [
            op("Buy", -100, figi=FIGI, quantity=10, day=1),
            op("Sell", 110, figi=FIGI, quantity=10, day=2),
            op("Buy", -120, figi=FIGI, quantity=10, day=3),
        ]
        self.assertEqual(buy_baseline_cost(ops), -100)

    def test_buy_past_previous_high_counted(self):
        ops = [
            op("Buy", -100, figi=FIGI, quantity=10, day=1),
            op("Sell", 110, figi=FIGI, quantity=10, day=2),
            op("Buy", -120, figi=FIGI, quantity=10, day=3),
            op("Buy", -60, figi=FIGI, quantity=5, day=4),
        ]
        self.assertEqual(buy_baseline_cost(ops), -160)

    def test_replayed_in_date_order(self):
        ops = [
            op("Buy", -60, figi=FIGI, quantity=5, day=4),
            op("Buy", -120, figi=FIGI, quantity=10, day=3),
            op("Sell", 110, figi=FIGI, quantity=10, day=2),
            op("Buy", -100, figi=FIGI, quantity=10, day=1),
        ]
        self.assertEqual(buy_baseline_cost(ops), -160)


class TestTotals(unittest.TestCase):
    def setUp(self):
        self.position_map = {
            "FIGIRUB1": {"A": pos("FIGIRUB1", 10, price=100)},
            "FIGIUSD1": {"A": pos("FIGIUSD1", 2, price=5, currency="USD")},
        }
        self.prices = {"FIGIRUB1": 50.0, "FIGIUSD1": 10.0}
        self.currencies_info = [CurrencyInfo(figi=USD_FIGI, currency="USD", lastPrice=70.0)]

    def test_net_against_pay_in(self):
        ops = {
            "A": [
                op("PayIn", 1000),
                op("PayOut", -200, day=1),
                op("PayIn", 5000, day=2, status="Decline"),
            ]
        }
        totals = compute_totals(self.position_map, ops, self.prices, self.currencies_info)

        self.assertEqual(totals.totalPayIn, 800)
        self.assertEqual(totals.netTotal, 1100)
        self.assertAlmostEqual(totals.percent, 137.5)

    def test_percent_undefined_without_pay_in(self):
        totals = compute_totals(self.position_map, {"A": []}, self.prices, self.currencies_info)

        self.assertEqual(totals.totalPayIn, 0)
        self.assertEqual(totals.netTotal, 1900)
        self.assertIsNone(totals.percent)

    def test_unknown_currency_rate_is_one(self):
        self.assertEqual(currency_rate(self.currencies_info, "RUB"), 1.0)
        self.assertEqual(currency_rate(self.currencies_info, "USD"), 70.0)


if __name__ == "__main__":
    unittest.main()
