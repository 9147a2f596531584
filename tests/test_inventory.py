import math
import unittest

from kitchen_ops.errors import NotFoundError, ValidationError
from kitchen_ops.inventory import InventoryMonitor, days_left, derive_alert_state
from kitchen_ops.models import InventoryItem

from support import T0, StoreTestCase


class TestDeriveAlertState(unittest.TestCase):

    def test_days_left(self):
        self.assertEqual(days_left(20, 5), 4)
        self.assertTrue(math.isinf(days_left(20, 0)))

    def test_crossing_warning_only(self):
        state = derive_alert_state(4, 4, 2, warned=False, critical=False)
        self.assertTrue(state.send_warning)
        self.assertFalse(state.send_critical)
        self.assertTrue(state.warned)
        self.assertFalse(state.critical)

    def test_already_latched_sends_nothing(self):
        state = derive_alert_state(1, 4, 2, warned=True, critical=True)
        self.assertFalse(state.send_warning)
        self.assertFalse(state.send_critical)
        self.assertTrue(state.warned and state.critical)

    def test_straight_to_critical_sends_both(self):
        state = derive_alert_state(1, 4, 2, warned=False, critical=False)
        self.assertTrue(state.send_warning)
        self.assertTrue(state.send_critical)

    def test_partial_recovery_clears_only_critical(self):
        state = derive_alert_state(3, 4, 2, warned=True, critical=True)
        self.assertTrue(state.warned)
        self.assertFalse(state.critical)
        self.assertFalse(state.send_warning or state.send_critical)

    def test_infinite_days_clears_everything(self):
        state = derive_alert_state(math.inf, 4, 2, warned=True, critical=True)
        self.assertEqual((state.warned, state.critical, state.send_warning, state.send_critical),
                         (False, False, False, False))


class TestInventoryMonitor(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.add_partner("1", "Asha")
        self.add_partner("2", "Ravi", role="admin")
        self.monitor = InventoryMonitor(self.store, self.notifier)
        self.item = self.monitor.add_item("Onion", "kg", 20, 5, "1", T0)

    def latches(self):
        item = self.store.get_item(self.item.id)
        return item.warned, item.critical

    def test_scenario_low_stock_not_critical(self):
        sent = self.monitor.evaluate_all()
        self.assertEqual(sent, 2)
        self.assertTrue(all("LOW STOCK" in t for t in self.sent_texts()))
        self.assertEqual(self.latches(), (True, False))

    def test_low_stock_alert_fires_once_per_crossing(self):
        self.monitor.evaluate_all()
        self.reset_sends()
        for _ in range(5):
            self.assertEqual(self.monitor.evaluate_all(), 0)
        self.client.send_message.assert_not_called()

    def test_critical_does_not_retrigger_on_further_drop(self):
        self.monitor.record_usage(self.item.id, 12, "1", T0)  # 8 kg -> 1.6 days
        self.monitor.evaluate_all()
        self.assertEqual(self.latches(), (True, True))
        self.reset_sends()

        self.monitor.record_usage(self.item.id, 4, "1", T0)  # 4 kg -> 0.8 days
        self.assertEqual(self.monitor.evaluate_all(), 0)
        self.assertEqual(self.latches(), (True, True))

    def test_scenario_purchase_clears_warning_silently(self):
        self.monitor.evaluate_all()
        self.reset_sends()

        item = self.monitor.record_purchase(self.item.id, 5, "1", T0)
        self.assertEqual(item.stock, 25)
        self.assertEqual(self.monitor.evaluate_all(), 0)
        self.assertEqual(self.latches(), (False, False))

    def test_recovery_allows_alert_to_fire_again(self):
        self.monitor.evaluate_all()
        self.monitor.record_purchase(self.item.id, 30, "1", T0)
        self.monitor.evaluate_all()
        self.reset_sends()

        self.monitor.record_usage(self.item.id, 31, "1", T0)  # 19 kg -> 3.8 days
        self.assertEqual(self.monitor.evaluate_all(), 2)
        self.assertTrue(all("LOW STOCK" in t for t in self.sent_texts()))

    def test_zero_usage_never_alerts(self):
        self.monitor.set_daily_usage(self.item.id, 0, "1", T0)
        self.monitor.record_usage(self.item.id, 19, "1", T0)
        self.assertEqual(self.monitor.evaluate_all(), 0)
        self.assertEqual(self.latches(), (False, False))

    def test_latches_persist_before_sending(self):
        self.client.send_message.return_value = False
        self.monitor.evaluate_all()
        self.assertEqual(self.latches(), (True, False))

    def test_usage_floors_stock_at_zero(self):
        item = self.monitor.record_usage(self.item.id, 100, "1", T0)
        self.assertEqual(item.stock, 0)

    def test_add_item_uses_default_thresholds(self):
        self.assertEqual(self.item.warn_days, 4)
        self.assertEqual(self.item.critical_days, 2)

    def test_add_item_rejects_duplicates(self):
        with self.assertRaises(ValidationError):
            self.monitor.add_item("onion", "kg", 1, 1, "1", T0)

    def test_invalid_mutations(self):
        with self.assertRaises(ValidationError):
            self.monitor.record_purchase(self.item.id, 0, "1", T0)
        with self.assertRaises(ValidationError):
            self.monitor.set_thresholds(self.item.id, 1, 2, "1", T0)
        with self.assertRaises(NotFoundError):
            self.monitor.record_purchase("missing", 1, "1", T0)

    def test_mutations_are_audited(self):
        self.monitor.record_purchase(self.item.id, 5, "1", T0)
        actions = [entry["action"] for entry in self.store.doc["audit"]]
        self.assertEqual(actions[-2:], ["item_added", "purchase"])

    def test_custom_thresholds(self):
        self.monitor.set_thresholds(self.item.id, 6, 4.5, "1", T0)
        self.monitor.evaluate_all()
        self.assertEqual(self.latches(), (True, True))

    def test_stock_report_lists_items(self):
        self.monitor.add_item("Rice", "kg", 100, 0, "1", T0)
        report = self.monitor.format_stock_report()
        self.assertIn("Onion", report)
        self.assertIn("Rice", report)
        self.assertIn("∞", report)


if __name__ == "__main__":
    unittest.main()
