#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Tests for the order lifecycle state machine."""

import itertools
import types

from absl.testing import absltest
from orderflow.enums import OrderStatus
from orderflow.services import order_lifecycle


def _order(
    status, tracking_number=None, payment_status="paid", payment_method="card"
):
  return types.SimpleNamespace(
      status=status.value,
      tracking_number=tracking_number,
      payment_status=payment_status,
      payment_method=payment_method,
  )


class CanTransitionTest(absltest.TestCase):

  def test_no_downgrade_for_any_pair(self) -> None:
    ranks = order_lifecycle.STATUS_RANKS
    for current, target in itertools.product(OrderStatus, OrderStatus):
      allowed = order_lifecycle.can_transition(current, target)
      if current in order_lifecycle.TERMINAL_STATUSES:
        self.assertFalse(allowed, f"{current} -> {target}")
      elif target == OrderStatus.CANCELLED:
        self.assertTrue(allowed, f"{current} -> {target}")
      else:
        self.assertEqual(
            allowed, ranks[target] > ranks[current], f"{current} -> {target}"
        )

  def test_pending_requires_cleared_payment(self) -> None:
    self.assertFalse(
        order_lifecycle.can_transition(
            OrderStatus.PENDING, OrderStatus.SHIPPED, payment_cleared=False
        )
    )
    self.assertTrue(
        order_lifecycle.can_transition(
            OrderStatus.PENDING, OrderStatus.CANCELLED, payment_cleared=False
        )
    )

  def test_cash_on_delivery_counts_as_cleared(self) -> None:
    self.assertTrue(order_lifecycle.is_payment_cleared("pending", "cod"))
    self.assertTrue(order_lifecycle.is_payment_cleared("paid", "card"))
    self.assertFalse(order_lifecycle.is_payment_cleared("failed", "upi"))


class CarrierStatusTest(absltest.TestCase):

  def test_normalization(self) -> None:
    self.assertEqual(
        order_lifecycle.normalize_carrier_status("  out for   delivery "),
        "OUT_FOR_DELIVERY",
    )
    self.assertIsNone(order_lifecycle.normalize_carrier_status("   "))
    self.assertIsNone(order_lifecycle.normalize_carrier_status(None))

  def test_mapping(self) -> None:
    expected = {
        "In Transit": OrderStatus.SHIPPED,
        "PICKUP SCHEDULED": OrderStatus.SHIPPED,
        "rto initiated": OrderStatus.SHIPPED,
        "Delivered": OrderStatus.DELIVERED,
        "RETURN_INITIATED": OrderStatus.RETURN_REQUESTED,
        "RTO DELIVERED": OrderStatus.RETURNED,
        "Canceled": None,
        "NDR": None,
    }
    for raw, status in expected.items():
      self.assertEqual(order_lifecycle.map_carrier_status(raw), status, raw)


class ReconcileTest(absltest.TestCase):

  def test_forward_transition_records_missing_tracking(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.PROCESSING), OrderStatus.SHIPPED, "AWB1"
    )
    self.assertEqual(decision.status, OrderStatus.SHIPPED)
    self.assertEqual(decision.tracking_number, "AWB1")

  def test_forward_transition_keeps_existing_tracking(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.SHIPPED, tracking_number="AWB1"),
        OrderStatus.DELIVERED,
        "AWB2",
    )
    self.assertEqual(decision.status, OrderStatus.DELIVERED)
    self.assertIsNone(decision.tracking_number)

  def test_late_in_transit_after_delivery_is_rejected(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.DELIVERED, tracking_number="AWB1"),
        OrderStatus.SHIPPED,
        "AWB1",
    )
    self.assertFalse(decision.has_changes)
    self.assertIn("delivered", decision.reason)

  def test_duplicate_delivered_is_a_no_op(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.DELIVERED, tracking_number="AWB1"),
        OrderStatus.DELIVERED,
        "AWB1",
    )
    self.assertFalse(decision.has_changes)
    self.assertEqual(decision.reason, "Order already delivered")

  def test_tracking_only_when_already_at_or_beyond_stage(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.SHIPPED), OrderStatus.SHIPPED, "AWB9"
    )
    self.assertIsNone(decision.status)
    self.assertEqual(decision.tracking_number, "AWB9")

    decision = order_lifecycle.reconcile(
        _order(OrderStatus.DELIVERED), OrderStatus.SHIPPED, "AWB9"
    )
    self.assertIsNone(decision.status)
    self.assertEqual(decision.tracking_number, "AWB9")

  def test_terminal_orders_accept_nothing(self) -> None:
    for status in order_lifecycle.TERMINAL_STATUSES:
      decision = order_lifecycle.reconcile(
          _order(status), OrderStatus.SHIPPED, "AWB9"
      )
      self.assertFalse(decision.has_changes)

  def test_unpaid_order_cannot_ship(self) -> None:
    decision = order_lifecycle.reconcile(
        _order(OrderStatus.PENDING, payment_status="pending"),
        OrderStatus.SHIPPED,
        "AWB1",
    )
    self.assertFalse(decision.has_changes)
    self.assertEqual(decision.reason, "Order payment is not cleared")


if __name__ == "__main__":
  absltest.main()
