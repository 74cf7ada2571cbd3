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

"""Tests for server-side pricing."""

import asyncio
import datetime

from absl.testing import absltest
from orderflow import db
from orderflow import testing
from orderflow.exceptions import ValidationError
from orderflow.models import CheckoutItem
from orderflow.services import pricing

NOW = datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)


def _coupon(**fields) -> db.Coupon:
  values = dict(
      code="SAVE10",
      discount_type="percentage",
      value=10,
      is_active=True,
      usage_count=0,
  )
  values.update(fields)
  return db.Coupon(**values)


def _line(price: int, quantity: int = 1) -> pricing.PricedLine:
  return pricing.PricedLine(
      product_id="tea", name="Tea", quantity=quantity, unit_price=price
  )


class QuoteTest(absltest.TestCase):

  def test_percentage_coupon_with_indian_tax(self) -> None:
    quote = pricing.quote(
        [_line(1000)], "standard", "IN", _coupon(), now=NOW
    )
    self.assertEqual(quote.subtotal, 1000)
    self.assertEqual(quote.discount, 100)
    self.assertEqual(quote.tax, 45)
    self.assertEqual(quote.shipping_cost, 0)
    self.assertEqual(quote.total, 945)
    self.assertEqual(quote.coupon_code, "SAVE10")

  def test_total_identity_holds(self) -> None:
    quote = pricing.quote(
        [_line(1999, 3), _line(450)],
        "express",
        "GB",
        _coupon(discount_type="fixed", value=500),
        now=NOW,
    )
    self.assertEqual(
        quote.total,
        quote.subtotal - quote.discount + quote.shipping_cost + quote.tax,
    )
    self.assertEqual(quote.shipping_cost, 1000)

  def test_unknown_country_uses_default_rate(self) -> None:
    self.assertEqual(pricing.calculate_tax(1000, "ZZ"), 50)
    self.assertEqual(pricing.calculate_tax(1000, None), 50)
    self.assertEqual(pricing.calculate_tax(1000, "ae"), 0)
    self.assertEqual(pricing.calculate_tax(1000, "US"), 80)

  def test_tax_rounds_half_up(self) -> None:
    # 250 * 0.05 = 12.5
    self.assertEqual(pricing.calculate_tax(250, "IN"), 13)

  def test_unknown_shipping_method_is_standard(self) -> None:
    self.assertEqual(pricing.shipping_cost("teleport"), ("standard", 0))
    self.assertEqual(pricing.shipping_cost("overnight"), ("overnight", 2500))

  def test_rejected_coupon_gives_no_discount(self) -> None:
    quote = pricing.quote(
        [_line(1000)], "standard", "IN", _coupon(is_active=False), now=NOW
    )
    self.assertEqual(quote.discount, 0)
    self.assertIsNone(quote.coupon_code)
    self.assertEqual(quote.coupon_rejection, "Coupon is not active")


class EvaluateCouponTest(absltest.TestCase):

  def test_percentage_is_capped_by_max_discount(self) -> None:
    evaluation = pricing.evaluate_coupon(
        _coupon(value=50, max_discount=300), 1000, NOW
    )
    self.assertTrue(evaluation.accepted)
    self.assertEqual(evaluation.discount, 300)

  def test_percentage_rounds_half_up(self) -> None:
    # 15% of 1003 = 150.45 -> 150; 15% of 1010 = 151.5 -> 152
    self.assertEqual(
        pricing.evaluate_coupon(_coupon(value=15), 1003, NOW).discount, 150
    )
    self.assertEqual(
        pricing.evaluate_coupon(_coupon(value=15), 1010, NOW).discount, 152
    )

  def test_fixed_discount_is_clamped_to_subtotal(self) -> None:
    evaluation = pricing.evaluate_coupon(
        _coupon(discount_type="fixed", value=5000), 1200, NOW
    )
    self.assertEqual(evaluation.discount, 1200)

  def test_date_window(self) -> None:
    not_started = _coupon(start_date="2026-11-01T00:00:00+00:00")
    expired = _coupon(end_date="2026-10-01")
    in_window = _coupon(
        start_date="2026-10-01T00:00:00Z", end_date="2026-10-31T00:00:00Z"
    )
    self.assertFalse(pricing.evaluate_coupon(not_started, 1000, NOW).accepted)
    self.assertFalse(pricing.evaluate_coupon(expired, 1000, NOW).accepted)
    self.assertTrue(pricing.evaluate_coupon(in_window, 1000, NOW).accepted)

  def test_usage_limit_and_minimum(self) -> None:
    self.assertFalse(
        pricing.evaluate_coupon(
            _coupon(usage_limit=5, usage_count=5), 1000, NOW
        ).accepted
    )
    self.assertTrue(
        pricing.evaluate_coupon(
            _coupon(usage_limit=5, usage_count=4), 1000, NOW
        ).accepted
    )
    self.assertFalse(
        pricing.evaluate_coupon(_coupon(min_cart_value=2000), 1999, NOW)
        .accepted
    )
    self.assertTrue(
        pricing.evaluate_coupon(_coupon(min_cart_value=2000), 2000, NOW)
        .accepted
    )

  def test_missing_coupon(self) -> None:
    self.assertFalse(pricing.evaluate_coupon(None, 1000, NOW).accepted)


class ValidateLineItemsTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.database = testing.TestDatabase()

    async def seed() -> None:
      await self.database.create()
      await self.database.add_product("tea", 45000, title="Assam Tea")
      await self.database.add_product("cup", 9900, title="Cup")

    asyncio.run(seed())

  def tearDown(self) -> None:
    asyncio.run(self.database.dispose())
    self.database.cleanup()
    super().tearDown()

  def _validate(self, items):
    async def run():
      async with self.database.products_session_factory() as session:
        return await pricing.validate_line_items(session, items)

    return asyncio.run(run())

  def test_catalog_price_wins_over_client_price(self) -> None:
    with self.assertLogs(pricing.logger, level="WARNING"):
      lines = self._validate(
          [CheckoutItem(product_id="tea", quantity=2, price=1)]
      )
    self.assertLen(lines, 1)
    self.assertEqual(lines[0].unit_price, 45000)
    self.assertEqual(lines[0].total, 90000)
    self.assertEqual(lines[0].name, "Assam Tea")

  def test_unknown_product_is_rejected(self) -> None:
    with self.assertRaises(ValidationError) as ctx:
      self._validate([CheckoutItem(product_id="coffee", quantity=1)])
    self.assertEqual(ctx.exception.code, "unknown_product")

  def test_quantity_must_be_positive(self) -> None:
    with self.assertRaises(ValidationError) as ctx:
      self._validate([CheckoutItem(product_id="cup", quantity=0)])
    self.assertEqual(ctx.exception.code, "invalid_quantity")


if __name__ == "__main__":
  absltest.main()
