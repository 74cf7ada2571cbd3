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

"""Tests for order creation, lookup and cancellation."""

import asyncio
from typing import Any, Dict, Optional
from unittest import mock

from absl.testing import absltest
from orderflow import db
from orderflow import testing
from orderflow.exceptions import IdempotencyConflictError
from orderflow.exceptions import NotFoundError
from orderflow.exceptions import ValidationError
from orderflow.models import CheckoutRequest
from orderflow.services.checkout_service import CheckoutService

ADDRESS = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "9999999999",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
    "country": "IN",
}


def _request(**overrides: Any) -> CheckoutRequest:
  values: Dict[str, Any] = {
      "items": [{"product_id": "tea", "quantity": 2}],
      "shipping_address": ADDRESS,
  }
  values.update(overrides)
  return CheckoutRequest.model_validate(values)


class CheckoutServiceTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.database = testing.TestDatabase()

    async def seed() -> None:
      await self.database.create()
      await self.database.add_product("tea", 500)
      await self.database.add_product("cup", 250)
      await self.database.add_coupon("SAVE10", value=10)

    asyncio.run(seed())

  def tearDown(self) -> None:
    asyncio.run(self.database.dispose())
    self.database.cleanup()
    super().tearDown()

  def _create(
      self, request: CheckoutRequest, idempotency_key: Optional[str] = None
  ) -> Dict[str, Any]:
    async def run():
      async with self.database.products_session_factory() as products:
        async with self.database.transactions_session_factory() as txn:
          service = CheckoutService(products, txn)
          return await service.create_order(request, idempotency_key)

    return asyncio.run(run())

  def test_creates_pending_order_from_catalog_prices(self) -> None:
    body = self._create(
        _request(
            items=[
                {"product_id": "tea", "quantity": 2, "price": 1},
                {"product_id": "cup", "quantity": 1, "price": 1},
            ]
        )
    )
    self.assertEqual(body["status"], "pending")
    self.assertFalse(body["coupon_applied"])
    self.assertEqual(
        body["totals"],
        {
            "subtotal": 1250,
            "discount": 0,
            "shipping": 0,
            "tax": 63,
            "total": 1313,
        },
    )

    order = asyncio.run(self.database.get_order(body["order_id"]))
    self.assertEqual(order.total, 1313)
    self.assertEqual(order.email, "asha@example.com")
    self.assertTrue(order.order_number.startswith("ORD-"))
    self.assertEqual(
        [(item.product_id, item.unit_price) for item in order.items],
        [("tea", 500), ("cup", 250)],
    )

  def test_coupon_is_redeemed_once(self) -> None:
    body = self._create(_request(coupon_code="save10"))
    self.assertTrue(body["coupon_applied"])
    self.assertEqual(body["totals"]["discount"], 100)
    self.assertEqual(body["totals"]["total"], 945)

    coupon = asyncio.run(self.database.get_coupon("SAVE10"))
    self.assertEqual(coupon.usage_count, 1)

  def test_coupon_exhausted_by_concurrent_redemption(self) -> None:
    asyncio.run(self.database.add_coupon("LAST1", usage_limit=1, usage_count=1))
    # The shopper's read saw one use left; the row no longer has it.
    stale = db.Coupon(
        code="LAST1",
        discount_type="percentage",
        value=10,
        is_active=True,
        usage_limit=1,
        usage_count=0,
    )

    async def stale_get_coupon(session, code):
      del session, code  # Unused.
      return stale

    with mock.patch.object(db, "get_coupon", stale_get_coupon):
      body = self._create(_request(coupon_code="LAST1"))

    self.assertFalse(body["coupon_applied"])
    self.assertEqual(body["coupon_message"], "Coupon usage limit reached")
    self.assertEqual(body["totals"]["discount"], 0)
    self.assertEqual(body["totals"]["total"], 1050)
    coupon = asyncio.run(self.database.get_coupon("LAST1"))
    self.assertEqual(coupon.usage_count, 1)

  def test_unknown_coupon_is_ignored(self) -> None:
    body = self._create(_request(coupon_code="NOPE"))
    self.assertFalse(body["coupon_applied"])
    self.assertEqual(body["coupon_message"], "Coupon not found")

  def test_empty_cart(self) -> None:
    with self.assertRaises(ValidationError) as ctx:
      self._create(_request(items=[]))
    self.assertEqual(ctx.exception.code, "empty_cart")

  def test_missing_address(self) -> None:
    with self.assertRaises(ValidationError) as ctx:
      self._create(_request(shipping_address=None))
    self.assertEqual(ctx.exception.code, "missing_address")

    with self.assertRaises(ValidationError) as ctx:
      self._create(_request(shipping_address={**ADDRESS, "postal_code": ""}))
    self.assertEqual(ctx.exception.code, "missing_address")

  def test_unknown_product(self) -> None:
    with self.assertRaises(ValidationError) as ctx:
      self._create(_request(items=[{"product_id": "ghost", "quantity": 1}]))
    self.assertEqual(ctx.exception.code, "unknown_product")

  def test_idempotency_key_replays_response(self) -> None:
    first = self._create(_request(), idempotency_key="key-1")
    second = self._create(_request(), idempotency_key="key-1")
    self.assertEqual(first, second)

    with self.assertRaises(IdempotencyConflictError):
      self._create(
          _request(items=[{"product_id": "cup", "quantity": 1}]),
          idempotency_key="key-1",
      )

  def _with_service(self, fn):
    async def run():
      async with self.database.products_session_factory() as products:
        async with self.database.transactions_session_factory() as txn:
          return await fn(
              CheckoutService(
                  products,
                  txn,
                  tracking_url_template="https://track.test/{tracking_number}",
              )
          )

    return asyncio.run(run())

  def test_get_order_includes_tracking_url(self) -> None:
    order = asyncio.run(
        self.database.add_order(status="shipped", tracking_number="AWB42")
    )
    body = self._with_service(lambda service: service.get_order(order.id))
    self.assertEqual(body["tracking_url"], "https://track.test/AWB42")
    self.assertLen(body["items"], 1)

    with self.assertRaises(NotFoundError):
      self._with_service(lambda service: service.get_order("missing"))

  def test_cancel_order(self) -> None:
    order = asyncio.run(
        self.database.add_order(status="processing", payment_status="paid")
    )
    body = self._with_service(
        lambda service: service.cancel_order(order.id, "customer request")
    )
    self.assertEqual(body["status"], "cancelled")
    self.assertEqual(body["payment_status"], "paid")

    with self.assertRaises(ValidationError) as ctx:
      self._with_service(lambda service: service.cancel_order(order.id))
    self.assertEqual(ctx.exception.code, "invalid_transition")


if __name__ == "__main__":
  absltest.main()
