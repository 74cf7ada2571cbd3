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

"""Tests for payment intents and payment verification."""

import asyncio
import decimal

from absl.testing import absltest
from orderflow import testing
from orderflow.exceptions import GatewayTimeoutError
from orderflow.exceptions import GatewayUnavailableError
from orderflow.exceptions import InvalidAmountError
from orderflow.exceptions import InvalidSignatureError
from orderflow.exceptions import NotFoundError
from orderflow.exceptions import PaymentRejectedError
from orderflow.exceptions import ValidationError
from orderflow.services.gateway_client import GatewayClient
from orderflow.services.payment_service import PaymentService


class PaymentServiceTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.database = testing.TestDatabase()
    asyncio.run(self.database.create())
    self.gateway = testing.FakeGatewayAPI()

  def tearDown(self) -> None:
    asyncio.run(self.database.dispose())
    self.database.cleanup()
    super().tearDown()

  def _run(self, fn):
    async def run():
      async with self.database.transactions_session_factory() as session:
        client = GatewayClient(
            testing.GATEWAY_BASE_URL,
            testing.GATEWAY_KEY_ID,
            testing.GATEWAY_KEY_SECRET,
            timeout=1.0,
            transport=self.gateway.transport,
        )
        service = PaymentService(session, client, testing.GATEWAY_KEY_SECRET)
        return await fn(service)

    return asyncio.run(run())

  def _intent(self, order_id, amount):
    return self._run(
        lambda service: service.create_intent(
            order_id, decimal.Decimal(amount)
        )
    )

  def _verify(self, gateway_order_id, payment_id, signature, order_id):
    return self._run(
        lambda service: service.verify_payment(
            gateway_order_id, payment_id, signature, order_id
        )
    )

  def test_create_intent_stores_gateway_order(self) -> None:
    order = asyncio.run(self.database.add_order(total=94500))
    intent = self._intent(order.id, "945.00")

    self.assertEqual(intent["gateway_order_id"], "order_00000001")
    self.assertEqual(intent["amount"], 94500)
    self.assertEqual(intent["currency"], "INR")
    self.assertEqual(intent["key_id"], testing.GATEWAY_KEY_ID)

    sent = self.gateway.orders[0]
    self.assertEqual(sent["amount"], 94500)
    self.assertEqual(sent["receipt"], order.id[:40])
    self.assertEqual(sent["notes"]["order_id"], order.id)

    stored = asyncio.run(self.database.get_order(order.id))
    self.assertEqual(stored.gateway_order_id, "order_00000001")

  def test_amount_must_match_total(self) -> None:
    order = asyncio.run(self.database.add_order(total=94500))
    with self.assertRaises(ValidationError) as ctx:
      self._intent(order.id, "900")
    self.assertEqual(ctx.exception.code, "amount_mismatch")
    self.assertEmpty(self.gateway.orders)

  def test_minimum_amount(self) -> None:
    order = asyncio.run(self.database.add_order(total=99))
    with self.assertRaises(InvalidAmountError):
      self._intent(order.id, "0.99")
    self.assertEmpty(self.gateway.orders)

  def test_paid_order_gets_no_new_intent(self) -> None:
    order = asyncio.run(self.database.add_order(payment_status="paid"))
    with self.assertRaises(ValidationError) as ctx:
      self._intent(order.id, "1050")
    self.assertEqual(ctx.exception.code, "order_already_paid")

  def test_unknown_order(self) -> None:
    with self.assertRaises(NotFoundError):
      self._intent("missing", "10")

  def test_gateway_timeout_mutates_nothing(self) -> None:
    order = asyncio.run(self.database.add_order())
    self.gateway.error = "timeout"
    with self.assertRaises(GatewayTimeoutError) as ctx:
      self._intent(order.id, "1050")
    self.assertEqual(ctx.exception.status_code, 504)

    stored = asyncio.run(self.database.get_order(order.id))
    self.assertIsNone(stored.gateway_order_id)
    self.assertEqual(stored.payment_status, "pending")

  def test_gateway_outage(self) -> None:
    order = asyncio.run(self.database.add_order())
    self.gateway.status_code = 503
    with self.assertRaises(GatewayUnavailableError) as ctx:
      self._intent(order.id, "1050")
    self.assertNotIn("503", ctx.exception.public_message)

    self.gateway.status_code = None
    self.gateway.error = "network"
    with self.assertRaises(GatewayUnavailableError):
      self._intent(order.id, "1050")

  def test_gateway_rejection_carries_description(self) -> None:
    order = asyncio.run(self.database.add_order())
    self.gateway.status_code = 400
    self.gateway.error_body = {
        "error": {
            "code": "BAD_REQUEST_ERROR",
            "description": "The currency is not supported",
        }
    }
    with self.assertRaises(PaymentRejectedError) as ctx:
      self._intent(order.id, "1050")
    self.assertEqual(ctx.exception.status_code, 400)
    self.assertEqual(
        ctx.exception.public_message, "The currency is not supported"
    )

  def test_verify_marks_order_paid_once(self) -> None:
    order = asyncio.run(self.database.add_order(gateway_order_id="order_1"))
    signature = testing.payment_signature("order_1", "pay_1")

    first = self._verify("order_1", "pay_1", signature, order.id)
    second = self._verify("order_1", "pay_1", signature, order.id)

    self.assertTrue(first.newly_paid)
    self.assertFalse(second.newly_paid)
    self.assertEqual(second.payment_id, "pay_1")

    stored = asyncio.run(self.database.get_order(order.id))
    self.assertEqual(stored.payment_status, "paid")
    self.assertEqual(stored.status, "processing")
    self.assertEqual(stored.gateway_payment_id, "pay_1")

  def test_altered_signature_is_rejected_without_mutation(self) -> None:
    order = asyncio.run(self.database.add_order(gateway_order_id="order_1"))
    signature = testing.payment_signature("order_1", "pay_1")
    tampered = signature[:-1] + ("0" if signature[-1] != "0" else "1")

    with self.assertRaises(InvalidSignatureError):
      self._verify("order_1", "pay_1", tampered, order.id)
    with self.assertRaises(InvalidSignatureError):
      self._verify("order_1", "pay_2", signature, order.id)
    letter = next(i for i, char in enumerate(signature) if char.isalpha())
    flipped = (
        signature[:letter] + signature[letter].upper() + signature[letter + 1 :]
    )
    with self.assertRaises(InvalidSignatureError):
      self._verify("order_1", "pay_1", flipped, order.id)

    stored = asyncio.run(self.database.get_order(order.id))
    self.assertEqual(stored.payment_status, "pending")
    self.assertEqual(stored.status, "pending")
    self.assertIsNone(stored.gateway_payment_id)

  def test_payment_for_another_gateway_order(self) -> None:
    order = asyncio.run(self.database.add_order(gateway_order_id="order_1"))
    signature = testing.payment_signature("order_2", "pay_1")
    with self.assertRaises(ValidationError) as ctx:
      self._verify("order_2", "pay_1", signature, order.id)
    self.assertEqual(ctx.exception.code, "gateway_order_mismatch")

  def test_closed_order_gets_no_intent(self) -> None:
    for status in ("cancelled", "returned"):
      order = asyncio.run(
          self.database.add_order(status=status, total=94500)
      )
      with self.assertRaises(ValidationError) as ctx:
        self._intent(order.id, "945.00")
      self.assertEqual(ctx.exception.code, "order_cancelled")
    self.assertEmpty(self.gateway.orders)

  def test_payment_on_cancelled_order_is_not_fulfillable(self) -> None:
    order = asyncio.run(
        self.database.add_order(status="cancelled", gateway_order_id="order_1")
    )
    signature = testing.payment_signature("order_1", "pay_1")
    confirmation = self._verify("order_1", "pay_1", signature, order.id)

    self.assertTrue(confirmation.newly_paid)
    self.assertFalse(confirmation.fulfillable)
    stored = asyncio.run(self.database.get_order(order.id))
    self.assertEqual(stored.status, "cancelled")
    self.assertEqual(stored.payment_status, "paid")

  def test_payment_on_open_order_is_fulfillable(self) -> None:
    order = asyncio.run(self.database.add_order(gateway_order_id="order_1"))
    signature = testing.payment_signature("order_1", "pay_1")
    confirmation = self._verify("order_1", "pay_1", signature, order.id)
    self.assertTrue(confirmation.fulfillable)

  def test_verify_unknown_order(self) -> None:
    signature = testing.payment_signature("order_1", "pay_1")
    with self.assertRaises(NotFoundError):
      self._verify("order_1", "pay_1", signature, "missing")


if __name__ == "__main__":
  absltest.main()
