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

"""Payment intents and payment confirmation.

Two paths confirm a payment: the shopper's browser calling verify after the
gateway widget succeeds, and the gateway's own webhook. Both go through
`PaymentService.confirm_payment`, whose conditional update guarantees a
single paid transition however many times, and in whatever order, they
arrive.
"""

import dataclasses
import decimal
import logging
from typing import Any, Dict, Optional

from orderflow import db
from orderflow import signatures
from orderflow.enums import PaymentStatus
from orderflow.exceptions import InternalError
from orderflow.exceptions import InvalidAmountError
from orderflow.exceptions import InvalidSignatureError
from orderflow.exceptions import NotFoundError
from orderflow.exceptions import ValidationError
from orderflow.services import order_lifecycle
from orderflow.services.gateway_client import GatewayClient
from orderflow.services.pricing import round_half_up
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Smallest amount the gateway accepts, in minor units.
MIN_PAYMENT_AMOUNT = 100


@dataclasses.dataclass
class PaymentConfirmation:
  order_id: str
  payment_id: Optional[str]
  newly_paid: bool
  # False when the order was cancelled or returned before the payment landed.
  fulfillable: bool = True


class PaymentService:
  """Creates gateway payment intents and confirms payments."""

  def __init__(
      self,
      transactions_session: AsyncSession,
      gateway_client: GatewayClient,
      key_secret: Optional[str],
  ):
    self.transactions_session = transactions_session
    self.gateway_client = gateway_client
    self.key_secret = key_secret

  async def create_intent(
      self, order_id: str, amount: decimal.Decimal
  ) -> Dict[str, Any]:
    """Creates a gateway order for the stored order total.

    Args:
      order_id: The order being paid.
      amount: The amount shown to the shopper, in major units. It must match
        the stored total.

    Returns:
      The gateway order id, public key id, amount in minor units and
      currency, for the client side checkout widget.
    """
    order = await db.get_order(self.transactions_session, order_id)
    if not order:
      raise NotFoundError("Order not found")
    order_lifecycle.ensure_open(order, "paid")
    if order.payment_status == PaymentStatus.PAID.value:
      raise ValidationError(
          "Order is already paid", code="order_already_paid"
      )

    amount_minor = round_half_up(decimal.Decimal(amount) * 100)
    if amount_minor < MIN_PAYMENT_AMOUNT:
      raise InvalidAmountError(
          f"Amount must be at least {MIN_PAYMENT_AMOUNT} minor units"
      )
    if amount_minor != order.total:
      logger.warning(
          "Payment amount %s does not match total %s for order %s",
          amount_minor,
          order.total,
          order.id,
      )
      raise ValidationError(
          "Amount does not match the order total", code="amount_mismatch"
      )

    gateway_order = await self.gateway_client.create_order(
        amount=order.total,
        currency=order.currency,
        receipt=order.id,
        notes={"order_id": order.id, "order_number": order.order_number},
    )

    order.gateway_order_id = gateway_order["id"]
    order.updated_at = db.utcnow()
    await self.transactions_session.commit()
    logger.info(
        "Created gateway order %s for order %s", gateway_order["id"], order.id
    )

    return {
        "gateway_order_id": gateway_order["id"],
        "key_id": self.gateway_client.key_id,
        "amount": order.total,
        "currency": order.currency,
    }

  async def verify_payment(
      self,
      gateway_order_id: str,
      gateway_payment_id: str,
      signature: str,
      order_id: str,
  ) -> PaymentConfirmation:
    """Checks the gateway's signature and marks the order paid.

    The signature is checked before anything is read or written. A
    confirmation for an order that is already paid succeeds without side
    effects.

    Raises:
      InvalidSignatureError: The signature does not match.
      NotFoundError: The order does not exist.
      ValidationError: The payment belongs to another gateway order.
    """
    if not self.key_secret:
      raise InternalError("Payment verification is not configured")

    payload = signatures.payment_signature_payload(
        gateway_order_id, gateway_payment_id
    )
    if not signatures.verify_hmac_signature(
        self.key_secret, payload, signature
    ):
      logger.error(
          "Rejected payment signature for gateway order %s (order %s)",
          gateway_order_id,
          order_id,
      )
      raise InvalidSignatureError()

    order = await db.get_order(self.transactions_session, order_id)
    if not order:
      raise NotFoundError("Order not found")
    if order.gateway_order_id and order.gateway_order_id != gateway_order_id:
      logger.error(
          "Gateway order %s does not belong to order %s",
          gateway_order_id,
          order.id,
      )
      raise ValidationError(
          "Payment does not belong to this order",
          code="gateway_order_mismatch",
      )

    return await self.confirm_payment(
        order, gateway_order_id, gateway_payment_id
    )

  async def confirm_payment(
      self,
      order: db.Order,
      gateway_order_id: Optional[str],
      gateway_payment_id: Optional[str],
  ) -> PaymentConfirmation:
    """Marks an authenticated payment as paid, at most once per order."""
    if order.payment_status == PaymentStatus.PAID.value:
      logger.info("Order %s is already paid", order.id)
      return PaymentConfirmation(
          order.id, order.gateway_payment_id or gateway_payment_id, False
      )

    newly_paid = await db.mark_order_paid(
        self.transactions_session,
        order.id,
        gateway_order_id,
        gateway_payment_id,
    )
    await self.transactions_session.commit()
    if not newly_paid:
      logger.info("Order %s was marked paid concurrently", order.id)
      return PaymentConfirmation(order.id, gateway_payment_id, False)

    logger.info("Order %s paid with payment %s", order.id, gateway_payment_id)
    order = await db.get_order(self.transactions_session, order.id)
    if order_lifecycle.is_terminal(order.status):
      logger.warning(
          "Payment %s captured for %s order %s; refund it manually",
          gateway_payment_id,
          order.status,
          order.id,
      )
      return PaymentConfirmation(
          order.id, gateway_payment_id, True, fulfillable=False
      )
    return PaymentConfirmation(order.id, gateway_payment_id, True)

  async def record_failure(self, order: db.Order) -> bool:
    """Marks a failed payment attempt unless the order is already paid."""
    failed = await db.mark_order_payment_failed(
        self.transactions_session, order.id
    )
    await self.transactions_session.commit()
    if failed:
      logger.info("Payment failed for order %s", order.id)
    return failed
