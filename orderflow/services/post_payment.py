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

"""Side effects that follow a confirmed payment or a carrier update.

These run as background tasks after the HTTP response has been sent. Each
opens its own database session, and each step catches and logs its own
failure so a broken email relay never blocks a shipment and a carrier outage
never affects the payment.
"""

import logging
from typing import Callable

from orderflow import db
from orderflow.enums import NotificationEvent
from orderflow.services import order_lifecycle
from orderflow.services.fulfillment_service import FulfillmentService
from orderflow.services.notification_service import NotificationService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class PostPaymentActions:
  """Runs the follow-ups for an order id in a fresh session."""

  def __init__(
      self,
      session_factory,
      notification_service: NotificationService,
      fulfillment_factory: Callable[[AsyncSession], FulfillmentService],
  ):
    self.session_factory = session_factory
    self.notification_service = notification_service
    self.fulfillment_factory = fulfillment_factory

  async def after_payment(self, order_id: str) -> None:
    """Sends the order confirmation, then creates the shipment."""
    async with self.session_factory() as session:
      order = await db.get_order(session, order_id)
      if not order:
        logger.error("Order %s vanished before post-payment actions", order_id)
        return
      if order_lifecycle.is_terminal(order.status):
        logger.warning(
            "Order %s is %s, skipping post-payment actions",
            order_id,
            order.status,
        )
        return

      try:
        await self.notification_service.notify(
            NotificationEvent.ORDER_CONFIRMED, order
        )
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Confirmation for order %s failed: %s", order_id, e)

      try:
        result = await self.fulfillment_factory(session).create_shipment(
            order_id
        )
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.exception(
            "Shipment creation for order %s failed: %s", order_id, e
        )
        return
      if not result.success:
        logger.warning(
            "Order %s paid but not shipped: %s", order_id, result.error
        )

  async def notify(self, order_id: str, event: NotificationEvent) -> None:
    """Sends a single notification for an order."""
    async with self.session_factory() as session:
      order = await db.get_order(session, order_id)
      if not order:
        logger.error(
            "Cannot notify %s, order %s not found", event.value, order_id
        )
        return
      try:
        await self.notification_service.notify(event, order)
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error(
            "%s notification for order %s failed: %s",
            event.value,
            order_id,
            e,
        )
