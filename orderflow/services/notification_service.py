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

"""Customer notifications, posted to an email relay."""

import logging
from typing import Any, Optional

import httpx
from orderflow import db
from orderflow.enums import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationService:
  """Posts order events to the configured notification relay.

  Notifications are best effort. Failures are logged and reported as False,
  never raised, so they cannot undo the order change that triggered them.
  """

  def __init__(
      self,
      webhook_url: Optional[str],
      tracking_url_template: Optional[str] = None,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.webhook_url = webhook_url
    self.tracking_url_template = tracking_url_template
    self.transport = transport

  def _tracking_url(self, tracking_number: Optional[str]) -> Optional[str]:
    if not tracking_number or not self.tracking_url_template:
      return None
    return self.tracking_url_template.format(tracking_number=tracking_number)

  async def notify(
      self, event: NotificationEvent, order: db.Order, **extra: Any
  ) -> bool:
    if not self.webhook_url:
      logger.info(
          "No notification relay configured, skipping %s for order %s",
          event.value,
          order.id,
      )
      return False

    payload = {
        "event_type": event.value,
        "order_id": order.id,
        "order_number": order.order_number,
        "email": order.email,
        "status": order.status,
        "total": order.total,
        "currency": order.currency,
        "tracking_number": order.tracking_number,
        "tracking_url": self._tracking_url(order.tracking_number),
        "courier_name": order.courier_name,
        "items": [
            {"name": item.name, "quantity": item.quantity, "total": item.total}
            for item in order.items
        ],
        **extra,
    }

    try:
      async with httpx.AsyncClient(transport=self.transport) as client:
        response = await client.post(
            self.webhook_url, json=payload, timeout=5.0
        )
        response.raise_for_status()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error(
          "Failed to send %s notification for order %s: %s",
          event.value,
          order.id,
          e,
      )
      return False

    logger.info("Sent %s notification for order %s", event.value, order.id)
    return True
