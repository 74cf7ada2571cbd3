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

"""Ingestion of payment gateway and carrier webhooks.

Providers retry deliveries, deliver them out of order and occasionally send
garbage, and a non-2xx answer only causes more retries. Every delivery is
therefore authenticated, logged to the webhook audit table, and acknowledged.
Only authenticated, parseable events that resolve to an order are acted on,
and an event is marked processed only once it actually changed the order.

Slow follow-ups (emails, shipment creation) are not run here. The outcome
names them and the route schedules them after the response is sent.
"""

import dataclasses
import json
import logging
from typing import Any, Dict, Optional, Tuple

from orderflow import db
from orderflow import signatures
from orderflow.enums import NotificationEvent
from orderflow.enums import OrderStatus
from orderflow.enums import WebhookSource
from orderflow.services import order_lifecycle
from orderflow.services.order_lookup import OrderReference
from orderflow.services.order_lookup import resolve_order
from orderflow.services.payment_service import PaymentService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED_EVENTS = frozenset(
    {"payment.captured", "payment.authorized", "order.paid"}
)
PAYMENT_FAILED_EVENT = "payment.failed"

_STATUS_NOTIFICATIONS = {
    OrderStatus.SHIPPED: NotificationEvent.ORDER_SHIPPED,
    OrderStatus.DELIVERED: NotificationEvent.ORDER_DELIVERED,
}


@dataclasses.dataclass
class WebhookOutcome:
  """What a delivery did, and what should happen after acknowledging it."""

  processed: bool = False
  message: Optional[str] = None
  order_id: Optional[str] = None
  run_post_payment: bool = False
  notification: Optional[NotificationEvent] = None


def _parse_body(raw_body: bytes) -> Tuple[Optional[Dict[str, Any]], Any]:
  """Returns `(event, payload_to_log)`; event is None if unusable."""
  try:
    data = json.loads(raw_body)
  except ValueError:
    return None, {"raw": raw_body.decode("utf-8", errors="replace")}
  if not isinstance(data, dict):
    return None, {"raw": data}
  return data, data


def _first(*values: Any) -> Optional[str]:
  for value in values:
    if value is not None and value != "":
      return str(value)
  return None


def _entity(data: Dict[str, Any], name: str) -> Dict[str, Any]:
  return ((data.get("payload") or {}).get(name) or {}).get("entity") or {}


class WebhookService:
  """Authenticates, logs and applies provider webhooks."""

  def __init__(
      self,
      transactions_session: AsyncSession,
      payment_service: PaymentService,
      payment_webhook_secret: Optional[str],
      carrier_webhook_secret: Optional[str],
  ):
    self.transactions_session = transactions_session
    self.payment_service = payment_service
    self.payment_webhook_secret = payment_webhook_secret
    self.carrier_webhook_secret = carrier_webhook_secret

  async def _log_event(self, **kwargs: Any) -> db.WebhookEvent:
    event = await db.log_webhook_event(self.transactions_session, **kwargs)
    await self.transactions_session.commit()
    return event

  async def _mark_processed(self, event: db.WebhookEvent) -> None:
    await db.mark_webhook_event_processed(self.transactions_session, event.id)
    await self.transactions_session.commit()

  async def handle_payment_webhook(
      self, raw_body: bytes, signature: Optional[str]
  ) -> WebhookOutcome:
    """Handles a payment gateway event.

    Args:
      raw_body: The exact request body, as signed by the gateway.
      signature: The hex HMAC-SHA256 signature header.

    Returns:
      The outcome to acknowledge and follow up on.
    """
    authenticated = signatures.verify_hmac_signature(
        self.payment_webhook_secret, raw_body, signature
    )
    data, logged_payload = _parse_body(raw_body)

    event_type = None
    payment: Dict[str, Any] = {}
    gateway_order: Dict[str, Any] = {}
    if data is not None:
      event_type = data.get("event")
      payment = _entity(data, "payment")
      gateway_order = _entity(data, "order")

    gateway_order_id = _first(payment.get("order_id"), gateway_order.get("id"))
    payment_id = _first(payment.get("id"))
    event = await self._log_event(
        source=WebhookSource.PAYMENT.value,
        event_type=event_type,
        payload=logged_payload,
        authenticated=authenticated,
        external_ref=gateway_order_id or payment_id,
    )

    if not authenticated:
      logger.warning(
          "Rejected payment webhook %s: invalid signature", event.id
      )
      return WebhookOutcome(message="Invalid signature")
    if data is None:
      logger.warning("Payment webhook %s has a malformed body", event.id)
      return WebhookOutcome(message="Malformed payload")
    if (
        event_type not in PAYMENT_CONFIRMED_EVENTS
        and event_type != PAYMENT_FAILED_EVENT
    ):
      logger.info("Ignoring payment webhook event %s", event_type)
      return WebhookOutcome(message=f"Event {event_type} ignored")

    ref = OrderReference(
        order_id=_first(
            (payment.get("notes") or {}).get("order_id"),
            (gateway_order.get("notes") or {}).get("order_id"),
            gateway_order.get("receipt"),
        ),
        external_ids=[gateway_order_id] if gateway_order_id else [],
    )
    order = await resolve_order(self.transactions_session, ref)
    if not order:
      return WebhookOutcome(message="Order not found")

    if (
        gateway_order_id
        and order.gateway_order_id
        and order.gateway_order_id != gateway_order_id
    ):
      logger.warning(
          "Payment webhook %s names gateway order %s but order %s uses %s",
          event.id,
          gateway_order_id,
          order.id,
          order.gateway_order_id,
      )
      return WebhookOutcome(
          message="Gateway order does not match", order_id=order.id
      )

    if event_type == PAYMENT_FAILED_EVENT:
      failed = await self.payment_service.record_failure(order)
      if failed:
        await self._mark_processed(event)
        return WebhookOutcome(
            processed=True,
            message="Payment failure recorded",
            order_id=order.id,
        )
      return WebhookOutcome(message="Order already paid", order_id=order.id)

    confirmation = await self.payment_service.confirm_payment(
        order, gateway_order_id, payment_id
    )
    if not confirmation.newly_paid:
      return WebhookOutcome(message="Order already paid", order_id=order.id)

    await self._mark_processed(event)
    if not confirmation.fulfillable:
      return WebhookOutcome(
          processed=True,
          message="Payment recorded on a closed order",
          order_id=order.id,
      )
    return WebhookOutcome(
        processed=True,
        message="Payment confirmed",
        order_id=order.id,
        run_post_payment=True,
    )

  async def handle_carrier_webhook(
      self, raw_body: bytes, token: Optional[str]
  ) -> WebhookOutcome:
    """Handles a carrier tracking update.

    Args:
      raw_body: The request body.
      token: The shared secret the carrier sends in a header.

    Returns:
      The outcome to acknowledge and follow up on.
    """
    authenticated = signatures.secrets_match(self.carrier_webhook_secret, token)
    data, logged_payload = _parse_body(raw_body)

    raw_status = None
    awb = None
    ref = OrderReference()
    if data is not None:
      tracking = data.get("tracking_data") or {}
      raw_status = _first(
          data.get("current_status"),
          data.get("shipment_status"),
          data.get("status"),
          tracking.get("current_status"),
          tracking.get("shipment_status"),
      )
      awb = _first(
          data.get("awb_code"), data.get("awb"), tracking.get("awb_code")
      )
      channel_order_id = _first(data.get("channel_order_id"))
      ref = OrderReference(
          order_id=channel_order_id,
          order_number=_first(channel_order_id, data.get("order_id")),
          external_ids=[
              value
              for value in (
                  _first(data.get("order_id")),
                  _first(data.get("sr_order_id")),
                  _first(data.get("shipment_id")),
              )
              if value
          ],
          tracking_number=awb,
      )

    carrier_status = order_lifecycle.normalize_carrier_status(raw_status)
    event = await self._log_event(
        source=WebhookSource.CARRIER.value,
        event_type=carrier_status,
        payload=logged_payload,
        authenticated=authenticated,
        external_ref=_first(*ref.external_ids, ref.order_number),
        tracking_number=awb,
    )

    if not authenticated:
      logger.warning("Rejected carrier webhook %s: invalid token", event.id)
      return WebhookOutcome(message="Unauthorized")
    if data is None:
      logger.warning("Carrier webhook %s has a malformed body", event.id)
      return WebhookOutcome(message="Malformed payload")
    if not carrier_status:
      return WebhookOutcome(message="No status in payload")

    order = await resolve_order(self.transactions_session, ref)
    if not order:
      return WebhookOutcome(message="Order not found")

    tracking_number = awb or order.tracking_number
    if tracking_number:
      await db.upsert_shipment_analytics(
          self.transactions_session,
          tracking_number,
          carrier_status,
          order_id=order.id,
          courier_name=_first(data.get("courier_name")),
      )
      await self.transactions_session.commit()

    target = order_lifecycle.map_carrier_status(carrier_status)
    if target is None:
      logger.info(
          "Unmapped carrier status %s for order %s", carrier_status, order.id
      )
      return WebhookOutcome(
          message=f"Unmapped status {carrier_status}", order_id=order.id
      )

    decision, applied = await self._apply_transition(order, target, awb)
    if not applied:
      logger.info(
          "Carrier status %s not applied to order %s: %s",
          carrier_status,
          order.id,
          decision.reason,
      )
      return WebhookOutcome(message=decision.reason, order_id=order.id)

    await self._mark_processed(event)
    if decision.status:
      logger.info("Order %s is now %s", order.id, decision.status.value)
      message = f"Order status updated to {decision.status.value}"
    else:
      logger.info("Recorded AWB %s on order %s", awb, order.id)
      message = decision.reason
    return WebhookOutcome(
        processed=True,
        message=message,
        order_id=order.id,
        notification=_STATUS_NOTIFICATIONS.get(decision.status),
    )

  async def _apply_transition(
      self,
      order: db.Order,
      target: OrderStatus,
      awb: Optional[str],
  ) -> Tuple[order_lifecycle.TransitionDecision, bool]:
    """Writes a reconciled transition, retrying once if the order moved."""
    decision = order_lifecycle.TransitionDecision()
    for _ in range(2):
      decision = order_lifecycle.reconcile(order, target, awb)
      if not decision.has_changes:
        return decision, False

      applied = await db.apply_order_update(
          self.transactions_session,
          order.id,
          expected_status=order.status,
          status=decision.status.value if decision.status else None,
          tracking_number=decision.tracking_number,
      )
      await self.transactions_session.commit()
      if applied:
        return decision, True

      logger.info("Order %s changed concurrently, re-reading", order.id)
      order = await db.get_order(self.transactions_session, order.id)
    decision.reason = decision.reason or "Order was updated concurrently"
    return decision, False
