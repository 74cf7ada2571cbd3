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

"""Shipment orchestration for paid orders.

This module turns a paid order into a carrier shipment: it checks the pickup
location, creates the carrier order, looks up couriers serving the route and
asks them, cheapest first, to accept the shipment until one hands back an AWB
(tracking number).

Carrier ids are saved as soon as the carrier returns them, so a failed
courier assignment can be retried later without creating a second carrier
order. Carrier failures are recorded on the order and returned in the result;
they never touch payment state.
"""

import dataclasses
import datetime
import logging
from typing import Any, Dict, List, Optional

from orderflow import db
from orderflow.enums import PaymentMethod
from orderflow.exceptions import CarrierError
from orderflow.exceptions import NotFoundError
from orderflow.exceptions import ValidationError
from orderflow.services import order_lifecycle
from orderflow.services.carrier_client import CarrierClient
from orderflow.services.carrier_client import CourierOption
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MAX_COURIER_ATTEMPTS = 3
DEFAULT_ITEM_WEIGHT_KG = 0.5
PACKAGE_DIMENSIONS_CM = {"length": 15, "breadth": 15, "height": 10}


@dataclasses.dataclass
class CourierAttempt:
  courier_id: str
  courier_name: str
  rate: float
  error: Optional[str] = None


@dataclasses.dataclass
class ShipmentResult:
  """Outcome of a shipment request."""

  success: bool
  order_id: str
  carrier_order_id: Optional[str] = None
  carrier_shipment_id: Optional[str] = None
  tracking_number: Optional[str] = None
  courier_name: Optional[str] = None
  already_exists: bool = False
  error: Optional[str] = None
  attempts: List[CourierAttempt] = dataclasses.field(default_factory=list)


def _major_units(amount: int) -> float:
  return round(amount / 100, 2)


def shipment_weight_kg(order: db.Order) -> float:
  """Total parcel weight, 0.5 kg per unit when an item has no weight."""
  total = 0.0
  for item in order.items:
    per_unit = DEFAULT_ITEM_WEIGHT_KG
    if item.weight_grams:
      per_unit = item.weight_grams / 1000
    total += per_unit * item.quantity
  return round(total, 3) or DEFAULT_ITEM_WEIGHT_KG


def build_carrier_order(
    order: db.Order, pickup_location: str
) -> Dict[str, Any]:
  """Maps an order onto the carrier's order creation payload."""
  address = order.shipping_address or {}
  name = (address.get("name") or "").strip()
  first_name, _, last_name = name.partition(" ")
  created = order.created_at or datetime.datetime.now(
      datetime.timezone.utc
  ).isoformat()

  return {
      "order_id": order.order_number,
      "order_date": created[:10],
      "pickup_location": pickup_location,
      "billing_customer_name": first_name,
      "billing_last_name": last_name,
      "billing_address": address.get("line1") or "",
      "billing_address_2": address.get("line2") or "",
      "billing_city": address.get("city") or "",
      "billing_pincode": address.get("postal_code") or "",
      "billing_state": address.get("state") or "",
      "billing_country": address.get("country") or "India",
      "billing_email": order.email or address.get("email") or "",
      "billing_phone": address.get("phone") or "",
      "shipping_is_billing": True,
      "order_items": [
          {
              "name": item.name,
              "sku": item.sku or item.product_id,
              "units": item.quantity,
              "selling_price": _major_units(item.unit_price),
          }
          for item in order.items
      ],
      "payment_method": (
          "COD" if order.payment_method == PaymentMethod.COD.value
          else "Prepaid"
      ),
      "sub_total": _major_units(order.total),
      "weight": shipment_weight_kg(order),
      **PACKAGE_DIMENSIONS_CM,
  }


class FulfillmentService:
  """Creates carrier shipments for orders."""

  def __init__(
      self,
      transactions_session: AsyncSession,
      carrier_client: CarrierClient,
      pickup_location: str,
  ):
    self.transactions_session = transactions_session
    self.carrier_client = carrier_client
    self.pickup_location = pickup_location

  async def create_shipment(self, order_id: str) -> ShipmentResult:
    """Creates (or finishes creating) the shipment for an order.

    Args:
      order_id: The order to ship.

    Returns:
      The shipment outcome. Carrier failures are reported here rather than
      raised.

    Raises:
      NotFoundError: The order does not exist.
      ValidationError: The order is neither paid nor cash on delivery, or it
        is cancelled or returned.
    """
    order = await db.get_order(self.transactions_session, order_id)
    if not order:
      raise NotFoundError("Order not found")
    order_lifecycle.ensure_open(order, "shipped")
    if not order_lifecycle.is_payment_cleared(
        order.payment_status, order.payment_method
    ):
      raise ValidationError(
          "Order must be paid before it can be shipped", code="order_not_paid"
      )

    if order.carrier_shipment_id and order.tracking_number:
      logger.info(
          "Order %s already has shipment %s",
          order.id,
          order.carrier_shipment_id,
      )
      return ShipmentResult(
          success=True,
          order_id=order.id,
          carrier_order_id=order.carrier_order_id,
          carrier_shipment_id=order.carrier_shipment_id,
          tracking_number=order.tracking_number,
          courier_name=order.courier_name,
          already_exists=True,
      )

    result = ShipmentResult(success=False, order_id=order.id)
    try:
      await self._ship(order, result)
    except CarrierError as e:
      logger.error("Shipment for order %s failed: %s", order.id, e.message)
      result.error = e.message

    if not result.success:
      order.shipment_error = result.error
      order.updated_at = db.utcnow()
      await self.transactions_session.commit()
    return result

  async def _pickup_postcode(self) -> str:
    locations = await self.carrier_client.get_pickup_locations()
    for location in locations:
      if location.get("pickup_location") == self.pickup_location:
        postcode = location.get("pin_code")
        if not postcode:
          break
        return str(postcode)
    raise CarrierError(
        f"Pickup location '{self.pickup_location}' is not configured with"
        " the carrier",
        code="pickup_location_missing",
    )

  async def _ship(self, order: db.Order, result: ShipmentResult) -> None:
    pickup_postcode = await self._pickup_postcode()

    if order.carrier_shipment_id:
      logger.info(
          "Order %s has carrier shipment %s without an AWB, resuming courier"
          " assignment",
          order.id,
          order.carrier_shipment_id,
      )
    else:
      created = await self.carrier_client.create_order(
          build_carrier_order(order, self.pickup_location)
      )
      if not created.get("shipment_id"):
        raise CarrierError("Carrier did not return a shipment id")
      order.carrier_order_id = str(created.get("order_id") or "") or None
      order.carrier_shipment_id = str(created["shipment_id"])
      order.updated_at = db.utcnow()
      await self.transactions_session.commit()
      logger.info(
          "Created carrier shipment %s for order %s",
          order.carrier_shipment_id,
          order.id,
      )

    result.carrier_order_id = order.carrier_order_id
    result.carrier_shipment_id = order.carrier_shipment_id

    address = order.shipping_address or {}
    couriers = await self.carrier_client.get_couriers(
        pickup_postcode,
        str(address.get("postal_code") or ""),
        shipment_weight_kg(order),
        cod=order.payment_method == PaymentMethod.COD.value,
    )
    if not couriers:
      raise CarrierError(
          "No courier serves this delivery address", code="no_courier"
      )

    awb = await self._assign_courier(order, couriers, result)
    if not awb:
      result.error = (
          f"No courier could be assigned after {len(result.attempts)}"
          " attempts"
      )
      return

    order.tracking_number = awb
    order.courier_name = result.courier_name
    order.shipment_error = None
    order.updated_at = db.utcnow()
    await self.transactions_session.commit()

    result.success = True
    result.tracking_number = awb
    logger.info(
        "Order %s assigned AWB %s with %s", order.id, awb, result.courier_name
    )

  async def _assign_courier(
      self,
      order: db.Order,
      couriers: List[CourierOption],
      result: ShipmentResult,
  ) -> Optional[str]:
    for courier in sorted(couriers, key=lambda c: c.rate)[
        :MAX_COURIER_ATTEMPTS
    ]:
      attempt = CourierAttempt(
          courier_id=courier.courier_id,
          courier_name=courier.name,
          rate=courier.rate,
      )
      result.attempts.append(attempt)
      try:
        awb = await self.carrier_client.assign_awb(
            order.carrier_shipment_id, courier.courier_id
        )
      except CarrierError as e:
        logger.warning(
            "Courier %s declined shipment %s: %s",
            courier.name,
            order.carrier_shipment_id,
            e.message,
        )
        attempt.error = e.message
        continue
      result.courier_name = courier.name
      return awb
    return None
