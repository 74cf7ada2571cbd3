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

"""Checkout service for turning carts into orders.

This module provides the `CheckoutService` class, which encapsulates the
business logic for creating orders from a shopper's cart, reading them back
and cancelling them on an operator's request.

Key responsibilities include:
- Pricing every line from the catalog; client prices are never trusted.
- Applying coupons and redeeming them atomically with the order insert.
- Computing tax and shipping server side.
- Replay protection through an optional idempotency key.
"""

import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional
import uuid

from orderflow import db
from orderflow.enums import OrderStatus
from orderflow.enums import PaymentStatus
from orderflow.exceptions import IdempotencyConflictError
from orderflow.exceptions import NotFoundError
from orderflow.exceptions import ValidationError
from orderflow.models import Address
from orderflow.models import CheckoutRequest
from orderflow.models import OrderResponse
from orderflow.services import order_lifecycle
from orderflow.services import pricing
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_REQUIRED_ADDRESS_FIELDS = ("line1", "city", "postal_code")


def generate_order_number() -> str:
  return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


class CheckoutService:
  """Service for creating and managing orders."""

  def __init__(
      self,
      products_session: AsyncSession,
      transactions_session: AsyncSession,
      tracking_url_template: Optional[str] = None,
  ):
    self.products_session = products_session
    self.transactions_session = transactions_session
    self.tracking_url_template = tracking_url_template

  def _compute_hash(self, data: Any) -> str:
    """Computes SHA256 hash of the JSON-serialized data."""
    if isinstance(data, BaseModel):
      json_str = json.dumps(data.model_dump(mode="json"), sort_keys=True)
    else:
      json_str = json.dumps(data, sort_keys=True)
    return hashlib.sha256(json_str.encode("utf-8")).hexdigest()

  def _validate_address(self, address: Optional[Address]) -> Address:
    missing = [
        field
        for field in _REQUIRED_ADDRESS_FIELDS
        if not address or not getattr(address, field)
    ]
    if missing:
      raise ValidationError(
          f"Shipping address is missing {', '.join(missing)}",
          code="missing_address",
      )
    return address

  async def create_order(
      self,
      request: CheckoutRequest,
      idempotency_key: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Creates a pending order from a cart.

    Args:
      request: The cart, addresses, coupon and chosen methods.
      idempotency_key: Optional client key. Replaying the same request with
        the same key returns the original response.

    Returns:
      The checkout response body.

    Raises:
      ValidationError: The cart is empty, the address is incomplete, or a
        line references an unknown product or a bad quantity.
      IdempotencyConflictError: The key was used for a different request.
    """
    logger.info("Creating order")

    request_hash = self._compute_hash(request)
    if idempotency_key:
      existing_record = await db.get_idempotency_record(
          self.transactions_session, idempotency_key
      )
      if existing_record:
        if existing_record.request_hash != request_hash:
          raise IdempotencyConflictError(
              "Idempotency key reused with different parameters"
          )
        return existing_record.response_body

    if not request.items:
      raise ValidationError("Cart is empty", code="empty_cart")
    address = self._validate_address(request.shipping_address)

    lines = await pricing.validate_line_items(
        self.products_session, request.items
    )

    coupon = None
    coupon_message = None
    if request.coupon_code:
      coupon = await db.get_coupon(
          self.transactions_session, request.coupon_code.strip()
      )
      if not coupon:
        logger.warning("Unknown coupon %s", request.coupon_code)
        coupon_message = "Coupon not found"

    quote = pricing.quote(
        lines, request.shipping_method, address.country, coupon
    )
    coupon_message = quote.coupon_rejection or coupon_message

    if quote.coupon_code:
      redeemed = await db.redeem_coupon(
          self.transactions_session, quote.coupon_code
      )
      if not redeemed:
        logger.warning(
            "Coupon %s ran out before redemption, pricing without it",
            quote.coupon_code,
        )
        quote = pricing.quote(lines, request.shipping_method, address.country)
        coupon_message = "Coupon usage limit reached"

    now = db.utcnow()
    order = db.Order(
        id=str(uuid.uuid4()),
        order_number=generate_order_number(),
        user_id=request.user_id,
        email=request.email or address.email,
        currency=request.currency,
        subtotal=quote.subtotal,
        discount=quote.discount,
        shipping_cost=quote.shipping_cost,
        tax=quote.tax,
        total=quote.total,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=request.payment_method.value,
        shipping_method=quote.shipping_method,
        shipping_address=address.model_dump(mode="json"),
        billing_address=(
            request.billing_address.model_dump(mode="json")
            if request.billing_address
            else None
        ),
        coupon_code=quote.coupon_code,
        created_at=now,
        updated_at=now,
        items=[
            db.OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                name=line.name,
                sku=line.sku,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line.total,
                weight_grams=line.weight_grams,
            )
            for line in quote.lines
        ],
    )
    self.transactions_session.add(order)

    response_body = {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "coupon_applied": quote.coupon_code is not None,
        "coupon_message": coupon_message,
        "totals": quote.as_totals(),
    }

    if idempotency_key:
      await db.save_idempotency_record(
          self.transactions_session,
          idempotency_key,
          request_hash,
          201,  # Created
          response_body,
      )

    await self.transactions_session.commit()
    logger.info(
        "Created order %s (%s) total %s",
        order.id,
        order.order_number,
        order.total,
    )
    return response_body

  def _serialize(self, order: db.Order) -> Dict[str, Any]:
    response = OrderResponse.model_validate(order)
    if response.tracking_number and self.tracking_url_template:
      response.tracking_url = self.tracking_url_template.format(
          tracking_number=response.tracking_number
      )
    return response.model_dump(mode="json")

  async def get_order(self, order_id: str) -> Dict[str, Any]:
    """Retrieves an order with its items."""
    order = await db.get_order(self.transactions_session, order_id)
    if not order:
      raise NotFoundError("Order not found")
    return self._serialize(order)

  async def cancel_order(
      self, order_id: str, reason: Optional[str] = None
  ) -> Dict[str, Any]:
    """Cancels a non-terminal order. Payment state is left untouched."""
    order = await db.get_order(self.transactions_session, order_id)
    if not order:
      raise NotFoundError("Order not found")

    if not order_lifecycle.can_transition(
        OrderStatus(order.status), OrderStatus.CANCELLED
    ):
      raise ValidationError(
          f"Order in status {order.status} cannot be cancelled",
          code="invalid_transition",
      )

    applied = await db.apply_order_update(
        self.transactions_session,
        order.id,
        expected_status=order.status,
        status=OrderStatus.CANCELLED.value,
    )
    await self.transactions_session.commit()
    if not applied:
      raise ValidationError(
          "Order changed while cancelling, please retry",
          code="concurrent_update",
      )
    logger.info("Cancelled order %s: %s", order.id, reason or "no reason given")

    order = await db.get_order(self.transactions_session, order_id)
    return self._serialize(order)

