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

"""Server-side pricing: catalog prices, coupons, tax and shipping.

Every amount handled here is an integer number of minor currency units. The
client's own price for a line item is never trusted; it is only compared with
the catalog to flag tampering.
"""

import dataclasses
import datetime
import decimal
import logging
from typing import Iterable, List, Optional

from orderflow import db
from orderflow.enums import DiscountType
from orderflow.exceptions import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

TAX_RATES = {
    "US": decimal.Decimal("0.08"),
    "GB": decimal.Decimal("0.20"),
    "IN": decimal.Decimal("0.05"),
    "AE": decimal.Decimal("0"),
    "EU": decimal.Decimal("0.19"),
}
DEFAULT_TAX_RATE = decimal.Decimal("0.05")

SHIPPING_COSTS = {
    "standard": 0,
    "express": 1000,
    "overnight": 2500,
}
DEFAULT_SHIPPING_METHOD = "standard"


@dataclasses.dataclass
class PricedLine:
  """A cart line priced from the catalog."""

  product_id: str
  name: str
  quantity: int
  unit_price: int
  sku: Optional[str] = None
  variant_id: Optional[str] = None
  weight_grams: int = 500

  @property
  def total(self) -> int:
    return self.unit_price * self.quantity


@dataclasses.dataclass
class CouponEvaluation:
  accepted: bool
  discount: int = 0
  reason: Optional[str] = None


@dataclasses.dataclass
class PriceQuote:
  """Authoritative totals for a cart."""

  lines: List[PricedLine]
  subtotal: int
  discount: int
  shipping_method: str
  shipping_cost: int
  tax: int
  coupon_code: Optional[str] = None
  coupon_rejection: Optional[str] = None

  @property
  def total(self) -> int:
    return self.subtotal - self.discount + self.shipping_cost + self.tax

  def as_totals(self) -> dict:
    return {
        "subtotal": self.subtotal,
        "discount": self.discount,
        "shipping": self.shipping_cost,
        "tax": self.tax,
        "total": self.total,
    }


def round_half_up(value: decimal.Decimal) -> int:
  """Rounds to a whole minor unit, halves away from zero."""
  return int(
      value.quantize(decimal.Decimal("1"), rounding=decimal.ROUND_HALF_UP)
  )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
  if not value:
    return None
  parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.timezone.utc)
  return parsed


async def validate_line_items(
    products_session: AsyncSession, items: Iterable
) -> List[PricedLine]:
  """Prices cart lines from the catalog.

  Args:
    products_session: The products database session.
    items: Cart lines with `product_id`, `quantity` and optionally
      `variant_id` and a client supplied `price`.

  Returns:
    The priced lines, in request order.

  Raises:
    ValidationError: A product is unknown or a quantity is below one.
  """
  items = list(items)
  products = await db.get_products(
      products_session, [item.product_id for item in items]
  )

  lines = []
  for item in items:
    if item.quantity < 1:
      raise ValidationError(
          f"Quantity for {item.product_id} must be at least 1",
          code="invalid_quantity",
      )
    product = products.get(item.product_id)
    if not product:
      raise ValidationError(
          f"Product {item.product_id} not found", code="unknown_product"
      )

    client_price = getattr(item, "price", None)
    if client_price is not None and client_price != product.price:
      logger.warning(
          "Client price %s for product %s differs from catalog price %s",
          client_price,
          product.id,
          product.price,
      )

    lines.append(
        PricedLine(
            product_id=product.id,
            name=product.title,
            quantity=item.quantity,
            unit_price=product.price,
            sku=product.sku,
            variant_id=getattr(item, "variant_id", None),
            weight_grams=product.weight_grams or 500,
        )
    )
  return lines


def evaluate_coupon(
    coupon: Optional[db.Coupon],
    subtotal: int,
    now: Optional[datetime.datetime] = None,
) -> CouponEvaluation:
  """Decides whether a coupon applies to a subtotal and what it is worth."""
  if coupon is None:
    return CouponEvaluation(False, reason="Coupon not found")
  if not coupon.is_active:
    return CouponEvaluation(False, reason="Coupon is not active")

  now = now or datetime.datetime.now(datetime.timezone.utc)
  start = _parse_timestamp(coupon.start_date)
  end = _parse_timestamp(coupon.end_date)
  if start and now < start:
    return CouponEvaluation(False, reason="Coupon is not yet valid")
  if end and now > end:
    return CouponEvaluation(False, reason="Coupon has expired")

  if (
      coupon.usage_limit is not None
      and (coupon.usage_count or 0) >= coupon.usage_limit
  ):
    return CouponEvaluation(False, reason="Coupon usage limit reached")
  if coupon.min_cart_value is not None and subtotal < coupon.min_cart_value:
    return CouponEvaluation(
        False, reason="Cart value is below the coupon minimum"
    )

  if coupon.discount_type == DiscountType.PERCENTAGE.value:
    discount = round_half_up(
        decimal.Decimal(subtotal) * decimal.Decimal(coupon.value) / 100
    )
    if coupon.max_discount is not None:
      discount = min(discount, coupon.max_discount)
  else:
    discount = coupon.value or 0

  return CouponEvaluation(True, discount=max(0, min(discount, subtotal)))


def calculate_tax(taxable: int, country: Optional[str]) -> int:
  rate = TAX_RATES.get((country or "").upper(), DEFAULT_TAX_RATE)
  return round_half_up(decimal.Decimal(max(taxable, 0)) * rate)


def shipping_cost(method: Optional[str]) -> tuple:
  """Returns `(method, cost)`, unknown methods priced as standard."""
  if method not in SHIPPING_COSTS:
    method = DEFAULT_SHIPPING_METHOD
  return method, SHIPPING_COSTS[method]


def quote(
    lines: List[PricedLine],
    shipping_method: Optional[str],
    country: Optional[str],
    coupon: Optional[db.Coupon] = None,
    now: Optional[datetime.datetime] = None,
) -> PriceQuote:
  """Computes the order totals for priced lines.

  A coupon that does not evaluate as accepted contributes no discount.
  """
  subtotal = sum(line.total for line in lines)
  discount = 0
  coupon_code = None
  coupon_rejection = None
  if coupon is not None:
    evaluation = evaluate_coupon(coupon, subtotal, now)
    if evaluation.accepted:
      discount = evaluation.discount
      coupon_code = coupon.code
    else:
      coupon_rejection = evaluation.reason
      logger.warning("Coupon %s rejected: %s", coupon.code, evaluation.reason)

  method, cost = shipping_cost(shipping_method)
  return PriceQuote(
      lines=lines,
      subtotal=subtotal,
      discount=discount,
      shipping_method=method,
      shipping_cost=cost,
      tax=calculate_tax(subtotal - discount, country),
      coupon_code=coupon_code,
      coupon_rejection=coupon_rejection,
  )
