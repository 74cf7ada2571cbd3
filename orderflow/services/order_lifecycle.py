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

"""Order lifecycle state machine and carrier status vocabulary.

Order statuses are ranked; a status may only move forward. `returned` and
`cancelled` end the lifecycle. Carrier webhooks arrive out of order and are
redelivered, so every carrier event is reconciled against the stored order
rather than applied blindly.
"""

import dataclasses
import logging
import re
from typing import Optional

from orderflow.enums import OrderStatus
from orderflow.enums import PaymentMethod
from orderflow.enums import PaymentStatus
from orderflow.exceptions import ValidationError

logger = logging.getLogger(__name__)

STATUS_RANKS = {
    OrderStatus.PENDING: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3,
    OrderStatus.RETURN_REQUESTED: 4,
    OrderStatus.RETURNED: 5,
    OrderStatus.CANCELLED: 6,
}

TERMINAL_STATUSES = frozenset({OrderStatus.RETURNED, OrderStatus.CANCELLED})

_SHIPPED_STATUSES = (
    "DISPATCHED",
    "DISPATCHED_FROM_ORIGIN",
    "IN_TRANSIT",
    "PICKED_UP",
    "PICKUP_SCHEDULED",
    "SHIPPED",
    "OUT_FOR_DELIVERY",
    "MANIFEST_GENERATED",
    "RTO_INITIATED",
)
_RETURN_REQUESTED_STATUSES = (
    "RETURN_REQUESTED",
    "RETURN_INITIATED",
    "RETURN_PICKED_UP",
)
_RETURNED_STATUSES = ("RETURNED", "RETURN_DELIVERED", "RTO_DELIVERED")

CARRIER_STATUS_MAP = {
    **{status: OrderStatus.SHIPPED for status in _SHIPPED_STATUSES},
    "DELIVERED": OrderStatus.DELIVERED,
    **{
        status: OrderStatus.RETURN_REQUESTED
        for status in _RETURN_REQUESTED_STATUSES
    },
    **{status: OrderStatus.RETURNED for status in _RETURNED_STATUSES},
}

_WHITESPACE = re.compile(r"\s+")


def normalize_carrier_status(raw: Optional[str]) -> Optional[str]:
  """Upper-cases a carrier status and joins its words with underscores."""
  if raw is None:
    return None
  normalized = _WHITESPACE.sub("_", str(raw).strip().upper())
  return normalized or None


def map_carrier_status(raw: Optional[str]) -> Optional[OrderStatus]:
  """Maps a raw carrier status to an order status, None if unmapped."""
  normalized = normalize_carrier_status(raw)
  if not normalized:
    return None
  return CARRIER_STATUS_MAP.get(normalized)


def is_terminal(status: str) -> bool:
  return OrderStatus(status) in TERMINAL_STATUSES


def ensure_open(order, action: str) -> None:
  """Raises if `order` has reached a terminal status.

  Raises:
    ValidationError: The order is cancelled or returned.
  """
  if is_terminal(order.status):
    raise ValidationError(
        f"Order is {order.status} and cannot be {action}",
        code="order_cancelled",
    )


def is_payment_cleared(payment_status: str, payment_method: str) -> bool:
  return (
      payment_status == PaymentStatus.PAID.value
      or payment_method == PaymentMethod.COD.value
  )


def can_transition(
    current: OrderStatus, target: OrderStatus, payment_cleared: bool = True
) -> bool:
  """Returns whether an order may move from `current` to `target`.

  Args:
    current: The stored status.
    target: The requested status.
    payment_cleared: Whether the order is paid or cash on delivery. Orders
      may only leave `pending` for a fulfillment status once cleared.
  """
  current = OrderStatus(current)
  target = OrderStatus(target)
  if current in TERMINAL_STATUSES:
    return False
  if target == OrderStatus.CANCELLED:
    return True
  if STATUS_RANKS[target] <= STATUS_RANKS[current]:
    return False
  if current == OrderStatus.PENDING and not payment_cleared:
    return False
  return True


@dataclasses.dataclass
class TransitionDecision:
  """What a carrier event is allowed to change on an order."""

  status: Optional[OrderStatus] = None
  tracking_number: Optional[str] = None
  reason: Optional[str] = None

  @property
  def has_changes(self) -> bool:
    return self.status is not None or self.tracking_number is not None


def reconcile(
    order, target: OrderStatus, tracking_number: Optional[str] = None
) -> TransitionDecision:
  """Decides how a carrier event for `target` applies to `order`.

  A forward transition also records the event's tracking number if the order
  has none. An event for a stage the order has already reached can still
  supply a missing tracking number, as long as the order is not terminal.
  Anything else is rejected with a reason.
  """
  current = OrderStatus(order.status)
  missing_tracking = tracking_number if not order.tracking_number else None
  cleared = is_payment_cleared(order.payment_status, order.payment_method)

  if can_transition(current, target, cleared):
    return TransitionDecision(status=target, tracking_number=missing_tracking)

  if (
      current not in TERMINAL_STATUSES
      and STATUS_RANKS[current] >= STATUS_RANKS[target]
      and missing_tracking
  ):
    return TransitionDecision(
        tracking_number=missing_tracking,
        reason=f"Order already {current.value}; recorded tracking number",
    )

  if current == OrderStatus.PENDING and not cleared:
    reason = "Order payment is not cleared"
  elif current == target:
    reason = f"Order already {current.value}"
  else:
    reason = f"Cannot move order from {current.value} to {target.value}"
  return TransitionDecision(reason=reason)
