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

"""Enumerations for the order fulfillment service.

This module defines the enums used throughout the server application to
represent order lifecycle state, payment state and coupon semantics.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  PROCESSING = "processing"
  SHIPPED = "shipped"
  DELIVERED = "delivered"
  RETURN_REQUESTED = "return_requested"
  RETURNED = "returned"
  CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"


class PaymentMethod(str, enum.Enum):
  CARD = "card"
  UPI = "upi"
  WALLET = "wallet"
  COD = "cod"


class DiscountType(str, enum.Enum):
  PERCENTAGE = "percentage"
  FIXED = "fixed"


class WebhookSource(str, enum.Enum):
  PAYMENT = "payment"
  CARRIER = "carrier"


class NotificationEvent(str, enum.Enum):
  ORDER_CONFIRMED = "order_confirmed"
  ORDER_SHIPPED = "order_shipped"
  ORDER_DELIVERED = "order_delivered"
  ORDER_CANCELLED = "order_cancelled"
