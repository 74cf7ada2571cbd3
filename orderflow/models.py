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

"""Request and response models for the order service REST API."""

import decimal
from typing import Any, Dict, List, Optional

from orderflow.enums import PaymentMethod
from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class Address(BaseModel):
  """A postal address. Completeness is checked by the checkout service."""

  name: Optional[str] = None
  email: Optional[str] = None
  phone: Optional[str] = None
  line1: Optional[str] = None
  line2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  postal_code: Optional[str] = None
  country: Optional[str] = None


class CheckoutItem(BaseModel):
  product_id: str
  variant_id: Optional[str] = None
  quantity: int = 1
  # Client side price in minor units. Only used to detect tampering.
  price: Optional[int] = None


class CheckoutRequest(BaseModel):
  """Create-order request built from the shopper's cart."""

  items: List[CheckoutItem] = []
  email: Optional[str] = None
  user_id: Optional[str] = None
  shipping_address: Optional[Address] = None
  billing_address: Optional[Address] = None
  coupon_code: Optional[str] = None
  shipping_method: str = "standard"
  payment_method: PaymentMethod = PaymentMethod.CARD
  currency: str = "INR"


class Totals(BaseModel):
  subtotal: int
  discount: int
  shipping: int
  tax: int
  total: int


class CheckoutResponse(BaseModel):
  order_id: str
  order_number: str
  status: str
  coupon_applied: bool
  coupon_message: Optional[str] = None
  totals: Totals


class PaymentIntentRequest(BaseModel):
  order_id: str
  # Major currency units, as shown to the shopper.
  amount: decimal.Decimal


class PaymentIntentResponse(BaseModel):
  gateway_order_id: str
  key_id: Optional[str] = None
  amount: int
  currency: str


class VerifyPaymentRequest(BaseModel):
  """Client callback after the gateway's checkout widget reports success."""

  gateway_order_id: str = Field(
      validation_alias=AliasChoices("gateway_order_id", "razorpay_order_id")
  )
  gateway_payment_id: str = Field(
      validation_alias=AliasChoices(
          "gateway_payment_id", "razorpay_payment_id"
      )
  )
  signature: str = Field(
      validation_alias=AliasChoices("signature", "razorpay_signature")
  )
  order_id: str


class VerifyPaymentResponse(BaseModel):
  success: bool
  message: str
  payment_id: Optional[str] = None


class WebhookAck(BaseModel):
  received: bool = True
  processed: bool = False
  message: Optional[str] = None


class OrderItemResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  product_id: str
  variant_id: Optional[str] = None
  name: Optional[str] = None
  sku: Optional[str] = None
  quantity: int
  unit_price: int
  total: int


class OrderResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  order_number: str
  email: Optional[str] = None
  currency: str
  subtotal: int
  discount: int
  shipping_cost: int
  tax: int
  total: int
  status: str
  payment_status: str
  payment_method: str
  shipping_method: Optional[str] = None
  shipping_address: Optional[Dict[str, Any]] = None
  coupon_code: Optional[str] = None
  gateway_order_id: Optional[str] = None
  carrier_shipment_id: Optional[str] = None
  tracking_number: Optional[str] = None
  tracking_url: Optional[str] = None
  courier_name: Optional[str] = None
  shipment_error: Optional[str] = None
  created_at: Optional[str] = None
  updated_at: Optional[str] = None
  items: List[OrderItemResponse] = []


class CourierAttemptResponse(BaseModel):
  courier_id: Optional[str] = None
  courier_name: Optional[str] = None
  rate: Optional[float] = None
  error: Optional[str] = None


class ShipmentResponse(BaseModel):
  success: bool
  order_id: str
  carrier_order_id: Optional[str] = None
  carrier_shipment_id: Optional[str] = None
  tracking_number: Optional[str] = None
  courier_name: Optional[str] = None
  already_exists: bool = False
  error: Optional[str] = None
  attempts: List[CourierAttemptResponse] = []


class CancelOrderRequest(BaseModel):
  reason: Optional[str] = None
