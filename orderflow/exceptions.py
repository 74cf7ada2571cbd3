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

"""Custom exceptions for the order fulfillment service.

Every error carries a machine readable ``code`` and the HTTP status used when
it reaches a client. ``public_message`` is what the client sees; gateway,
carrier and internal failures hide provider details behind a generic message
while the full ``message`` is logged.
"""

_GENERIC_PAYMENT_MESSAGE = (
    "Payment could not be completed, please try again."
)
_GENERIC_SHIPPING_MESSAGE = (
    "Shipment could not be created right now, please try again later."
)
_GENERIC_INTERNAL_MESSAGE = "Something went wrong, please try again."


class OrderflowError(Exception):
  """Base class for all service exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)

  @property
  def public_message(self) -> str:
    return self.message


class ValidationError(OrderflowError):
  """Raised when the request is invalid and the caller can correct it."""

  def __init__(self, message: str, code: str = "invalid_request"):
    super().__init__(message, code=code, status_code=400)


class InvalidAmountError(ValidationError):
  """Raised when a payment amount is below the gateway minimum."""

  def __init__(self, message: str):
    super().__init__(message, code="invalid_amount")


class NotFoundError(OrderflowError):
  """Raised when an order, coupon or product does not exist."""

  def __init__(self, message: str):
    super().__init__(message, code="not_found", status_code=404)


class IdempotencyConflictError(OrderflowError):
  """Raised when an idempotency key is reused with different parameters."""

  def __init__(self, message: str):
    super().__init__(message, code="idempotency_conflict", status_code=409)


class GatewayError(OrderflowError):
  """Base class for payment gateway failures."""

  def __init__(
      self, message: str, code: str = "gateway_error", status_code: int = 502
  ):
    super().__init__(message, code=code, status_code=status_code)

  @property
  def public_message(self) -> str:
    return _GENERIC_PAYMENT_MESSAGE


class GatewayTimeoutError(GatewayError):
  """Raised when the gateway does not answer within the timeout."""

  def __init__(self, message: str):
    super().__init__(message, code="gateway_timeout", status_code=504)


class GatewayUnavailableError(GatewayError):
  """Raised on network errors and gateway 5xx responses."""

  def __init__(self, message: str):
    super().__init__(message, code="gateway_unavailable", status_code=502)


class PaymentRejectedError(GatewayError):
  """Raised when the gateway refuses a request for a business reason."""

  def __init__(self, message: str):
    super().__init__(message, code="payment_rejected", status_code=400)

  @property
  def public_message(self) -> str:
    return self.message


class InvalidSignatureError(GatewayError):
  """Raised when a payment signature does not match. Never retried."""

  def __init__(self, message: str = "Invalid payment signature"):
    super().__init__(message, code="invalid_signature", status_code=400)

  @property
  def public_message(self) -> str:
    return "Invalid payment signature. Payment verification failed."


class CarrierError(OrderflowError):
  """Raised when the shipping carrier rejects or cannot serve a request."""

  def __init__(self, message: str, code: str = "carrier_error"):
    super().__init__(message, code=code, status_code=502)

  @property
  def public_message(self) -> str:
    return _GENERIC_SHIPPING_MESSAGE


class InternalError(OrderflowError):
  """Raised for unexpected failures and missing configuration."""

  def __init__(self, message: str):
    super().__init__(message, code="internal_error", status_code=500)

  @property
  def public_message(self) -> str:
    return _GENERIC_INTERNAL_MESSAGE
