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

"""HTTP client for the payment gateway's orders API."""

import logging
from typing import Any, Dict, Optional

import httpx
from orderflow.exceptions import GatewayTimeoutError
from orderflow.exceptions import GatewayUnavailableError
from orderflow.exceptions import InternalError
from orderflow.exceptions import PaymentRejectedError

logger = logging.getLogger(__name__)

# The gateway limits receipts to 40 characters.
MAX_RECEIPT_LENGTH = 40


def _error_description(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return response.text or f"HTTP {response.status_code}"
  error = body.get("error") if isinstance(body, dict) else None
  if isinstance(error, dict) and error.get("description"):
    return error["description"]
  return f"HTTP {response.status_code}"


class GatewayClient:
  """Creates payment orders with the gateway.

  Every call is bounded by `timeout`. Timeouts, network errors and 5xx
  responses are reported as retryable gateway errors; 4xx responses carry the
  gateway's own description as a `PaymentRejectedError`.
  """

  def __init__(
      self,
      base_url: str,
      key_id: Optional[str],
      key_secret: Optional[str],
      timeout: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.base_url = base_url.rstrip("/")
    self.key_id = key_id
    self.key_secret = key_secret
    self.timeout = timeout
    self.transport = transport

  async def create_order(
      self,
      amount: int,
      currency: str,
      receipt: str,
      notes: Optional[Dict[str, Any]] = None,
  ) -> Dict[str, Any]:
    """Creates a gateway order for `amount` minor units.

    Returns:
      The gateway's order object; its `id` identifies the payment intent.
    """
    if not self.key_id or not self.key_secret:
      raise InternalError("Payment gateway credentials are not configured")

    payload = {
        "amount": amount,
        "currency": currency,
        "receipt": receipt[:MAX_RECEIPT_LENGTH],
        "notes": notes or {},
        "payment_capture": 1,
    }

    try:
      async with httpx.AsyncClient(
          auth=(self.key_id, self.key_secret),
          timeout=self.timeout,
          transport=self.transport,
      ) as client:
        response = await client.post(f"{self.base_url}/orders", json=payload)
    except httpx.TimeoutException as e:
      logger.error("Payment gateway timed out for receipt %s", receipt)
      raise GatewayTimeoutError(
          f"Payment gateway timed out after {self.timeout}s"
      ) from e
    except httpx.HTTPError as e:
      logger.error("Payment gateway unreachable for receipt %s: %s", receipt, e)
      raise GatewayUnavailableError(
          f"Payment gateway request failed: {e}"
      ) from e

    if response.status_code >= 500:
      logger.error(
          "Payment gateway returned %s for receipt %s",
          response.status_code,
          receipt,
      )
      raise GatewayUnavailableError(
          f"Payment gateway returned {response.status_code}"
      )
    if response.status_code >= 400:
      description = _error_description(response)
      logger.error(
          "Payment gateway rejected receipt %s: %s", receipt, description
      )
      raise PaymentRejectedError(description)

    data = response.json()
    if not data.get("id"):
      raise GatewayUnavailableError("Payment gateway response had no order id")
    return data
