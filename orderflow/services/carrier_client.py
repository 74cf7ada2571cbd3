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

"""HTTP client for the shipping carrier's API.

The carrier authenticates with a login token valid for 24 hours. Tokens are
kept in the secret store and renewed an hour before they expire, or at once
when the carrier answers 401.
"""

import dataclasses
import datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from orderflow.exceptions import CarrierError
from orderflow.services.secret_store import SecretStore

logger = logging.getLogger(__name__)

TOKEN_SECRET_NAME = "carrier_api_token"
TOKEN_TTL = datetime.timedelta(hours=24)
TOKEN_REFRESH_MARGIN = datetime.timedelta(hours=1)


@dataclasses.dataclass
class CourierOption:
  courier_id: str
  name: str
  rate: float


def _error_message(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return response.text or f"HTTP {response.status_code}"
  if isinstance(body, dict):
    for key in ("message", "error"):
      if body.get(key):
        return str(body[key])
    if body.get("errors"):
      return str(body["errors"])
  return f"HTTP {response.status_code}"


class CarrierClient:
  """Talks to the carrier on behalf of one store."""

  def __init__(
      self,
      base_url: str,
      email: Optional[str],
      password: Optional[str],
      secret_store: SecretStore,
      tenant_id: str = "default",
      timeout: float = 15.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.base_url = base_url.rstrip("/")
    self.email = email
    self.password = password
    self.secret_store = secret_store
    self.tenant_id = tenant_id
    self.timeout = timeout
    self.transport = transport

  async def _send(
      self,
      method: str,
      path: str,
      token: Optional[str] = None,
      json: Optional[Dict[str, Any]] = None,
      params: Optional[Dict[str, Any]] = None,
  ) -> httpx.Response:
    headers = {"Authorization": f"Bearer {token}"} if token else None
    try:
      async with httpx.AsyncClient(
          timeout=self.timeout, transport=self.transport
      ) as client:
        return await client.request(
            method,
            f"{self.base_url}/{path}",
            json=json,
            params=params,
            headers=headers,
        )
    except httpx.TimeoutException as e:
      raise CarrierError(
          f"Carrier {path} timed out", code="carrier_timeout"
      ) from e
    except httpx.HTTPError as e:
      raise CarrierError(
          f"Carrier {path} failed: {e}", code="carrier_unavailable"
      ) from e

  async def _login(self) -> Tuple[str, datetime.timedelta]:
    if not self.email or not self.password:
      raise CarrierError(
          "Carrier credentials are not configured",
          code="carrier_not_configured",
      )
    response = await self._send(
        "POST",
        "auth/login",
        json={"email": self.email, "password": self.password},
    )
    if response.status_code >= 400:
      raise CarrierError(
          f"Carrier login failed: {_error_message(response)}",
          code="carrier_auth_failed",
      )
    token = response.json().get("token")
    if not token:
      raise CarrierError(
          "Carrier login returned no token", code="carrier_auth_failed"
      )
    logger.info("Obtained new carrier token for %s", self.tenant_id)
    return token, TOKEN_TTL

  async def _token(self) -> str:
    return await self.secret_store.get_or_refresh(
        self.tenant_id,
        TOKEN_SECRET_NAME,
        self._login,
        refresh_margin=TOKEN_REFRESH_MARGIN,
    )

  async def _request(
      self,
      method: str,
      path: str,
      json: Optional[Dict[str, Any]] = None,
      params: Optional[Dict[str, Any]] = None,
  ) -> Dict[str, Any]:
    response = await self._send(
        method, path, await self._token(), json=json, params=params
    )
    if response.status_code == 401:
      logger.warning("Carrier rejected cached token, logging in again")
      await self.secret_store.invalidate(self.tenant_id, TOKEN_SECRET_NAME)
      response = await self._send(
          method, path, await self._token(), json=json, params=params
      )

    if response.status_code >= 400:
      raise CarrierError(
          f"Carrier {path} returned {response.status_code}:"
          f" {_error_message(response)}"
      )
    try:
      return response.json()
    except ValueError as e:
      raise CarrierError(f"Carrier {path} returned invalid JSON") from e

  async def get_pickup_locations(self) -> List[Dict[str, Any]]:
    data = await self._request("GET", "settings/company/pickup")
    return (data.get("data") or {}).get("shipping_address") or []

  async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Creates a carrier order; the answer carries `order_id`/`shipment_id`."""
    data = await self._request("POST", "orders/create/adhoc", json=payload)
    return data.get("payload") or data

  async def get_couriers(
      self,
      pickup_postcode: str,
      delivery_postcode: str,
      weight_kg: float,
      cod: bool,
  ) -> List[CourierOption]:
    """Lists couriers serving a route, cheapest first."""
    data = await self._request(
        "GET",
        "courier/serviceability/",
        params={
            "pickup_postcode": pickup_postcode,
            "delivery_postcode": delivery_postcode,
            "weight": weight_kg,
            "cod": 1 if cod else 0,
        },
    )
    companies = (data.get("data") or {}).get("available_courier_companies")
    options = [
        CourierOption(
            courier_id=str(company.get("courier_company_id")),
            name=company.get("courier_name") or "",
            rate=float(company.get("rate") or 0),
        )
        for company in companies or []
        if company.get("courier_company_id") is not None
    ]
    return sorted(options, key=lambda option: option.rate)

  async def assign_awb(self, shipment_id: str, courier_id: str) -> str:
    """Asks a courier to take a shipment and returns the AWB code."""
    data = await self._request(
        "POST",
        "courier/assign/awb",
        json={"shipment_id": shipment_id, "courier_id": courier_id},
    )
    awb = ((data.get("response") or {}).get("data") or {}).get("awb_code")
    if not awb:
      raise CarrierError(
          data.get("message") or f"Courier {courier_id} assigned no AWB",
          code="awb_not_assigned",
      )
    return str(awb)
