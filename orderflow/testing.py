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

"""Test helpers: throw-away databases and fake provider APIs.

The fakes answer the same HTTP calls the real payment gateway, carrier and
notification relay do, through `httpx.MockTransport`, so the real clients
run unchanged in tests.
"""

import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional
import uuid

from cryptography.fernet import Fernet
import httpx
from orderflow import config
from orderflow import db
from orderflow import signatures
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

GATEWAY_BASE_URL = "https://gateway.test/v1"
CARRIER_BASE_URL = "https://carrier.test/v1/external"
NOTIFICATION_URL = "https://relay.test/notify"

GATEWAY_KEY_ID = "rzp_test_key"
GATEWAY_KEY_SECRET = "gateway-key-secret"
GATEWAY_WEBHOOK_SECRET = "gateway-webhook-secret"
CARRIER_WEBHOOK_SECRET = "carrier-webhook-secret"
ADMIN_SECRET = "admin-secret"


def make_settings(**overrides: Any) -> config.Settings:
  """Settings pointing at the fake providers."""
  values = dict(
      secret_store_key=Fernet.generate_key().decode(),
      gateway_base_url=GATEWAY_BASE_URL,
      gateway_key_id=GATEWAY_KEY_ID,
      gateway_key_secret=GATEWAY_KEY_SECRET,
      gateway_webhook_secret=GATEWAY_WEBHOOK_SECRET,
      carrier_base_url=CARRIER_BASE_URL,
      carrier_email="ops@example.com",
      carrier_password="carrier-password",
      carrier_webhook_secret=CARRIER_WEBHOOK_SECRET,
      pickup_location="Primary",
      notification_webhook_url=NOTIFICATION_URL,
      admin_secret=ADMIN_SECRET,
  )
  values.update(overrides)
  return config.Settings(**values)


def payment_signature(gateway_order_id: str, gateway_payment_id: str) -> str:
  return signatures.hmac_sha256_hex(
      GATEWAY_KEY_SECRET,
      signatures.payment_signature_payload(
          gateway_order_id, gateway_payment_id
      ),
  )


class TestDatabase:
  """Products and transactions databases in a temporary directory."""

  def __init__(self):
    self.test_dir = tempfile.mkdtemp()
    products_path = os.path.join(self.test_dir, "test_products.db")
    transactions_path = os.path.join(self.test_dir, "test_transactions.db")

    # Connections are not pooled so each event loop opens its own.
    self.products_engine = create_async_engine(
        f"sqlite+aiosqlite:///{products_path}", poolclass=NullPool
    )
    self.transactions_engine = create_async_engine(
        f"sqlite+aiosqlite:///{transactions_path}", poolclass=NullPool
    )
    self.products_session_factory = sessionmaker(
        self.products_engine, expire_on_commit=False, class_=AsyncSession
    )
    self.transactions_session_factory = sessionmaker(
        self.transactions_engine, expire_on_commit=False, class_=AsyncSession
    )

  async def create(self) -> None:
    async with self.products_engine.begin() as conn:
      await conn.run_sync(db.ProductBase.metadata.create_all)
    async with self.transactions_engine.begin() as conn:
      await conn.run_sync(db.TransactionBase.metadata.create_all)

  async def dispose(self) -> None:
    await self.products_engine.dispose()
    await self.transactions_engine.dispose()

  def cleanup(self) -> None:
    shutil.rmtree(self.test_dir, ignore_errors=True)

  async def add_product(
      self,
      product_id: str,
      price: int,
      title: Optional[str] = None,
      weight_grams: int = 500,
  ) -> None:
    async with self.products_session_factory() as session:
      session.add(
          db.Product(
              id=product_id,
              title=title or product_id.title(),
              sku=f"SKU-{product_id}",
              price=price,
              weight_grams=weight_grams,
          )
      )
      await session.commit()

  async def add_coupon(self, code: str, **fields: Any) -> None:
    fields.setdefault("discount_type", "percentage")
    fields.setdefault("value", 10)
    fields.setdefault("is_active", True)
    fields.setdefault("usage_count", 0)
    async with self.transactions_session_factory() as session:
      session.add(db.Coupon(code=code.upper(), **fields))
      await session.commit()

  async def get_coupon(self, code: str) -> Optional[db.Coupon]:
    async with self.transactions_session_factory() as session:
      return await db.get_coupon(session, code)

  async def add_order(self, **fields: Any) -> db.Order:
    """Inserts an order directly, bypassing checkout."""
    now = db.utcnow()
    values = dict(
        id=str(uuid.uuid4()),
        order_number=f"ORD-TEST-{uuid.uuid4().hex[:8].upper()}",
        email="shopper@example.com",
        currency="INR",
        subtotal=100000,
        discount=0,
        shipping_cost=0,
        tax=5000,
        total=105000,
        status="pending",
        payment_status="pending",
        payment_method="card",
        shipping_method="standard",
        shipping_address={
            "name": "Asha Rao",
            "phone": "9999999999",
            "line1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "postal_code": "560001",
            "country": "IN",
        },
        created_at=now,
        updated_at=now,
    )
    values.update(fields)
    items = values.pop("items", None) or [
        db.OrderItem(
            product_id="tea",
            name="Assam Tea",
            sku="SKU-tea",
            quantity=2,
            unit_price=50000,
            total=100000,
            weight_grams=250,
        )
    ]
    async with self.transactions_session_factory() as session:
      order = db.Order(items=items, **values)
      session.add(order)
      await session.commit()
      return await db.get_order(session, values["id"])

  async def get_order(self, order_id: str) -> Optional[db.Order]:
    async with self.transactions_session_factory() as session:
      return await db.get_order(session, order_id)

  async def webhook_events(self) -> List[db.WebhookEvent]:
    async with self.transactions_session_factory() as session:
      result = await session.execute(
          select(db.WebhookEvent).order_by(db.WebhookEvent.id)
      )
      return list(result.scalars().all())


class FakeGatewayAPI:
  """In-memory payment gateway orders API.

  Set `error` to "timeout" or "network", or `status_code` with an optional
  `error_body`, to make the next calls fail.
  """

  def __init__(self):
    self.orders: List[Dict[str, Any]] = []
    self.error: Optional[str] = None
    self.status_code: Optional[int] = None
    self.error_body: Dict[str, Any] = {}

  def handler(self, request: httpx.Request) -> httpx.Response:
    if self.error == "timeout":
      raise httpx.ReadTimeout("timed out", request=request)
    if self.error == "network":
      raise httpx.ConnectError("connection refused", request=request)
    if self.status_code:
      return httpx.Response(self.status_code, json=self.error_body)

    body = json.loads(request.content)
    gateway_order = {
        "id": f"order_{len(self.orders) + 1:08d}",
        "entity": "order",
        "amount": body["amount"],
        "currency": body["currency"],
        "receipt": body["receipt"],
        "notes": body.get("notes") or {},
        "status": "created",
    }
    self.orders.append(gateway_order)
    return httpx.Response(200, json=gateway_order)

  @property
  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handler)


class FakeCarrierAPI:
  """In-memory carrier API covering login, pickup, orders and couriers."""

  def __init__(self):
    self.logins = 0
    self.calls: List[str] = []
    self.created_orders: List[Dict[str, Any]] = []
    self.awb_requests: List[str] = []
    self.pickup_locations = [
        {"pickup_location": "Primary", "pin_code": "110001"}
    ]
    self.couriers = [
        {"courier_company_id": 10, "courier_name": "Express Air", "rate": 140},
        {"courier_company_id": 11, "courier_name": "Budget Road", "rate": 60},
        {"courier_company_id": 12, "courier_name": "City Link", "rate": 90},
    ]
    self.failing_couriers = set()
    self.expire_tokens = False

  def _path(self, request: httpx.Request) -> str:
    return request.url.path.split("/v1/external/", 1)[-1]

  def handler(self, request: httpx.Request) -> httpx.Response:
    path = self._path(request)
    self.calls.append(path)

    if path == "auth/login":
      self.logins += 1
      return httpx.Response(200, json={"token": f"token-{self.logins}"})

    token = request.headers.get("Authorization", "")
    if self.expire_tokens or token != f"Bearer token-{self.logins}":
      self.expire_tokens = False
      return httpx.Response(401, json={"message": "Token has expired"})

    if path == "settings/company/pickup":
      return httpx.Response(
          200, json={"data": {"shipping_address": self.pickup_locations}}
      )
    if path == "orders/create/adhoc":
      body = json.loads(request.content)
      self.created_orders.append(body)
      number = len(self.created_orders)
      return httpx.Response(
          200,
          json={
              "order_id": 5000 + number,
              "shipment_id": 9000 + number,
              "status": "NEW",
          },
      )
    if path == "courier/serviceability/":
      return httpx.Response(
          200,
          json={"data": {"available_courier_companies": self.couriers}},
      )
    if path == "courier/assign/awb":
      body = json.loads(request.content)
      courier_id = str(body["courier_id"])
      self.awb_requests.append(courier_id)
      if courier_id in self.failing_couriers:
        return httpx.Response(
            200,
            json={"awb_assign_status": 0, "message": "Courier unavailable"},
        )
      return httpx.Response(
          200,
          json={
              "awb_assign_status": 1,
              "response": {
                  "data": {
                      "awb_code": f"AWB{courier_id}{body['shipment_id']}",
                  }
              },
          },
      )
    return httpx.Response(404, json={"message": f"Unknown path {path}"})

  @property
  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handler)


class FakeNotificationRelay:
  """Records notifications; set `fail` to answer 500."""

  def __init__(self):
    self.sent: List[Dict[str, Any]] = []
    self.fail = False

  def handler(self, request: httpx.Request) -> httpx.Response:
    if self.fail:
      return httpx.Response(500, json={"error": "relay down"})
    self.sent.append(json.loads(request.content))
    return httpx.Response(202, json={"queued": True})

  @property
  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handler)

  def events(self) -> List[str]:
    return [payload["event_type"] for payload in self.sent]
