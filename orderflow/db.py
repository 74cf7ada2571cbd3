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

"""Database management and persistence layer for the order service.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite) and keeps the trusted product catalog in its own
database, separate from the transactional order data the pipeline mutates.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup for both 'Products' and 'Transactions' databases.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so that webhook
  deliveries and checkout requests can hit the database concurrently.
- Declarative Models: Defines tables for products, orders and their items,
  coupons, the webhook audit log, shipment analytics, encrypted store secrets
  and idempotency tracking.
- Data Access Helpers: Asynchronous helpers, including the conditional
  updates that guard payment confirmation, coupon redemption and order status
  changes against duplicate and concurrent delivery.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import Optional

from orderflow.enums import OrderStatus
from orderflow.enums import PaymentStatus
from sqlalchemy import Boolean
from sqlalchemy import case
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

ProductBase = declarative_base()
TransactionBase = declarative_base()


def utcnow() -> str:
  """Returns the current UTC time as an ISO-8601 string."""
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseManager:
  """Manages database engines and sessions without using global variables."""

  def __init__(self) -> None:
    self.products_engine: Optional[AsyncEngine] = None
    self.transactions_engine: Optional[AsyncEngine] = None
    self.products_session_factory: Optional[sessionmaker] = None
    self.transactions_session_factory: Optional[sessionmaker] = None

  async def init_dbs(self, products_path: str, transactions_path: str) -> None:
    """Initializes database engines and creates tables."""
    self.products_engine, self.products_session_factory = (
        await self._init_db(products_path, ProductBase)
    )
    self.transactions_engine, self.transactions_session_factory = (
        await self._init_db(transactions_path, TransactionBase)
    )

  async def _init_db(self, path: str, base: Any) -> tuple:
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)

    async with engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    session_factory = sessionmaker(
        engine, expire_on_commit=False, class_=AsyncSession
    )

    async with engine.begin() as conn:
      await conn.run_sync(base.metadata.create_all)
    return engine, session_factory

  async def close(self) -> None:
    """Closes all database engines."""
    if self.products_engine:
      await self.products_engine.dispose()
    if self.transactions_engine:
      await self.transactions_engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Product(ProductBase):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  title = Column(String)
  sku = Column(String, nullable=True)
  price = Column(Integer)  # Minor units
  weight_grams = Column(Integer, default=500)
  image_url = Column(String, nullable=True)


class Order(TransactionBase):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  order_number = Column(String, unique=True, index=True)
  user_id = Column(String, nullable=True)
  email = Column(String, nullable=True)
  currency = Column(String, default="INR")
  # Money columns are minor units.
  subtotal = Column(Integer, default=0)
  discount = Column(Integer, default=0)
  shipping_cost = Column(Integer, default=0)
  tax = Column(Integer, default=0)
  total = Column(Integer, default=0)
  status = Column(String, default=OrderStatus.PENDING.value, index=True)
  payment_status = Column(String, default=PaymentStatus.PENDING.value)
  payment_method = Column(String, default="card")
  shipping_method = Column(String, default="standard")
  shipping_address = Column(JSON)
  billing_address = Column(JSON, nullable=True)
  coupon_code = Column(String, nullable=True)
  gateway_order_id = Column(String, nullable=True, index=True)
  gateway_payment_id = Column(String, nullable=True)
  carrier_order_id = Column(String, nullable=True, index=True)
  carrier_shipment_id = Column(String, nullable=True, index=True)
  tracking_number = Column(String, nullable=True, index=True)
  courier_name = Column(String, nullable=True)
  shipment_error = Column(String, nullable=True)
  created_at = Column(String)
  updated_at = Column(String)

  items = relationship(
      "OrderItem",
      back_populates="order",
      cascade="all, delete-orphan",
      lazy="selectin",
      order_by="OrderItem.id",
  )


class OrderItem(TransactionBase):
  __tablename__ = "order_items"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"))
  product_id = Column(String)
  variant_id = Column(String, nullable=True)
  name = Column(String)
  sku = Column(String, nullable=True)
  quantity = Column(Integer)
  unit_price = Column(Integer)  # Copied from the catalog at order time
  total = Column(Integer)
  weight_grams = Column(Integer, default=500)

  order = relationship("Order", back_populates="items")


class Coupon(TransactionBase):
  __tablename__ = "coupons"

  code = Column(String, primary_key=True)
  discount_type = Column(String)  # 'percentage' or 'fixed'
  value = Column(Integer)  # Whole percent, or minor units for 'fixed'
  is_active = Column(Boolean, default=True)
  start_date = Column(String, nullable=True)
  end_date = Column(String, nullable=True)
  usage_limit = Column(Integer, nullable=True)
  usage_count = Column(Integer, default=0)
  min_cart_value = Column(Integer, nullable=True)
  max_discount = Column(Integer, nullable=True)
  description = Column(String, nullable=True)


class WebhookEvent(TransactionBase):
  __tablename__ = "webhook_events"

  id = Column(Integer, primary_key=True, autoincrement=True)
  source = Column(String, index=True)  # 'payment' or 'carrier'
  event_type = Column(String, nullable=True)
  external_ref = Column(String, nullable=True)
  tracking_number = Column(String, nullable=True)
  payload = Column(JSON, nullable=True)
  authenticated = Column(Boolean, default=False)
  processed = Column(Boolean, default=False)
  received_at = Column(String)


class ShipmentAnalytics(TransactionBase):
  __tablename__ = "shipment_analytics"

  tracking_number = Column(String, primary_key=True)
  order_id = Column(String, nullable=True, index=True)
  courier_name = Column(String, nullable=True)
  carrier_status = Column(String, nullable=True)
  status_history = Column(JSON, default=list)
  picked_up_at = Column(String, nullable=True)
  delivered_at = Column(String, nullable=True)
  updated_at = Column(String)


class StoreSecret(TransactionBase):
  __tablename__ = "store_secrets"

  tenant_id = Column(String, primary_key=True)
  name = Column(String, primary_key=True)
  ciphertext = Column(String)
  expires_at = Column(String, nullable=True)
  updated_at = Column(String)


class IdempotencyRecord(TransactionBase):
  __tablename__ = "idempotency_records"

  key = Column(String, primary_key=True)
  request_hash = Column(String)
  response_status = Column(Integer)
  response_body = Column(JSON)
  created_at = Column(String)


# --- Data Access Helpers ---


async def get_product(
    session: AsyncSession, product_id: str
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def get_products(
    session: AsyncSession, product_ids: Iterable[str]
) -> Dict[str, Product]:
  """Retrieves several products in a single query.

  Args:
    session: The products database session.
    product_ids: The product IDs to look up.

  Returns:
    A mapping of product ID to Product for the IDs that exist.
  """
  ids = list(set(product_ids))
  if not ids:
    return {}
  result = await session.execute(select(Product).where(Product.id.in_(ids)))
  return {product.id: product for product in result.scalars().all()}


async def get_coupon(session: AsyncSession, code: str) -> Optional[Coupon]:
  """Retrieves a coupon by its (case-insensitive) code."""
  return await session.get(Coupon, code.upper(), populate_existing=True)


async def redeem_coupon(session: AsyncSession, code: str) -> bool:
  """Atomically increments a coupon's usage count if its cap allows it.

  The cap is re-checked inside the UPDATE itself, so two shoppers racing for
  the last use of a capped coupon cannot both succeed. The caller commits the
  increment together with the order that redeems it.

  Args:
    session: The transactions database session.
    code: The coupon code to redeem.

  Returns:
    True if the usage count was incremented, False if the coupon is inactive,
    missing or already at its usage limit.
  """
  stmt = (
      update(Coupon)
      .where(Coupon.code == code.upper())
      .where(Coupon.is_active.is_(True))
      .where(
          or_(
              Coupon.usage_limit.is_(None),
              Coupon.usage_count < Coupon.usage_limit,
          )
      )
      .values(usage_count=Coupon.usage_count + 1)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order and its items by ID, always reloading from the DB."""
  return await session.get(Order, order_id, populate_existing=True)


async def find_order(
    session: AsyncSession, column: Any, value: Any
) -> Optional[Order]:
  """Retrieves the first order whose `column` equals `value`."""
  if value is None or value == "":
    return None
  result = await session.execute(
      select(Order)
      .where(column == value)
      .limit(1)
      .execution_options(populate_existing=True)
  )
  return result.scalars().first()


async def mark_order_paid(
    session: AsyncSession,
    order_id: str,
    gateway_order_id: Optional[str],
    gateway_payment_id: Optional[str],
) -> bool:
  """Marks an order paid unless it already is.

  The `payment_status != 'paid'` predicate makes the check-and-set a single
  statement, so duplicate verify calls and webhook redeliveries produce at
  most one paid transition. Orders still `pending` advance to `processing`.

  Returns:
    True if this call performed the transition.
  """
  values: Dict[str, Any] = {
      "payment_status": PaymentStatus.PAID.value,
      "status": case(
          (Order.status == OrderStatus.PENDING.value,
           OrderStatus.PROCESSING.value),
          else_=Order.status,
      ),
      "updated_at": utcnow(),
  }
  if gateway_order_id:
    values["gateway_order_id"] = gateway_order_id
  if gateway_payment_id:
    values["gateway_payment_id"] = gateway_payment_id

  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.payment_status != PaymentStatus.PAID.value)
      .values(**values)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def mark_order_payment_failed(
    session: AsyncSession, order_id: str
) -> bool:
  """Records a failed payment attempt unless the order is already paid."""
  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.payment_status != PaymentStatus.PAID.value)
      .values(payment_status=PaymentStatus.FAILED.value, updated_at=utcnow())
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def apply_order_update(
    session: AsyncSession,
    order_id: str,
    expected_status: str,
    status: Optional[str] = None,
    tracking_number: Optional[str] = None,
) -> bool:
  """Compare-and-set update of an order's status and/or tracking number.

  The update only applies while the order is still in `expected_status`, so
  a concurrent writer that already moved the order is never overwritten. A
  tracking number is only written when the order has none yet.

  Returns:
    True if a row was updated.
  """
  values: Dict[str, Any] = {"updated_at": utcnow()}
  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.status == expected_status)
  )
  if status:
    values["status"] = status
  if tracking_number:
    values["tracking_number"] = tracking_number
    if not status:
      stmt = stmt.where(Order.tracking_number.is_(None))
  result = await session.execute(
      stmt.values(**values).execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def log_webhook_event(
    session: AsyncSession,
    source: str,
    event_type: Optional[str],
    payload: Any,
    authenticated: bool,
    external_ref: Optional[str] = None,
    tracking_number: Optional[str] = None,
) -> WebhookEvent:
  """Appends a raw webhook delivery to the audit log."""
  event = WebhookEvent(
      source=source,
      event_type=event_type,
      external_ref=external_ref,
      tracking_number=tracking_number,
      payload=payload,
      authenticated=authenticated,
      processed=False,
      received_at=utcnow(),
  )
  session.add(event)
  await session.flush()
  return event


async def mark_webhook_event_processed(
    session: AsyncSession, event_id: int
) -> None:
  """Flips the `processed` flag, the only mutation a logged event allows."""
  await session.execute(
      update(WebhookEvent)
      .where(WebhookEvent.id == event_id)
      .values(processed=True)
      .execution_options(synchronize_session=False)
  )


async def upsert_shipment_analytics(
    session: AsyncSession,
    tracking_number: str,
    carrier_status: str,
    order_id: Optional[str] = None,
    courier_name: Optional[str] = None,
) -> ShipmentAnalytics:
  """Folds a carrier status into the analytics row for a tracking number.

  Replaying the same event leaves the row unchanged apart from `updated_at`.
  """
  record = await session.get(
      ShipmentAnalytics, tracking_number, populate_existing=True
  )
  now = utcnow()
  if not record:
    record = ShipmentAnalytics(
        tracking_number=tracking_number, status_history=[]
    )
    session.add(record)

  record.order_id = order_id or record.order_id
  record.courier_name = courier_name or record.courier_name
  record.carrier_status = carrier_status
  history = list(record.status_history or [])
  if carrier_status not in history:
    history.append(carrier_status)
  record.status_history = history
  if carrier_status == "PICKED_UP" and not record.picked_up_at:
    record.picked_up_at = now
  if carrier_status == "DELIVERED" and not record.delivered_at:
    record.delivered_at = now
  record.updated_at = now
  return record


async def get_store_secret(
    session: AsyncSession, tenant_id: str, name: str
) -> Optional[StoreSecret]:
  """Retrieves an encrypted secret row."""
  return await session.get(
      StoreSecret, (tenant_id, name), populate_existing=True
  )


async def save_store_secret(
    session: AsyncSession,
    tenant_id: str,
    name: str,
    ciphertext: str,
    expires_at: Optional[str],
) -> None:
  """Saves or replaces an encrypted secret row."""
  existing = await get_store_secret(session, tenant_id, name)
  if existing:
    existing.ciphertext = ciphertext
    existing.expires_at = expires_at
    existing.updated_at = utcnow()
  else:
    session.add(
        StoreSecret(
            tenant_id=tenant_id,
            name=name,
            ciphertext=ciphertext,
            expires_at=expires_at,
            updated_at=utcnow(),
        )
    )


async def delete_store_secret(
    session: AsyncSession, tenant_id: str, name: str
) -> None:
  """Removes a secret row if present."""
  existing = await get_store_secret(session, tenant_id, name)
  if existing:
    await session.delete(existing)


async def get_idempotency_record(
    session: AsyncSession, key: str
) -> Optional[IdempotencyRecord]:
  """Retrieves an idempotency record by key."""
  return await session.get(IdempotencyRecord, key)


async def save_idempotency_record(
    session: AsyncSession,
    key: str,
    request_hash: str,
    response_status: int,
    response_body: Dict[str, Any],
) -> None:
  """Saves a new idempotency record."""
  record = IdempotencyRecord(
      key=key,
      request_hash=request_hash,
      response_status=response_status,
      response_body=response_body,
      created_at=utcnow(),
  )
  session.add(record)
