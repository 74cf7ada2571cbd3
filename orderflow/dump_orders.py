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

"""Utility script to dump orders.

This script reads from the configured transactions SQLite database and prints
a summary of stored orders: lifecycle and payment state, external references
and line items. It is useful for checking what the pipeline did to an order.

Usage:
  python -m orderflow.dump_orders --transactions_db_path=... [--status=...]
"""

import asyncio
import sys

from absl import app as absl_app
from absl import flags
from orderflow.db import Order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("transactions_db_path", None, "Path to transactions DB")
except flags.DuplicateFlagError:
  pass
try:
  flags.DEFINE_string("status", None, "Only show orders in this status")
except flags.DuplicateFlagError:
  pass


def _money(amount, currency):
  return f"{(amount or 0) / 100.0:.2f} {currency}"


async def dump_orders():
  """Queries the database and prints orders with their items."""
  if not FLAGS.transactions_db_path:
    print("Error: --transactions_db_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.transactions_db_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    query = select(Order).order_by(Order.created_at)
    if FLAGS.status:
      query = query.where(Order.status == FLAGS.status)
    result = await session.execute(query)
    orders = result.scalars().all()

    if not orders:
      print("No orders found.")
      return

    for order in orders:
      print(
          f"Order: {order.order_number} ({order.id})"
          f" [{order.status} / payment {order.payment_status}]"
      )
      print(f"  Total: {_money(order.total, order.currency)}")
      if order.gateway_order_id:
        print(f"  Gateway order: {order.gateway_order_id}")
      if order.carrier_shipment_id:
        print(f"  Carrier shipment: {order.carrier_shipment_id}")
      if order.tracking_number:
        print(f"  AWB: {order.tracking_number} via {order.courier_name}")
      if order.shipment_error:
        print(f"  Last shipment error: {order.shipment_error}")
      for item in order.items:
        print(
            f"  - {item.name} (ID: {item.product_id}) x{item.quantity} @"
            f" {_money(item.unit_price, order.currency)}"
        )
      print("-" * 60)

  await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
