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

"""Database initialization script for the order service.

This script imports the product catalog and coupon definitions from CSV files
into the configured SQLite databases. It replaces the existing rows in the
'products' and 'coupons' tables; orders and webhook history are left alone.

Usage:
  python -m orderflow.import_csv --products_db_path=...
  --transactions_db_path=... --data_dir=...
"""

import asyncio
import csv
import logging
import os

from absl import app as absl_app
from absl import flags
from orderflow import db
from orderflow.db import Coupon
from orderflow.db import Product
from sqlalchemy import delete

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("products_db_path", "products.db", "Path to products DB")
except flags.DuplicateFlagError:
  pass
try:
  flags.DEFINE_string(
      "transactions_db_path", "transactions.db", "Path to transactions DB"
  )
except flags.DuplicateFlagError:
  pass
try:
  flags.DEFINE_string(
      "data_dir",
      os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
      "Directory containing products.csv and coupons.csv",
  )
except flags.DuplicateFlagError:
  pass

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _optional_int(value):
  return int(value) if value not in (None, "") else None


def _optional_str(value):
  return value or None


def read_products(path: str) -> list:
  products = []
  with open(path, "r") as f:
    for row in csv.DictReader(f):
      products.append(
          Product(
              id=row["id"],
              title=row["title"],
              sku=_optional_str(row.get("sku")),
              price=int(row["price"]),
              weight_grams=_optional_int(row.get("weight_grams")) or 500,
              image_url=_optional_str(row.get("image_url")),
          )
      )
  return products


def read_coupons(path: str) -> list:
  coupons = []
  with open(path, "r") as f:
    for row in csv.DictReader(f):
      coupons.append(
          Coupon(
              code=row["code"].strip().upper(),
              discount_type=row["discount_type"],
              value=int(row["value"]),
              is_active=row.get("is_active", "true").lower() == "true",
              start_date=_optional_str(row.get("start_date")),
              end_date=_optional_str(row.get("end_date")),
              usage_limit=_optional_int(row.get("usage_limit")),
              usage_count=_optional_int(row.get("usage_count")) or 0,
              min_cart_value=_optional_int(row.get("min_cart_value")),
              max_discount=_optional_int(row.get("max_discount")),
              description=_optional_str(row.get("description")),
          )
      )
  return coupons


async def import_csv_data() -> None:
  """Reads CSV files and populates the database."""
  data_dir = FLAGS.data_dir
  # Ensure tables exist
  await db.manager.init_dbs(FLAGS.products_db_path, FLAGS.transactions_db_path)

  try:
    async with db.manager.products_session_factory() as session:
      logger.info("Clearing existing products...")
      await session.execute(delete(Product))

      logger.info("Importing Products from CSV...")
      products = read_products(os.path.join(data_dir, "products.csv"))
      session.add_all(products)
      await session.commit()
      logger.info("Imported %d products", len(products))

    coupons_path = os.path.join(data_dir, "coupons.csv")
    if os.path.exists(coupons_path):
      async with db.manager.transactions_session_factory() as session:
        logger.info("Clearing existing coupons...")
        await session.execute(delete(Coupon))

        logger.info("Importing Coupons from CSV...")
        coupons = read_coupons(coupons_path)
        session.add_all(coupons)
        await session.commit()
        logger.info("Imported %d coupons", len(coupons))
  finally:
    await db.manager.close()


def main(argv):
  """Main entry point for the import script."""
  del argv
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
