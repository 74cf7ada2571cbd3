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

"""Shared configuration and startup logic for the order service.

Command line flags are defined here and read into a `Settings` model, which is
what the rest of the service consumes. When flags have not been parsed (tests,
interactive imports) the model's defaults are used instead.
"""

import contextlib
import logging
from typing import Optional

from absl import flags
from cryptography.fernet import Fernet
from fastapi import FastAPI
from orderflow import db
from pydantic import BaseModel

FLAGS = flags.FLAGS

logger = logging.getLogger(__name__)

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("products_db_path", None, "Path to products DB")
  flags.DEFINE_string("transactions_db_path", None, "Path to transactions DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string("store_id", "default", "Tenant id for stored secrets")
  flags.DEFINE_string(
      "secret_store_key",
      None,
      "Fernet key used to encrypt stored secrets. A temporary key is"
      " generated when unset.",
  )
  flags.DEFINE_string(
      "gateway_base_url", "https://api.razorpay.com/v1", "Payment gateway API"
  )
  flags.DEFINE_string("gateway_key_id", None, "Payment gateway key id")
  flags.DEFINE_string("gateway_key_secret", None, "Payment gateway key secret")
  flags.DEFINE_string(
      "gateway_webhook_secret", None, "Secret for payment webhook signatures"
  )
  flags.DEFINE_float(
      "gateway_timeout_seconds", 10.0, "Timeout for payment gateway calls"
  )
  flags.DEFINE_string(
      "carrier_base_url",
      "https://apiv2.shiprocket.in/v1/external",
      "Shipping carrier API",
  )
  flags.DEFINE_string("carrier_email", None, "Shipping carrier account email")
  flags.DEFINE_string(
      "carrier_password", None, "Shipping carrier account password"
  )
  flags.DEFINE_string(
      "carrier_webhook_secret", None, "Token expected on carrier webhooks"
  )
  flags.DEFINE_float(
      "carrier_timeout_seconds", 15.0, "Timeout for shipping carrier calls"
  )
  flags.DEFINE_string(
      "pickup_location", "Primary", "Carrier pickup location nickname"
  )
  flags.DEFINE_string(
      "notification_webhook_url",
      None,
      "Relay that sends customer emails. Notifications are skipped when unset.",
  )
  flags.DEFINE_string(
      "tracking_url_template",
      "https://shiprocket.co/tracking/{tracking_number}",
      "Public tracking page for an AWB",
  )
  flags.DEFINE_string(
      "admin_secret", None, "Secret for operator endpoints"
  )
except flags.DuplicateFlagError:
  pass


class Settings(BaseModel):
  """Runtime configuration of the service."""

  products_db_path: Optional[str] = None
  transactions_db_path: Optional[str] = None
  port: Optional[int] = None
  store_id: str = "default"
  secret_store_key: Optional[str] = None
  gateway_base_url: str = "https://api.razorpay.com/v1"
  gateway_key_id: Optional[str] = None
  gateway_key_secret: Optional[str] = None
  gateway_webhook_secret: Optional[str] = None
  gateway_timeout_seconds: float = 10.0
  carrier_base_url: str = "https://apiv2.shiprocket.in/v1/external"
  carrier_email: Optional[str] = None
  carrier_password: Optional[str] = None
  carrier_webhook_secret: Optional[str] = None
  carrier_timeout_seconds: float = 15.0
  pickup_location: str = "Primary"
  notification_webhook_url: Optional[str] = None
  tracking_url_template: str = (
      "https://shiprocket.co/tracking/{tracking_number}"
  )
  admin_secret: Optional[str] = None


def load_settings() -> Settings:
  """Builds Settings from parsed flags, or defaults if flags are unparsed."""
  if FLAGS.is_parsed():
    values = {
        name: FLAGS[name].value
        for name in Settings.model_fields
        if name in FLAGS and FLAGS[name].value is not None
    }
    settings = Settings(**values)
  else:
    settings = Settings()

  if not settings.secret_store_key:
    logger.warning(
        "No --secret_store_key given; stored secrets will not survive a"
        " restart."
    )
    settings.secret_store_key = Fernet.generate_key().decode()
  return settings


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing databases."""
  del app  # Unused.
  # In tests or if flags aren't set, these might be None, handled by caller
  if (
      FLAGS.is_parsed()
      and FLAGS.products_db_path
      and FLAGS.transactions_db_path
  ):
    await db.manager.init_dbs(
        FLAGS.products_db_path, FLAGS.transactions_db_path
    )
  yield
  await db.manager.close()
