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

"""FastAPI dependencies for the order service.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Settings and database session management (Products and Transactions DBs).
- Outbound HTTP transports for the gateway, carrier and notification relay,
  which tests replace with mock transports.
- Service instantiation (checkout, payments, fulfillment, webhooks).
- Operator authentication for admin endpoints.
"""

import functools
from typing import AsyncGenerator, Optional

from cryptography.fernet import Fernet
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
import httpx
from orderflow import config
from orderflow import db
from orderflow import signatures
from orderflow.services.carrier_client import CarrierClient
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.fulfillment_service import FulfillmentService
from orderflow.services.gateway_client import GatewayClient
from orderflow.services.notification_service import NotificationService
from orderflow.services.payment_service import PaymentService
from orderflow.services.post_payment import PostPaymentActions
from orderflow.services.secret_store import build_fernet
from orderflow.services.secret_store import SecretStore
from orderflow.services.webhook_service import WebhookService
from sqlalchemy.ext.asyncio import AsyncSession


@functools.lru_cache(maxsize=None)
def get_settings() -> config.Settings:
  """Dependency provider for Settings, loaded once per process."""
  return config.load_settings()


async def get_products_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Products DB session."""
  async with db.manager.products_session_factory() as session:
    yield session


def get_transactions_session_factory():
  """Dependency provider for the Transactions DB session factory."""
  return db.manager.transactions_session_factory


async def get_transactions_db(
    session_factory=Depends(get_transactions_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Transactions DB session."""
  async with session_factory() as session:
    yield session


def get_gateway_transport() -> Optional[httpx.AsyncBaseTransport]:
  return None


def get_carrier_transport() -> Optional[httpx.AsyncBaseTransport]:
  return None


def get_notification_transport() -> Optional[httpx.AsyncBaseTransport]:
  return None


def get_fernet(settings: config.Settings = Depends(get_settings)) -> Fernet:
  return build_fernet(settings.secret_store_key)


def get_secret_store(
    session_factory=Depends(get_transactions_session_factory),
    fernet: Fernet = Depends(get_fernet),
) -> SecretStore:
  return SecretStore(session_factory, fernet)


def get_gateway_client(
    settings: config.Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(
        get_gateway_transport
    ),
) -> GatewayClient:
  """Dependency provider for GatewayClient."""
  return GatewayClient(
      settings.gateway_base_url,
      settings.gateway_key_id,
      settings.gateway_key_secret,
      timeout=settings.gateway_timeout_seconds,
      transport=transport,
  )


def get_carrier_client(
    settings: config.Settings = Depends(get_settings),
    secret_store: SecretStore = Depends(get_secret_store),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(
        get_carrier_transport
    ),
) -> CarrierClient:
  """Dependency provider for CarrierClient."""
  return CarrierClient(
      settings.carrier_base_url,
      settings.carrier_email,
      settings.carrier_password,
      secret_store,
      tenant_id=settings.store_id,
      timeout=settings.carrier_timeout_seconds,
      transport=transport,
  )


def get_notification_service(
    settings: config.Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(
        get_notification_transport
    ),
) -> NotificationService:
  """Dependency provider for NotificationService."""
  return NotificationService(
      settings.notification_webhook_url,
      settings.tracking_url_template,
      transport=transport,
  )


def get_checkout_service(
    settings: config.Settings = Depends(get_settings),
    products_session: AsyncSession = Depends(get_products_db),
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      products_session,
      transactions_session,
      tracking_url_template=settings.tracking_url_template,
  )


def get_payment_service(
    settings: config.Settings = Depends(get_settings),
    transactions_session: AsyncSession = Depends(get_transactions_db),
    gateway_client: GatewayClient = Depends(get_gateway_client),
) -> PaymentService:
  """Dependency provider for PaymentService."""
  return PaymentService(
      transactions_session, gateway_client, settings.gateway_key_secret
  )


def get_fulfillment_service(
    settings: config.Settings = Depends(get_settings),
    transactions_session: AsyncSession = Depends(get_transactions_db),
    carrier_client: CarrierClient = Depends(get_carrier_client),
) -> FulfillmentService:
  """Dependency provider for FulfillmentService."""
  return FulfillmentService(
      transactions_session, carrier_client, settings.pickup_location
  )


def get_webhook_service(
    settings: config.Settings = Depends(get_settings),
    transactions_session: AsyncSession = Depends(get_transactions_db),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookService:
  """Dependency provider for WebhookService."""
  return WebhookService(
      transactions_session,
      payment_service,
      settings.gateway_webhook_secret,
      settings.carrier_webhook_secret,
  )


def get_post_payment_actions(
    settings: config.Settings = Depends(get_settings),
    session_factory=Depends(get_transactions_session_factory),
    notification_service: NotificationService = Depends(
        get_notification_service
    ),
    carrier_client: CarrierClient = Depends(get_carrier_client),
) -> PostPaymentActions:
  """Dependency provider for background follow-ups."""
  return PostPaymentActions(
      session_factory,
      notification_service,
      lambda session: FulfillmentService(
          session, carrier_client, settings.pickup_location
      ),
  )


async def verify_admin_secret(
    admin_secret: Optional[str] = Header(None, alias="Admin-Secret"),
    settings: config.Settings = Depends(get_settings),
) -> None:
  """Verifies the secret for operator endpoints."""
  if not settings.admin_secret:
    raise HTTPException(status_code=500, detail="Admin secret not configured")

  if not signatures.secrets_match(settings.admin_secret, admin_secret):
    raise HTTPException(status_code=403, detail="Invalid Admin Secret")
