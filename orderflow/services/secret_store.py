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

"""Encrypted per-store secret storage with expiry.

Secrets such as carrier API tokens are kept in the transactions database,
encrypted with Fernet, and keyed by tenant and name. Each call runs in its own
short transaction so callers in the middle of other work are unaffected.
"""

import datetime
import logging
from typing import Awaitable, Callable, Optional, Tuple

from cryptography.fernet import Fernet
from cryptography.fernet import InvalidToken
from orderflow import db

logger = logging.getLogger(__name__)

# An async callable returning a fresh value and how long it stays valid.
RefreshFn = Callable[[], Awaitable[Tuple[str, Optional[datetime.timedelta]]]]


def build_fernet(key: str) -> Fernet:
  return Fernet(key.encode("utf-8") if isinstance(key, str) else key)


def _now() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class SecretStore:
  """Stores encrypted secrets per tenant."""

  def __init__(self, session_factory, fernet: Fernet):
    self.session_factory = session_factory
    self.fernet = fernet

  async def put(
      self,
      tenant_id: str,
      name: str,
      value: str,
      ttl: Optional[datetime.timedelta] = None,
  ) -> None:
    """Encrypts and saves a secret, replacing any previous value."""
    expires_at = (_now() + ttl).isoformat() if ttl else None
    ciphertext = self.fernet.encrypt(value.encode("utf-8")).decode("utf-8")
    async with self.session_factory() as session:
      await db.save_store_secret(
          session, tenant_id, name, ciphertext, expires_at
      )
      await session.commit()

  async def get(
      self,
      tenant_id: str,
      name: str,
      margin: datetime.timedelta = datetime.timedelta(0),
  ) -> Optional[str]:
    """Returns a secret, or None if it is missing or expires within `margin`."""
    async with self.session_factory() as session:
      record = await db.get_store_secret(session, tenant_id, name)
    if not record:
      return None

    if record.expires_at:
      expires_at = datetime.datetime.fromisoformat(record.expires_at)
      if _now() + margin >= expires_at:
        return None

    try:
      return self.fernet.decrypt(record.ciphertext.encode("utf-8")).decode(
          "utf-8"
      )
    except InvalidToken:
      logger.warning(
          "Stored secret %s for %s cannot be decrypted with the current key",
          name,
          tenant_id,
      )
      return None

  async def invalidate(self, tenant_id: str, name: str) -> None:
    async with self.session_factory() as session:
      await db.delete_store_secret(session, tenant_id, name)
      await session.commit()

  async def get_or_refresh(
      self,
      tenant_id: str,
      name: str,
      refresh: RefreshFn,
      refresh_margin: datetime.timedelta = datetime.timedelta(0),
  ) -> str:
    """Returns a cached secret, calling `refresh` when it is due.

    Args:
      tenant_id: The store the secret belongs to.
      name: The secret name.
      refresh: Async callable returning `(value, ttl)`.
      refresh_margin: Refresh values that expire within this window.

    Returns:
      The cached or freshly obtained value.
    """
    value = await self.get(tenant_id, name, margin=refresh_margin)
    if value is not None:
      return value

    logger.info("Refreshing secret %s for %s", name, tenant_id)
    value, ttl = await refresh()
    await self.put(tenant_id, name, value, ttl)
    return value
