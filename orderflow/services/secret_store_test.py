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

"""Tests for the encrypted secret store."""

import asyncio
import datetime

from absl.testing import absltest
from cryptography.fernet import Fernet
from orderflow import db
from orderflow import testing
from orderflow.services.secret_store import SecretStore


class SecretStoreTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.database = testing.TestDatabase()
    asyncio.run(self.database.create())
    self.store = SecretStore(
        self.database.transactions_session_factory,
        Fernet(Fernet.generate_key()),
    )

  def tearDown(self) -> None:
    asyncio.run(self.database.dispose())
    self.database.cleanup()
    super().tearDown()

  def test_put_and_get(self) -> None:
    asyncio.run(self.store.put("shop", "api_token", "s3cret"))
    self.assertEqual(asyncio.run(self.store.get("shop", "api_token")), "s3cret")
    self.assertIsNone(asyncio.run(self.store.get("other", "api_token")))

  def test_value_is_encrypted_at_rest(self) -> None:
    asyncio.run(self.store.put("shop", "api_token", "s3cret"))

    async def stored():
      async with self.database.transactions_session_factory() as session:
        return await db.get_store_secret(session, "shop", "api_token")

    record = asyncio.run(stored())
    self.assertNotIn("s3cret", record.ciphertext)

  def test_expiry_and_margin(self) -> None:
    asyncio.run(
        self.store.put(
            "shop", "api_token", "s3cret", ttl=datetime.timedelta(minutes=30)
        )
    )
    self.assertEqual(asyncio.run(self.store.get("shop", "api_token")), "s3cret")
    self.assertIsNone(
        asyncio.run(
            self.store.get(
                "shop", "api_token", margin=datetime.timedelta(hours=1)
            )
        )
    )

    asyncio.run(
        self.store.put(
            "shop", "api_token", "old", ttl=datetime.timedelta(seconds=-1)
        )
    )
    self.assertIsNone(asyncio.run(self.store.get("shop", "api_token")))

  def test_put_replaces_value(self) -> None:
    asyncio.run(self.store.put("shop", "api_token", "first"))
    asyncio.run(self.store.put("shop", "api_token", "second"))
    self.assertEqual(asyncio.run(self.store.get("shop", "api_token")), "second")

  def test_invalidate(self) -> None:
    asyncio.run(self.store.put("shop", "api_token", "s3cret"))
    asyncio.run(self.store.invalidate("shop", "api_token"))
    self.assertIsNone(asyncio.run(self.store.get("shop", "api_token")))
    # Invalidating a missing secret is a no-op.
    asyncio.run(self.store.invalidate("shop", "api_token"))

  def test_rotated_key_reads_as_missing(self) -> None:
    asyncio.run(self.store.put("shop", "api_token", "s3cret"))
    rotated = SecretStore(
        self.database.transactions_session_factory,
        Fernet(Fernet.generate_key()),
    )
    self.assertIsNone(asyncio.run(rotated.get("shop", "api_token")))

  def test_get_or_refresh_caches(self) -> None:
    calls = []

    async def refresh():
      calls.append(1)
      return f"token-{len(calls)}", datetime.timedelta(hours=24)

    async def fetch_twice():
      first = await self.store.get_or_refresh(
          "shop", "api_token", refresh, datetime.timedelta(hours=1)
      )
      second = await self.store.get_or_refresh(
          "shop", "api_token", refresh, datetime.timedelta(hours=1)
      )
      return first, second

    self.assertEqual(asyncio.run(fetch_twice()), ("token-1", "token-1"))
    self.assertLen(calls, 1)

  def test_get_or_refresh_renews_inside_margin(self) -> None:
    asyncio.run(
        self.store.put(
            "shop", "api_token", "stale", ttl=datetime.timedelta(minutes=10)
        )
    )

    async def refresh():
      return "fresh", datetime.timedelta(hours=24)

    value = asyncio.run(
        self.store.get_or_refresh(
            "shop", "api_token", refresh, datetime.timedelta(hours=1)
        )
    )
    self.assertEqual(value, "fresh")
    self.assertEqual(asyncio.run(self.store.get("shop", "api_token")), "fresh")


if __name__ == "__main__":
  absltest.main()
