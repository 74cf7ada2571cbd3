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

"""Utility script to dump the webhook audit log.

This script prints the webhook deliveries stored in the transactions DB, with
whether each one was authenticated and whether it changed an order. Use it to
diagnose provider retries and replays.

Usage:
  python -m orderflow.dump_webhook_events --transactions_db_path=...
  [--source=payment|carrier] [--show_payload]
"""

import asyncio
import json
import sys

from absl import app as absl_app
from absl import flags
from orderflow.db import WebhookEvent
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
  flags.DEFINE_string("source", None, "Only show events from this source")
except flags.DuplicateFlagError:
  pass
try:
  flags.DEFINE_bool("show_payload", False, "Print each event's raw payload")
except flags.DuplicateFlagError:
  pass


async def dump_events():
  """Queries the database and prints webhook events."""
  if not FLAGS.transactions_db_path:
    print("Error: --transactions_db_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.transactions_db_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    print("=== WEBHOOK EVENTS ===")
    query = select(WebhookEvent).order_by(WebhookEvent.id)
    if FLAGS.source:
      query = query.where(WebhookEvent.source == FLAGS.source)
    result = await session.execute(query)
    events = result.scalars().all()

    if not events:
      print("No webhook events found.")
      return

    for event in events:
      flags_text = ", ".join([
          "authenticated" if event.authenticated else "UNAUTHENTICATED",
          "processed" if event.processed else "not processed",
      ])
      print(
          f"[{event.received_at}] #{event.id} {event.source}"
          f" {event.event_type or '-'} ({flags_text})"
      )
      if event.external_ref:
        print(f"  Reference: {event.external_ref}")
      if event.tracking_number:
        print(f"  AWB: {event.tracking_number}")
      if FLAGS.show_payload and event.payload is not None:
        print(f"  Payload: {json.dumps(event.payload, indent=2)}")
      print("-" * 40)

  await engine.dispose()


def main(argv):
  """Main entry point for the webhook event dump script."""
  del argv
  asyncio.run(dump_events())


if __name__ == "__main__":
  absl_app.run(main)
