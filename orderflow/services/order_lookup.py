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

"""Resolves the order a webhook refers to.

Providers identify orders in different ways: our order id echoed back in
notes, the order number we sent as the channel order id, their own order or
shipment ids, or only an AWB. Each lookup strategy handles one of these and
the first match wins.
"""

import dataclasses
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from orderflow import db
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class OrderReference:
  """Every identifier a webhook carried for its order."""

  order_id: Optional[str] = None
  order_number: Optional[str] = None
  external_ids: List[str] = dataclasses.field(default_factory=list)
  tracking_number: Optional[str] = None

  def describe(self) -> str:
    return (
        f"order_id={self.order_id} order_number={self.order_number}"
        f" external_ids={self.external_ids} awb={self.tracking_number}"
    )


LookupStrategy = Callable[
    [AsyncSession, OrderReference], Awaitable[Optional[db.Order]]
]


async def by_order_id(
    session: AsyncSession, ref: OrderReference
) -> Optional[db.Order]:
  if not ref.order_id:
    return None
  return await db.get_order(session, ref.order_id)


async def by_order_number(
    session: AsyncSession, ref: OrderReference
) -> Optional[db.Order]:
  return await db.find_order(session, db.Order.order_number, ref.order_number)


async def by_external_id(
    session: AsyncSession, ref: OrderReference
) -> Optional[db.Order]:
  columns = (
      db.Order.gateway_order_id,
      db.Order.carrier_order_id,
      db.Order.carrier_shipment_id,
  )
  for external_id in ref.external_ids:
    for column in columns:
      order = await db.find_order(session, column, external_id)
      if order:
        return order
  return None


async def by_tracking_number(
    session: AsyncSession, ref: OrderReference
) -> Optional[db.Order]:
  return await db.find_order(
      session, db.Order.tracking_number, ref.tracking_number
  )


LOOKUP_STRATEGIES = (
    by_order_id,
    by_order_number,
    by_external_id,
    by_tracking_number,
)


async def resolve_order(
    session: AsyncSession,
    ref: OrderReference,
    strategies: Sequence[LookupStrategy] = LOOKUP_STRATEGIES,
) -> Optional[db.Order]:
  """Returns the order matched by the first successful strategy."""
  for strategy in strategies:
    order = await strategy(session, ref)
    if order:
      logger.debug("Resolved %s via %s", ref.describe(), strategy.__name__)
      return order
  logger.warning("No order matches webhook reference %s", ref.describe())
  return None
