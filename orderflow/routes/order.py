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

"""Order management routes for the order service."""

import dataclasses
from typing import Any, Optional

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi.responses import JSONResponse
from orderflow import dependencies
from orderflow.enums import NotificationEvent
from orderflow.models import CancelOrderRequest
from orderflow.models import OrderResponse
from orderflow.models import ShipmentResponse
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.fulfillment_service import FulfillmentService
from orderflow.services.post_payment import PostPaymentActions


router = APIRouter()


@router.get(
    "/orders/{id}",
    response_model=OrderResponse,
    operation_id="get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Get an order by ID."""
  return await checkout_service.get_order(order_id)


@router.post(
    "/orders/{id}/shipment",
    response_model=ShipmentResponse,
    operation_id="create_shipment",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def create_shipment(
    order_id: str = Path(..., alias="id"),
    fulfillment_service: FulfillmentService = Depends(
        dependencies.get_fulfillment_service
    ),
) -> Any:
  """Create or retry the carrier shipment for a paid order."""
  result = await fulfillment_service.create_shipment(order_id)
  body = ShipmentResponse(**dataclasses.asdict(result))
  if not result.success:
    return JSONResponse(status_code=502, content=body.model_dump(mode="json"))
  return body


@router.post(
    "/orders/{id}/cancel",
    response_model=OrderResponse,
    operation_id="cancel_order",
    dependencies=[Depends(dependencies.verify_admin_secret)],
)
async def cancel_order(
    background_tasks: BackgroundTasks,
    order_id: str = Path(..., alias="id"),
    request: Optional[CancelOrderRequest] = Body(None),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
    post_payment: PostPaymentActions = Depends(
        dependencies.get_post_payment_actions
    ),
) -> dict[str, Any]:
  """Cancel an order that has not reached a terminal state."""
  order = await checkout_service.cancel_order(
      order_id, request.reason if request else None
  )
  background_tasks.add_task(
      post_payment.notify, order_id, NotificationEvent.ORDER_CANCELLED
  )
  return order
