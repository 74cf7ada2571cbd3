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

"""Checkout route: turns a cart into a pending order."""

from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from orderflow import dependencies
from orderflow.models import CheckoutRequest
from orderflow.models import CheckoutResponse
from orderflow.services.checkout_service import CheckoutService

router = APIRouter()


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=201,
    operation_id="create_order",
)
async def create_order(
    request: CheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> CheckoutResponse:
  """Create an order from a cart, priced entirely server side."""
  body = await checkout_service.create_order(request, idempotency_key)
  return CheckoutResponse(**body)
