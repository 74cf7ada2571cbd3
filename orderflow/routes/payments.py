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

"""Payment routes: gateway intents and client side verification."""

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Depends
from orderflow import dependencies
from orderflow.models import PaymentIntentRequest
from orderflow.models import PaymentIntentResponse
from orderflow.models import VerifyPaymentRequest
from orderflow.models import VerifyPaymentResponse
from orderflow.services.payment_service import PaymentService
from orderflow.services.post_payment import PostPaymentActions

router = APIRouter(prefix="/payments")


@router.post(
    "/intent",
    response_model=PaymentIntentResponse,
    operation_id="create_payment_intent",
)
async def create_payment_intent(
    request: PaymentIntentRequest,
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> PaymentIntentResponse:
  """Create a gateway order for an unpaid order."""
  intent = await payment_service.create_intent(request.order_id, request.amount)
  return PaymentIntentResponse(**intent)


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    operation_id="verify_payment",
)
async def verify_payment(
    request: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
    post_payment: PostPaymentActions = Depends(
        dependencies.get_post_payment_actions
    ),
) -> VerifyPaymentResponse:
  """Verify a payment signature and mark the order paid."""
  confirmation = await payment_service.verify_payment(
      request.gateway_order_id,
      request.gateway_payment_id,
      request.signature,
      request.order_id,
  )
  if confirmation.newly_paid and confirmation.fulfillable:
    background_tasks.add_task(post_payment.after_payment, confirmation.order_id)
    message = "Payment verified successfully"
  elif confirmation.newly_paid:
    message = "Payment verified; the order is closed and will be refunded"
  else:
    message = "Payment already verified"
  return VerifyPaymentResponse(
      success=True, message=message, payment_id=confirmation.payment_id
  )
