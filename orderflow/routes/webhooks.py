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

"""Webhook receivers for the payment gateway and the shipping carrier.

Both endpoints always answer 200 so providers stop retrying; the body says
whether the delivery changed anything.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from orderflow import dependencies
from orderflow.models import WebhookAck
from orderflow.services.post_payment import PostPaymentActions
from orderflow.services.webhook_service import WebhookOutcome
from orderflow.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


def _schedule_follow_ups(
    outcome: WebhookOutcome,
    background_tasks: BackgroundTasks,
    post_payment: PostPaymentActions,
) -> WebhookAck:
  if outcome.order_id and outcome.run_post_payment:
    background_tasks.add_task(post_payment.after_payment, outcome.order_id)
  if outcome.order_id and outcome.notification:
    background_tasks.add_task(
        post_payment.notify, outcome.order_id, outcome.notification
    )
  return WebhookAck(processed=outcome.processed, message=outcome.message)


@router.post(
    "/payment", response_model=WebhookAck, operation_id="payment_webhook"
)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
    post_payment: PostPaymentActions = Depends(
        dependencies.get_post_payment_actions
    ),
) -> WebhookAck:
  """Receive a payment gateway event."""
  raw_body = await request.body()
  try:
    outcome = await webhook_service.handle_payment_webhook(raw_body, signature)
  except Exception:  # pylint: disable=broad-exception-caught
    logger.exception("Payment webhook processing failed")
    return WebhookAck(message="Processing error")
  return _schedule_follow_ups(outcome, background_tasks, post_payment)


@router.post(
    "/carrier", response_model=WebhookAck, operation_id="carrier_webhook"
)
async def carrier_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_api_key: Optional[str] = Header(None, alias="X-Api-Key"),
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
    post_payment: PostPaymentActions = Depends(
        dependencies.get_post_payment_actions
    ),
) -> WebhookAck:
  """Receive a carrier tracking update."""
  raw_body = await request.body()
  try:
    outcome = await webhook_service.handle_carrier_webhook(
        raw_body, x_api_key or x_webhook_secret
    )
  except Exception:  # pylint: disable=broad-exception-caught
    logger.exception("Carrier webhook processing failed")
    return WebhookAck(message="Processing error")
  return _schedule_follow_ups(outcome, background_tasks, post_payment)
