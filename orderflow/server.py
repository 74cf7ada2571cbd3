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

"""Order Fulfillment Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from orderflow import config
from orderflow.exceptions import InternalError
from orderflow.exceptions import OrderflowError
from orderflow.routes.checkout import router as checkout_router
from orderflow.routes.order import router as order_router
from orderflow.routes.payments import router as payments_router
from orderflow.routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Fulfillment Service",
    version="1.0.0",
    description=(
        "Checkout, payment confirmation and shipment orchestration for an"
        " online store"
    ),
    lifespan=config.lifespan,
)


@app.exception_handler(OrderflowError)
async def orderflow_exception_handler(request: Request, exc: OrderflowError):
  """Converts service exceptions to JSON responses."""
  del request  # Unused.
  if exc.status_code >= 500:
    logger.error("%s: %s", exc.code, exc.message)
  return JSONResponse(
      status_code=exc.status_code,
      content={"detail": exc.public_message, "code": exc.code},
  )


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception):
  """Logs unexpected failures and hides their details from clients."""
  logger.error(
      "Unhandled error on %s %s",
      request.method,
      request.url.path,
      exc_info=exc,
  )
  error = InternalError(str(exc))
  return JSONResponse(
      status_code=error.status_code,
      content={"detail": error.public_message, "code": error.code},
  )


app.include_router(checkout_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(order_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Order Fulfillment Server."""
  del argv  # Unused.

  if (
      config.FLAGS.products_db_path is None
      or config.FLAGS.transactions_db_path is None
      or config.FLAGS.port is None
  ):
    logger.error(
        "Both --products_db_path, --transactions_db_path, and --port must be"
        " provided."
    )
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


def run() -> None:
  """Console script entry point."""
  absl_app.run(main)


if __name__ == "__main__":
  run()
