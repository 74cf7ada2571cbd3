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

"""HMAC helpers shared by payment verification and webhook authentication."""

import hashlib
import hmac
from typing import Optional
from typing import Union


def hmac_sha256_hex(secret: str, message: Union[str, bytes]) -> str:
  """Returns the hex HMAC-SHA256 digest of `message` keyed by `secret`."""
  if isinstance(message, str):
    message = message.encode("utf-8")
  return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def secrets_match(expected: Optional[str], provided: Optional[str]) -> bool:
  """Constant-time comparison. A missing value on either side never matches."""
  if not expected or not provided:
    return False
  return hmac.compare_digest(
      expected.encode("utf-8"), provided.encode("utf-8")
  )


def verify_hmac_signature(
    secret: Optional[str],
    message: Union[str, bytes],
    signature: Optional[str],
) -> bool:
  """Checks a hex HMAC-SHA256 `signature` of `message`."""
  if not secret or not signature:
    return False
  return secrets_match(hmac_sha256_hex(secret, message), signature)


def payment_signature_payload(
    gateway_order_id: str, gateway_payment_id: str
) -> str:
  return f"{gateway_order_id}|{gateway_payment_id}"
