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

"""Tests for the maintenance scripts' flag definitions."""

import importlib

from absl import flags
from absl.testing import absltest
from orderflow import dump_orders
from orderflow import dump_webhook_events
from orderflow import import_csv

FLAGS = flags.FLAGS


class ScriptFlagsTest(absltest.TestCase):

  def test_scripts_share_flags(self) -> None:
    for name in (
        "products_db_path",
        "transactions_db_path",
        "data_dir",
        "status",
        "source",
        "show_payload",
    ):
      self.assertIn(name, FLAGS)

  def test_scripts_can_be_reloaded(self) -> None:
    for module in (dump_orders, dump_webhook_events, import_csv):
      importlib.reload(module)
    self.assertIn("status", FLAGS)


if __name__ == "__main__":
  absltest.main()
