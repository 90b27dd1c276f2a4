# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from pathlib import Path
from functools import lru_cache

import pytest

import sigmatch.rules
from sigmatch.engine import LogEntry

CD = Path(__file__).resolve().parent
DATA_PATH = CD / "data"
RULES_PATH = DATA_PATH / "rules"


def get_data_path_by_name(name) -> Path:
    if name == "entries":
        return DATA_PATH / "entries.jsonl"
    elif name == "placeholders":
        return DATA_PATH / "placeholders.yml"
    elif name == "rules":
        return RULES_PATH
    else:
        raise ValueError(f"unexpected sample fixture: {name}")


def get_rule_path_by_name(name) -> Path:
    """fetch the path to a sample rule by its file name, like `proc_creation_win_whoami`."""
    for path in RULES_PATH.rglob(f"{name}.yml"):
        return path
    raise ValueError(f"unexpected rule fixture: {name}")


@lru_cache(maxsize=None)
def get_rule(name) -> sigmatch.rules.Rule:
    return sigmatch.rules.Rule.from_yaml_file(get_rule_path_by_name(name))


@lru_cache(maxsize=1)
def get_ruleset() -> sigmatch.rules.RuleSet:
    return sigmatch.rules.get_rules([RULES_PATH])


def make_entry(message="", **fields) -> LogEntry:
    return LogEntry(message=message, fields=fields)


@pytest.fixture
def entries_path():
    return get_data_path_by_name("entries")


@pytest.fixture
def placeholders_path():
    return get_data_path_by_name("placeholders")


@pytest.fixture
def rules_path():
    return get_data_path_by_name("rules")


@pytest.fixture
def ruleset():
    return get_ruleset()


@pytest.fixture
def whoami_rule():
    return get_rule("proc_creation_win_whoami")


@pytest.fixture
def admin_logon_rule():
    return get_rule("win_security_admin_logon")
