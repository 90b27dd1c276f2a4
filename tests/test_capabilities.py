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

from fixtures import get_rule, make_entry, get_ruleset

import sigmatch.capabilities
from sigmatch.rules import DetectionInput
from sigmatch.engine import Not, MatchOptions

ENTRIES = [
    (1, make_entry(Image="C:\\Windows\\System32\\whoami.exe")),
    (2, make_entry(Image="C:\\Windows\\explorer.exe")),
    (3, make_entry(EventID="4672", SubjectUserName="AdminMachine")),
    (4, make_entry(Image="C:\\Windows\\System32\\whoami.exe")),
]


def test_find_entry_matches():
    ruleset = get_ruleset()
    input = DetectionInput(make_entry(EventID="4672", SubjectUserName="UserMachine"), product="windows")

    ((rule, res),) = sigmatch.capabilities.find_entry_matches(ruleset, input)
    assert rule.title == get_rule("win_security_admin_logon").title
    assert res.success is True

    # the result isn't short circuited: both filters were evaluated.
    _, not_filters = res.children
    assert isinstance(not_filters.statement, Not)
    (filters,) = not_filters.children
    assert len(filters.children) == 2


def test_find_matches():
    ruleset = get_ruleset()
    matches, entry_count = sigmatch.capabilities.find_matches(ruleset, ENTRIES, disable_progress=True)

    assert entry_count == 4
    # rules come from the rule set, so look them up there.
    whoami = ruleset[get_rule("proc_creation_win_whoami").id]
    admin_logon = ruleset[get_rule("win_security_admin_logon").id]
    assert list(matches.keys()) == [whoami, admin_logon]
    assert [line_number for line_number, _ in matches[whoami]] == [1, 4]
    assert [line_number for line_number, _ in matches[admin_logon]] == [3]


def test_find_matches_options():
    ruleset = get_ruleset()
    options = MatchOptions(placeholders={"Admins_Workstations": ["AdminMachine"]})
    matches, _ = sigmatch.capabilities.find_matches(ruleset, ENTRIES, options=options, disable_progress=True)
    assert ruleset[get_rule("win_security_admin_logon").id] not in matches


def test_find_matches_logsource():
    ruleset = get_ruleset()
    matches, entry_count = sigmatch.capabilities.find_matches(
        ruleset, ENTRIES, product="linux", disable_progress=True
    )
    assert entry_count == 4
    assert matches == {}


def test_find_matches_no_entries():
    matches, entry_count = sigmatch.capabilities.find_matches(get_ruleset(), [], disable_progress=True)
    assert matches == {}
    assert entry_count == 0
