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

import logging
import collections
from typing import Iterable, Optional

import sigmatch.perf
import sigmatch.helpers
from sigmatch.rules import Rule, RuleSet, DetectionInput
from sigmatch.engine import Result, LogEntry, MatchOptions

logger = logging.getLogger(__name__)


# mapping from rule to the (line number, result) of each log entry it matched, in input order.
MatchResults = dict[Rule, list[tuple[int, Result]]]


def find_entry_matches(
    ruleset: RuleSet, input: DetectionInput, options: Optional[MatchOptions] = None
) -> list[tuple[Rule, Result]]:
    """
    match the rules against a single input, and collect the full match tree of each matching rule.
    """
    matches = []
    for rule in ruleset.match(input, options=options):
        # evaluate again without short circuiting,
        # so that the result includes every search that contributed.
        res = rule.evaluate(input.log_entry, options, short_circuit=False)
        assert res.success, f"rule {rule.title} matched, but its full evaluation did not"
        matches.append((rule, res))
    return matches


def find_matches(
    ruleset: RuleSet,
    entries: Iterable[tuple[int, LogEntry]],
    product: Optional[str] = None,
    service: Optional[str] = None,
    category: Optional[str] = None,
    options: Optional[MatchOptions] = None,
    disable_progress: bool = False,
) -> tuple[MatchResults, int]:
    """
    match the rules against each of the given log entries,
    which all come from the log source described by `product`, `service`, and `category`.

    returns:
      the matches of each rule that matched at least once, in rule set order,
      and the number of log entries inspected.
    """
    matches: MatchResults = collections.defaultdict(list)
    entry_count = 0

    with sigmatch.helpers.SigmatchProgressBar(
        console=sigmatch.helpers.log_console, transient=True, disable=disable_progress
    ) as pbar:
        task = pbar.add_task("matching", total=None, unit="entries")
        for line_number, entry in entries:
            input = DetectionInput(entry, product=product, service=service, category=category)
            for rule, res in find_entry_matches(ruleset, input, options=options):
                matches[rule].append((line_number, res))

            entry_count += 1
            pbar.advance(task)

    logger.debug("matched %d rules against %d log entries", len(matches), entry_count)
    sigmatch.perf.counters["match.entries"] += entry_count

    return {rule: matches[rule] for rule in ruleset if rule in matches}, entry_count
