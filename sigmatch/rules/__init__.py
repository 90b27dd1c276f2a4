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

import os
import logging
import datetime
import dataclasses
from typing import Any, Union, Callable, Optional
from pathlib import Path
from functools import lru_cache
from dataclasses import dataclass

import yaml
import pydantic

import sigmatch.perf
from sigmatch.engine import Or, And, Named, Result, LogEntry, Expression, MatchOptions
from sigmatch.search import SearchAtom
from sigmatch.condition import parse_condition
from sigmatch.exceptions import (  # noqa: F401 [re-exported for callers]
    InvalidRule,
    InvalidSearch,
    InvalidRuleSet,
    InvalidCondition,
    InvalidRuleWithPath,
    UnsupportedAggregation,
)
from sigmatch.rules.date import SigmaDate
from sigmatch.rules.meta import Level, Status, Relation, LogSource

logger = logging.getLogger(__name__)

# these are the standard top level fields of a rule, in the preferred order.
# any other keys are collected into `Rule.extra`.
META_KEYS = (
    "title",
    "id",
    "related",
    "status",
    "description",
    "references",
    "author",
    "date",
    "modified",
    "tags",
    "level",
    "logsource",
    "detection",
    "fields",
    "falsepositives",
)

# keys of the detection block that are not search identifiers.
CONDITION_KEY = "condition"
TIMEFRAME_KEY = "timeframe"

# the YAML types of a search pattern.
SCALAR_TYPES = (str, int, float, bool)


def list_of_strings(raw: Any) -> list[str]:
    """
    coerce a YAML value that may be a string or a list of strings to a list.
    any other shape is an empty list.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return raw
    return []


def render_pattern(value: Union[str, int, float, bool]) -> str:
    """
    render a scalar YAML value as a pattern, like the value appears in log entries:

        EventID: 4688    ->  "4688"
        Initiated: true  ->  "true"
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_search_map(node: dict) -> Expression:
    """
    build the conjunction of the searches in a mapping like:

        Image|endswith: '\\whoami.exe'
        User|contains:
            - 'AUTHORI'
            - 'AUTORI'

    each key is `field|modifier1|modifier2...`.

    raises:
      InvalidSearch: if a search has invalid modifiers or patterns.
      InvalidRule: if a value is not a string, number, bool, or list of these.
    """
    children: list[Expression] = []
    for key, value in node.items():
        key = str(key)
        field, *modifiers = key.split("|")

        if isinstance(value, SCALAR_TYPES):
            patterns = [render_pattern(value)]
        elif isinstance(value, list) and all(isinstance(v, SCALAR_TYPES) for v in value):
            patterns = [render_pattern(v) for v in value]
        else:
            raise InvalidRule(f"{key}: unsupported value")

        atom = SearchAtom(field or None, modifiers, patterns)
        try:
            atom.validate()
        except InvalidSearch as e:
            raise InvalidSearch(f"{key}: {e.msg}") from e
        children.append(atom)

    if not children:
        raise InvalidRule("empty map")
    if len(children) == 1:
        return children[0]
    return And(children)


def is_plain_keyword(expr: Expression) -> bool:
    return isinstance(expr, SearchAtom) and not expr.field and not expr.modifiers


def build_search(name: str, value: Any) -> Expression:
    """
    build the expression of a single search identifier.

    the value is one of:
      - a string, a keyword searched in the message.
      - a mapping, searches over fields that must all match.
      - a list of these, any of which must match.
    """
    if isinstance(value, list):
        exprs: list[Expression] = []
        for item in value:
            if isinstance(item, SCALAR_TYPES):
                exprs.append(SearchAtom(None, [], [render_pattern(item)]))
            elif isinstance(item, dict):
                exprs.append(build_search_map(item))
            else:
                raise InvalidRule(f'search identifier "{name}": unsupported list value')

        if not exprs:
            raise InvalidRule(f'search identifier "{name}": empty list')

        if len(exprs) == 1:
            return exprs[0]

        if all(map(is_plain_keyword, exprs)):
            # a list of keywords is a single search with many patterns,
            # rather than many searches with one pattern each.
            patterns: list[str] = []
            for expr in exprs:
                assert isinstance(expr, SearchAtom)
                patterns.extend(expr.patterns)
            return SearchAtom(None, [], patterns)

        return Or(exprs)

    elif isinstance(value, dict):
        return build_search_map(value)

    elif isinstance(value, SCALAR_TYPES):
        return SearchAtom(None, [], [render_pattern(value)])

    else:
        raise InvalidRule(f'search identifier "{name}": unsupported value')


def build_identifiers(block: dict) -> dict[str, Named]:
    """
    build the named expression of each search identifier in the detection block,
    in lexicographic order by name.
    """
    identifiers: dict[str, Named] = {}
    names = {str(key): value for key, value in block.items() if key not in (CONDITION_KEY, TIMEFRAME_KEY)}
    for name, value in sorted(names.items()):
        try:
            expr = build_search(name, value)
        except InvalidSearch as e:
            raise InvalidSearch(f'search identifier "{name}": {e.msg}') from e
        identifiers[name] = Named(name, expr)
    return identifiers


@dataclass(frozen=True, eq=False)
class Detection:
    # the boolean tree of the rule's condition(s), with the search identifiers resolved.
    expr: Expression

    def evaluate(self, entry: LogEntry, options: Optional[MatchOptions] = None, short_circuit=True) -> Result:
        return self.expr.evaluate(entry, options, short_circuit=short_circuit)

    def matches(self, entry: LogEntry, options: Optional[MatchOptions] = None) -> bool:
        return self.expr.matches(entry, options)


def build_detection(block: Any) -> Detection:
    """
    build the expression tree of a rule from its detection block, like:

        detection:
            selection:
                EventID: 4688
            filter:
                User: SYSTEM
            condition: selection and not filter

    multiple conditions are alternatives: the detection matches when any of them does.

    raises:
      UnsupportedAggregation: if the detection uses a `timeframe`.
      InvalidRule: if the detection is malformed.
    """
    if not block:
        raise InvalidRule("missing detection")

    if not isinstance(block, dict):
        raise InvalidRule("detection must be a mapping")

    # Sigma only defines `timeframe` as a key of the detection block itself,
    # nested occurrences are field names within a search.
    if TIMEFRAME_KEY in block:
        raise UnsupportedAggregation()

    conditions = list_of_strings(block.get(CONDITION_KEY))
    if not conditions:
        raise InvalidRule("missing detection condition")

    identifiers = build_identifiers(block)

    exprs = [parse_condition(condition, identifiers) for condition in conditions]
    if len(exprs) == 1:
        return Detection(exprs[0])
    return Detection(Or(exprs))


@dataclass
class DetectionInput:
    """a log entry, with the log source it came from, for routing to applicable rules."""

    log_entry: LogEntry
    product: Optional[str] = None
    service: Optional[str] = None
    category: Optional[str] = None


def get_optional_strings(d: dict, key: str) -> Optional[list[str]]:
    value = d.get(key)
    if value is None:
        return None
    if isinstance(value, SCALAR_TYPES):
        return [str(value)]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise InvalidRule(f"{key} must be a list")


def get_optional_string(d: dict, key: str) -> Optional[str]:
    value = d.get(key)
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True, eq=False)
class Rule:
    title: str
    detection: Detection
    id: Optional[str] = None
    related: Optional[list[Relation]] = None
    status: Optional[Status] = None
    description: Optional[str] = None
    references: Optional[list[str]] = None
    author: Optional[str] = None
    date: Optional[SigmaDate] = None
    modified: Optional[SigmaDate] = None
    tags: Optional[list[str]] = None
    level: Optional[Level] = None
    logsource: Optional[LogSource] = None
    fields: Optional[list[str]] = None
    falsepositives: list[str] = dataclasses.field(default_factory=list)
    # top level keys that aren't standard fields.
    extra: Optional[dict[str, Any]] = None
    # the source document.
    definition: str = ""
    # the file the rule was loaded from, if any.
    path: Optional[Path] = None

    def __str__(self):
        return f"Rule(title={self.title})"

    def __repr__(self):
        return f"Rule(id={self.id}, title={self.title})"

    def evaluate(self, entry: LogEntry, options: Optional[MatchOptions] = None, short_circuit=True) -> Result:
        sigmatch.perf.counters["evaluate.rule"] += 1
        return self.detection.evaluate(entry, options, short_circuit=short_circuit)

    def matches(self, entry: LogEntry, options: Optional[MatchOptions] = None) -> bool:
        return bool(self.evaluate(entry, options))

    def applies_to(self, input: DetectionInput) -> bool:
        """
        is the rule written for the log source of the given input?
        a log source attribute only filters when both the rule and the input specify it.
        """
        if self.logsource is None:
            return True

        for attr in ("product", "service", "category"):
            wanted = getattr(self.logsource, attr)
            have = getattr(input, attr)
            if wanted and have and wanted.lower() != have.lower():
                return False
        return True

    @classmethod
    def from_dict(cls, d: Any, definition: str = "") -> "Rule":
        if not isinstance(d, dict):
            raise InvalidRule("parse sigma rule: rule must be a mapping")

        title = d.get("title")
        if not title:
            raise InvalidRule("parse sigma rule: missing title")
        title = str(title)

        def fail(msg: str):
            return InvalidRule(f'parse sigma rule "{title}": {msg}')

        try:
            detection = build_detection(d.get("detection"))
        except InvalidRule as e:
            # preserve the kind of error, like UnsupportedAggregation.
            raise type(e)(f'parse sigma rule "{title}": detection: {e.msg}') from e

        related: Optional[list[Relation]] = None
        if d.get("related") is not None:
            if not isinstance(d["related"], list):
                raise fail("related must be a list")

            related = []
            for i, relation in enumerate(d["related"]):
                if not relation:
                    continue
                if not isinstance(relation, dict):
                    raise fail(f"related[{i}]: must be a mapping")
                if not relation.get("id"):
                    raise fail(f"related[{i}]: missing id")
                if not relation.get("type"):
                    raise fail(f"related[{i}]: missing type")
                try:
                    related.append(Relation(id=str(relation["id"]), type=relation["type"]))
                except pydantic.ValidationError as e:
                    raise fail(f"related[{i}]: unsupported type {relation['type']}") from e

        status = d.get("status")
        if status is not None:
            try:
                status = Status(status)
            except ValueError as e:
                raise fail(f"unsupported status {status}") from e

        level = d.get("level")
        if level is not None:
            try:
                level = Level(level)
            except ValueError as e:
                raise fail(f"unsupported level {level}") from e

        logsource = d.get("logsource")
        if logsource is not None:
            if not isinstance(logsource, dict):
                raise fail("logsource must be a mapping")
            try:
                logsource = LogSource.model_validate(logsource)
            except pydantic.ValidationError as e:
                raise fail(f"logsource: {e}") from e

        dates: dict[str, Optional[SigmaDate]] = {}
        for key in ("date", "modified"):
            value = d.get(key)
            if value is None:
                dates[key] = None
                continue
            if not isinstance(value, (str, datetime.date)):
                raise fail(f"{key}: unsupported value {value}")
            try:
                dates[key] = SigmaDate.parse(value)
            except ValueError as e:
                raise fail(str(e)) from e

        extra = {k: v for k, v in d.items() if k not in META_KEYS}

        return cls(
            title=title,
            detection=detection,
            id=get_optional_string(d, "id"),
            related=related,
            status=status,
            description=get_optional_string(d, "description"),
            references=get_optional_strings(d, "references"),
            author=get_optional_string(d, "author"),
            date=dates["date"],
            modified=dates["modified"],
            tags=get_optional_strings(d, "tags"),
            level=level,
            logsource=logsource,
            fields=get_optional_strings(d, "fields"),
            falsepositives=list_of_strings(d.get("falsepositives")),
            extra=extra or None,
            definition=definition,
        )

    @staticmethod
    @lru_cache()
    def _get_yaml_loader():
        try:
            # prefer to use CSafeLoader to be fast.
            # on Linux, make sure you install libyaml-dev or similar
            loader = yaml.CSafeLoader
            logger.debug("using libyaml CSafeLoader.")
            return loader
        except AttributeError:
            logger.debug("unable to import libyaml CSafeLoader, falling back to Python yaml parser.")
            logger.debug("this will be slower to load rules.")
            return yaml.SafeLoader

    @classmethod
    def from_yaml(cls, s: str) -> "Rule":
        try:
            doc = yaml.load(s, Loader=cls._get_yaml_loader())
        except yaml.YAMLError as e:
            raise InvalidRule(f"parse sigma rule: {e}") from e
        return cls.from_dict(doc, s)

    @classmethod
    def from_yaml_file(cls, path) -> "Rule":
        """
        raises:
          InvalidRuleWithPath: if the rule is invalid, with the original error as `__cause__`
            so callers can recognize `UnsupportedAggregation`.
        """
        path = Path(path)
        try:
            rule = cls.from_yaml(path.read_bytes().decode("utf-8"))
        except InvalidRule as e:
            raise InvalidRuleWithPath(path, e.msg) from e
        except UnicodeDecodeError as e:
            raise InvalidRuleWithPath(path, str(e)) from e
        return dataclasses.replace(rule, path=path)


def parse_rule(text: str) -> Rule:
    """
    parse a Sigma rule from its YAML text.

    raises:
      InvalidRule: if the rule is malformed, with subclasses
        InvalidSearch (bad modifiers or patterns), InvalidCondition (bad condition),
        and UnsupportedAggregation (valid, but unsupported).
    """
    return Rule.from_yaml(text)


def is_unsupported_rule_error(e: InvalidRule) -> bool:
    """is the given error due to a rule using features this engine doesn't support?"""
    return isinstance(e, UnsupportedAggregation) or isinstance(e.__cause__, UnsupportedAggregation)


def ensure_rules_are_unique(rules: list[Rule]) -> None:
    seen = set()
    for rule in rules:
        if rule.id is None:
            continue
        if rule.id in seen:
            raise InvalidRuleSet(f"duplicate rule id: {rule.id} ({rule.title})")
        seen.add(rule.id)


class RuleSet:
    """
    a ruleset is initialized with a collection of rules,
    and routes log entries to the rules written for their log source.

    example:

        ruleset = RuleSet([
          Rule.from_yaml(...),
          Rule.from_yaml(...),
        ])
        matched = ruleset.match(DetectionInput(LogEntry(fields={...}), product="windows"))
    """

    def __init__(self, rules: list[Rule]):
        super().__init__()

        if len(rules) == 0:
            raise InvalidRuleSet("no rules selected")

        ensure_rules_are_unique(rules)
        self.rules = list(rules)

    def __len__(self):
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def __getitem__(self, key: str) -> Rule:
        """fetch a rule by its id or, failing that, its title."""
        for rule in self.rules:
            if rule.id == key:
                return rule
        for rule in self.rules:
            if rule.title == key:
                return rule
        raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        try:
            self[key]
        except KeyError:
            return False
        return True

    def filter_rules_by_meta(self, tag: str) -> "RuleSet":
        """
        return a new rule set with the rules whose title, id, or one of tags contains the given string.

        raises:
          InvalidRuleSet: if no rules are selected.
        """
        rules = []
        for rule in self.rules:
            candidates = [rule.title, rule.id or ""] + (rule.tags or [])
            for candidate in candidates:
                if tag in candidate:
                    logger.debug('using rule "%s", found tag: %s', rule.title, candidate)
                    rules.append(rule)
                    break
        return RuleSet(rules)

    def match(self, input: DetectionInput, options: Optional[MatchOptions] = None) -> list[Rule]:
        """find the rules, in rule set order, that match the given input."""
        return [
            rule for rule in self.rules if rule.applies_to(input) and rule.matches(input.log_entry, options=options)
        ]


def collect_rule_file_paths(rule_paths: list[Path]) -> list[Path]:
    """
    collect all rule file paths, including those in subdirectories.
    """
    rule_file_paths = []
    for rule_path in rule_paths:
        if not rule_path.exists():
            raise IOError(f"rule path {rule_path} does not exist or cannot be accessed")

        if rule_path.is_file():
            rule_file_paths.append(rule_path)
        elif rule_path.is_dir():
            logger.debug("reading rules from directory %s", rule_path)
            for root, dirs, files in os.walk(rule_path):
                # the .git and .github directories contain CI config, which include .yml files.
                # these are not rules.
                dirs[:] = sorted(d for d in dirs if not d.startswith(".git"))
                for file in sorted(files):
                    if not file.endswith((".yml", ".yaml")):
                        if not (file.startswith(".git") or file.endswith((".md", ".txt", ".json"))):
                            # expect to see .git* files, readme.md, LICENSE.txt, etc.
                            # other things maybe are rules, but are mis-named.
                            logger.warning("skipping non-.yml file: %s", file)
                        continue
                    rule_file_paths.append(Path(root) / file)
    return rule_file_paths


# a rule file, or a directory of rule files.
RulePath = Path


def on_load_rule_default(_path: RulePath, i: int, _total: int) -> None:
    return


def get_rules(
    rule_paths: list[RulePath],
    on_load_rule: Callable[[RulePath, int, int], None] = on_load_rule_default,
    skip_unsupported: bool = False,
) -> RuleSet:
    """
    args:
      rule_paths: list of paths to rules files or directories containing rules files
      on_load_rule: callback to invoke before a rule is loaded, use for progress or cancellation
      skip_unsupported: skip, rather than fail on, rules that use unsupported features, like aggregations.
    """
    # rule_paths may contain directory paths,
    # so search for file paths recursively.
    rule_file_paths = collect_rule_file_paths(rule_paths)

    rules: list[Rule] = []

    total_rule_count = len(rule_file_paths)
    for i, path in enumerate(rule_file_paths):
        on_load_rule(path, i, total_rule_count)

        try:
            rule = Rule.from_yaml_file(path)
        except InvalidRule as e:
            if skip_unsupported and is_unsupported_rule_error(e):
                logger.warning("skipping unsupported rule: %s", e)
                continue
            raise
        else:
            rules.append(rule)
            logger.debug("loaded rule: '%s' from: %s", rule.title, path)

    return RuleSet(rules)
