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

"""
search atoms: the leaves of a detection's expression tree.

a search atom is a field (or the free-text message), a list of field modifiers,
and a list of patterns, as written in a rule like:

    selection:
        CommandLine|windash|contains:
            - ' -enc '
            - ' -EncodedCommand '

the modifiers pick how the patterns are interpreted (glob, regular expression, CIDR)
and how they are transformed before matching (base64, windash, expand, ...).
patterns are compiled into matchers lazily, on first use.
"""

import re
import base64
import logging
import ipaddress
from enum import Enum
from typing import Union, Callable, Optional
from functools import lru_cache

import sigmatch.perf
from sigmatch.engine import Result, LogEntry, MatchOptions
from sigmatch.exceptions import InvalidSearch

logger = logging.getLogger(__name__)


MODIFIER_ALL = "all"
MODIFIER_BASE64 = "base64"
MODIFIER_BASE64OFFSET = "base64offset"
MODIFIER_CIDR = "cidr"
MODIFIER_CONTAINS = "contains"
MODIFIER_ENDSWITH = "endswith"
MODIFIER_EXPAND = "expand"
MODIFIER_RE = "re"
MODIFIER_STARTSWITH = "startswith"
MODIFIER_WINDASH = "windash"

VALID_MODIFIERS = (
    MODIFIER_ALL,
    MODIFIER_BASE64,
    MODIFIER_BASE64OFFSET,
    MODIFIER_CIDR,
    MODIFIER_CONTAINS,
    MODIFIER_ENDSWITH,
    MODIFIER_EXPAND,
    MODIFIER_RE,
    MODIFIER_STARTSWITH,
    MODIFIER_WINDASH,
)


class PatternType(str, Enum):
    GLOB = "glob"
    REGEX = "re"
    CIDR = "cidr"


# characters that Windows command line tools accept as the prefix of a flag,
# like `-c`, `/c`, and a few unicode look-alikes that sneak through copy/paste.
WINDOWS_PARAM_DASHES = ("-", "/", "–", "—", "―")

# a dash that starts a word, like the one in ` -c` but not the one in `foo-bar`.
WINDASH_PARAM = re.compile(r"\B[-/]\b", re.ASCII)

# when a string is embedded in a larger base64 blob, its encoding depends on its
# offset modulo three. after shifting the input by 0, 1 or 2 bytes,
# these many leading and trailing characters depend on the neighboring bytes, so they are trimmed.
BASE64_START_OFFSETS = (0, 2, 3)
BASE64_END_OFFSETS = (0, -3, -2)


def windash_permutations(s: str) -> list[str]:
    """
    render the given string once per Windows parameter dash,
    substituting the first dash that starts a word.

    `-c` becomes: `-c`, `/c`, `–c`, `—c`, `―c`.
    """
    return [WINDASH_PARAM.sub(lambda _: dash, s, count=1) for dash in WINDOWS_PARAM_DASHES]


def base64_offset_permutations(s: str) -> list[str]:
    """
    compute the three base64 encodings of the given string, one per byte alignment,
    with the characters that depend on surrounding data trimmed off.
    any of these appears in the base64 encoding of data that contains the string.
    """
    if not s:
        return []

    buf = s.encode("utf-8")
    ret = []
    for i in range(3):
        encoded = base64.b64encode(b" " * i + buf).decode("ascii")
        start = BASE64_START_OFFSETS[i]
        end = BASE64_END_OFFSETS[(len(buf) + i) % 3]
        ret.append(encoded[start : len(encoded) + end])
    return ret


def glob_to_regex(pattern: str) -> str:
    """translate a glob, where `*` is any run of characters and `?` is any single character."""
    return re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")


# inline flags at the start of a regular expression, like `(?i)`.
GLOBAL_INLINE_FLAGS = re.compile(r"^\(\?([aiLmsux]+)\)")


def scope_inline_flags(pattern: str) -> str:
    """
    rewrite leading global inline flags into a scoped group: `(?i)foo` -> `(?i:foo)`,
    because patterns get embedded within larger expressions,
    where global flags are only allowed at the very start.
    """
    m = GLOBAL_INLINE_FLAGS.match(pattern)
    if not m:
        return pattern
    return f"(?{m.group(1)}:{pattern[m.end() :]})"


def placeholder_name(pattern: str) -> str:
    """`%Admins_Workstations%` -> `Admins_Workstations`"""
    return pattern[len("%") : -len("%")]


@lru_cache(maxsize=4096)
def check_search(patterns: tuple[str, ...], modifiers: tuple[str, ...]) -> PatternType:
    """
    validate the given modifiers and patterns, returning how the patterns are interpreted.

    raises:
      InvalidSearch: with a description of the first problem found.
    """
    if not patterns:
        raise InvalidSearch("no patterns")

    pattern_type = PatternType.GLOB
    expand = False

    for i, modifier in enumerate(modifiers):
        if modifier == MODIFIER_RE:
            if pattern_type == PatternType.CIDR:
                raise InvalidSearch("modifiers re and cidr are mutually exclusive")
            pattern_type = PatternType.REGEX
        elif modifier == MODIFIER_CIDR:
            if pattern_type == PatternType.REGEX:
                raise InvalidSearch("modifiers re and cidr are mutually exclusive")
            pattern_type = PatternType.CIDR
        elif modifier == MODIFIER_EXPAND:
            expand = True
            if i != 0:
                raise InvalidSearch("expand can only be the first modifier")
            for pattern in patterns:
                if not (pattern.startswith("%") and pattern.endswith("%")):
                    raise InvalidSearch(f"placeholder \"{pattern}\" must start and end with '%'")
        elif modifier in VALID_MODIFIERS:
            continue
        else:
            raise InvalidSearch(f'unknown modifier "{modifier}"')

    if expand:
        # placeholder values are only known at match time.
        return pattern_type

    if pattern_type == PatternType.REGEX:
        for pattern in patterns:
            try:
                re.compile(f"(?:{scope_inline_flags(pattern)})")
            except re.error as e:
                raise InvalidSearch(f"pattern {pattern}: {e}") from e

    elif pattern_type == PatternType.CIDR:
        for pattern in patterns:
            try:
                ipaddress.ip_network(pattern, strict=False)
            except ValueError as e:
                raise InvalidSearch(f"pattern {pattern}: not a valid CIDR") from e

    return pattern_type


class CidrMatcher:
    """match IP addresses (or networks) contained in any of the given networks of the same family."""

    def __init__(self, patterns: tuple[str, ...]):
        self.networks: list[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]] = []
        for pattern in patterns:
            try:
                self.networks.append(ipaddress.ip_network(pattern, strict=False))
            except ValueError:
                logger.debug("skipping invalid CIDR pattern: %s", pattern)

    def __call__(self, s: str) -> bool:
        try:
            candidate = ipaddress.ip_network(s, strict=False)
        except ValueError:
            return False

        for network in self.networks:
            if network.version != candidate.version:
                continue
            # both IPv4 or both IPv6, checked above.
            if candidate.subnet_of(network):  # type: ignore [arg-type]
                return True
        return False


class RegexMatcher:
    """
    match strings against case-insensitive regular expressions.

    when `require_all` is set, every expression must match;
    otherwise there is a single expression, an alternation of the patterns.
    """

    def __init__(self, expressions: list[str], require_all: bool):
        self.regexes = [re.compile(expression, re.IGNORECASE) for expression in expressions]
        self.require_all = require_all

    def __call__(self, s: str) -> bool:
        if self.require_all:
            return all(regex.search(s) for regex in self.regexes)
        return any(regex.search(s) for regex in self.regexes)


def translate_pattern(pattern: str, modifiers: tuple[str, ...], field: Optional[str]) -> str:
    """render a single (non-CIDR) pattern as a regular expression, per the given modifiers."""
    if MODIFIER_RE in modifiers:
        return f"(?:{scope_inline_flags(pattern)})"

    if MODIFIER_BASE64OFFSET in modifiers:
        return "(?:" + "|".join(map(re.escape, base64_offset_permutations(pattern))) + ")"

    if MODIFIER_BASE64 in modifiers:
        pattern = base64.b64encode(pattern.encode("utf-8")).decode("ascii")

    if MODIFIER_WINDASH in modifiers:
        expression = "(?:" + "|".join(map(re.escape, windash_permutations(pattern))) + ")"
    else:
        expression = glob_to_regex(pattern)

    # keyword searches against the message are substring searches,
    # while field values must match in full, unless relaxed by a modifier.
    unanchored = not field or MODIFIER_CONTAINS in modifiers
    prefix = "" if unanchored or MODIFIER_ENDSWITH in modifiers else "^"
    suffix = "" if unanchored or MODIFIER_STARTSWITH in modifiers else r"\Z"

    return f"{prefix}(?:{expression}){suffix}"


Matcher = Callable[[str], bool]


@lru_cache(maxsize=4096)
def compile_search(patterns: tuple[str, ...], modifiers: tuple[str, ...], field: Optional[str]) -> Matcher:
    """
    compile the given resolved patterns into a matcher over a single string value.

    the result depends only on the arguments, so it's memoized:
    atoms with the same field, modifiers, and (expanded) patterns share a matcher.
    """
    sigmatch.perf.counters["compile.search"] += 1

    if MODIFIER_CIDR in modifiers:
        return CidrMatcher(patterns)

    expressions = [translate_pattern(pattern, modifiers, field) for pattern in patterns]
    if MODIFIER_ALL in modifiers:
        return RegexMatcher(expressions, require_all=True)
    else:
        return RegexMatcher(["|".join(expressions)], require_all=False)


class SearchAtom:
    """
    match a field (or, when there's no field, the message) of a log entry against patterns.

    args:
      field: the name of the field, compared case-insensitively, or None for the message.
      modifiers: the field modifiers, in order, like `["contains", "all"]`.
      patterns: the patterns, at least one.
    """

    def __init__(self, field: Optional[str], modifiers: list[str], patterns: list[str]):
        super().__init__()
        self.field = field
        self.modifiers = modifiers
        self.patterns = patterns

    def __str__(self):
        key = "|".join([self.field or ""] + list(self.modifiers))
        patterns = ", ".join(map(repr, self.patterns))
        if key:
            return f"search({key}: {patterns})"
        else:
            return f"search({patterns})"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        return hash((self.field, tuple(self.modifiers), tuple(self.patterns)))

    def __eq__(self, other):
        if not isinstance(other, SearchAtom):
            return False
        return (
            self.field == other.field
            and list(self.modifiers) == list(other.modifiers)
            and list(self.patterns) == list(other.patterns)
        )

    def get_children(self):
        yield from ()

    def validate(self) -> PatternType:
        """
        raises:
          InvalidSearch: if the modifiers or patterns are not valid.
        """
        return check_search(tuple(self.patterns), tuple(self.modifiers))

    def get_patterns(self, options: Optional[MatchOptions] = None) -> list[str]:
        """
        fetch the patterns to match, after substituting placeholders with
        the values provided by the caller (`expand` modifier).
        unknown placeholders contribute no patterns.
        """
        if MODIFIER_EXPAND not in self.modifiers:
            return list(self.patterns)

        placeholders = options.placeholders if options is not None else {}
        patterns: list[str] = []
        for pattern in self.patterns:
            patterns.extend(placeholders.get(placeholder_name(pattern), []))
        return patterns

    def get_value(self, entry: LogEntry) -> str:
        if not self.field:
            return entry.message
        return entry.get(self.field)

    def evaluate(self, entry: LogEntry, options: Optional[MatchOptions] = None, short_circuit=True) -> Result:
        sigmatch.perf.counters["evaluate.node"] += 1
        sigmatch.perf.counters["evaluate.node.search"] += 1

        value = self.get_value(entry)

        try:
            self.validate()
        except InvalidSearch as e:
            # rules are validated when parsed, so this is an atom built by hand.
            # fail closed: an invalid search never matches.
            logger.debug("%s: not matching: %s", self, e)
            return Result(False, self, [], value=value)

        patterns = self.get_patterns(options)
        if not patterns:
            return Result(False, self, [], value=value)

        try:
            matcher = compile_search(tuple(patterns), tuple(self.modifiers), self.field or None)
        except re.error as e:
            # such as expanded placeholder values that aren't valid regular expressions,
            # or patterns that clash once combined (duplicate group names).
            logger.debug("%s: not matching: %s", self, e)
            return Result(False, self, [], value=value)

        return Result(matcher(value), self, [], value=value)

    def matches(self, entry: LogEntry, options: Optional[MatchOptions] = None) -> bool:
        return bool(self.evaluate(entry, options))
