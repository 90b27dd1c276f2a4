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
from typing import TYPE_CHECKING, Any, Union, Mapping, Iterator, Optional
from dataclasses import field, dataclass

import sigmatch.perf

if TYPE_CHECKING:
    # circular import, otherwise
    from sigmatch.search import SearchAtom


logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """
    a single log record to test rules against.

    `message` is the free-text message, searched by keyword (fieldless) searches.
    `fields` maps field names to their string values; lookups are case-insensitive.
    """

    message: str = ""
    fields: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # values may come straight from decoded JSON, like numbers, booleans, and nulls.
        self.message = _render_value(self.message)
        self.fields = {str(key): _render_value(value) for key, value in self.fields.items()}

    def get(self, name: str) -> str:
        """
        fetch the value of the first field whose name matches `name`, ignoring case.
        a missing field is the empty string.
        """
        lname = name.lower()
        for key, value in self.fields.items():
            if key.lower() == lname:
                return value
        return ""

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LogEntry":
        """
        accepts either the nested form:

            {"message": "...", "fields": {"EventID": "4688", ...}}

        or a flat record, where every key other than `message` is a field:

            {"message": "...", "EventID": 4688, ...}
        """
        message = d.get("message")
        if isinstance(d.get("fields"), Mapping):
            raw_fields = d["fields"]
        else:
            raw_fields = {k: v for k, v in d.items() if k != "message"}

        return cls(message=message, fields=dict(raw_fields))


def _render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        # match the spelling used in YAML and JSON documents
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return str(value)


@dataclass
class MatchOptions:
    # mapping from placeholder name to the literal values it expands to,
    # consulted by searches that use the `expand` modifier.
    placeholders: dict[str, list[str]] = field(default_factory=dict)


class Result:
    """
    represents the results of an evaluation of an expression against a log entry.

    instances of this class should behave like a bool,
    e.g. `assert Result(True, ...) == True`

    instances track additional metadata about evaluation results.
    they contain references to the expression node (e.g. an And statement),
     as well as the children Result instances.

    we need this so that we can render the tree of expressions and their results.
    """

    def __init__(
        self,
        success: bool,
        statement: Union["Statement", "SearchAtom"],
        children: list["Result"],
        value: Optional[str] = None,
    ):
        super().__init__()
        self.success = success
        self.statement = statement
        self.children = children
        # for searches: the field content that was inspected
        self.value = value

    def __eq__(self, other):
        if isinstance(other, bool):
            return self.success == other
        return False

    def __bool__(self):
        return self.success


class Statement:
    """
    superclass for structural nodes, such as and/or/not.
    this exists to provide a default impl for `__str__` and `__repr__`,
     and to declare the interface method `evaluate`
    """

    def __str__(self):
        return "%s(%s)" % (self.__class__.__name__.lower(), ", ".join(map(str, self.get_children())))

    def __repr__(self):
        return str(self)

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        return list(self.get_children()) == list(other.get_children())

    def evaluate(self, entry: LogEntry, options: Optional[MatchOptions] = None, short_circuit=True) -> Result:
        """
        classes that inherit `Statement` must implement `evaluate`

        args:
            short_circuit (bool): if true, then statements like and/or may short circuit.
        """
        raise NotImplementedError()

    def matches(self, entry: LogEntry, options: Optional[MatchOptions] = None) -> bool:
        return bool(self.evaluate(entry, options))

    def get_children(self) -> Iterator[Union["Statement", "SearchAtom"]]:
        if hasattr(self, "child"):
            yield self.child

        if hasattr(self, "children"):
            for child in getattr(self, "children"):
                yield child


# a node in the expression tree: either a structural statement or a search.
Expression = Union[Statement, "SearchAtom"]


class Named(Statement):
    """
    the expression of a search identifier, tagged with the identifier's name.
    the name is informational: matching delegates to the child.
    """

    def __init__(self, name: str, child: Expression):
        super().__init__()
        self.name = name
        self.child = child

    def __str__(self):
        return f"{self.name}({self.child})"

    def __eq__(self, other):
        return isinstance(other, Named) and self.name == other.name and self.child == other.child

    def evaluate(self, entry, options=None, short_circuit=True):
        sigmatch.perf.counters["evaluate.node"] += 1
        sigmatch.perf.counters["evaluate.node.named"] += 1

        result = self.child.evaluate(entry, options, short_circuit=short_circuit)
        return Result(result.success, self, [result])


class And(Statement):
    """
    match if all of the children evaluate to True.

    the order of evaluation is dictated by the property
    `And.children` (type: list[Statement|SearchAtom]).
    """

    def __init__(self, children: list[Expression]):
        super().__init__()
        self.children = children

    def evaluate(self, entry, options=None, short_circuit=True):
        sigmatch.perf.counters["evaluate.node"] += 1
        sigmatch.perf.counters["evaluate.node.and"] += 1

        if short_circuit:
            results = []
            for child in self.children:
                result = child.evaluate(entry, options, short_circuit=short_circuit)
                results.append(result)
                if not result:
                    # short circuit
                    return Result(False, self, results)

            return Result(True, self, results)
        else:
            results = [child.evaluate(entry, options, short_circuit=short_circuit) for child in self.children]
            success = all(results)
            return Result(success, self, results)


class Or(Statement):
    """
    match if any of the children evaluate to True.

    the order of evaluation is dictated by the property
    `Or.children` (type: list[Statement|SearchAtom]).
    """

    def __init__(self, children: list[Expression]):
        super().__init__()
        self.children = children

    def evaluate(self, entry, options=None, short_circuit=True):
        sigmatch.perf.counters["evaluate.node"] += 1
        sigmatch.perf.counters["evaluate.node.or"] += 1

        if short_circuit:
            results = []
            for child in self.children:
                result = child.evaluate(entry, options, short_circuit=short_circuit)
                results.append(result)
                if result:
                    # short circuit as soon as we hit one match
                    return Result(True, self, results)

            return Result(False, self, results)
        else:
            results = [child.evaluate(entry, options, short_circuit=short_circuit) for child in self.children]
            success = any(results)
            return Result(success, self, results)


class Not(Statement):
    """match only if the child evaluates to False."""

    def __init__(self, child: Expression):
        super().__init__()
        self.child = child

    def evaluate(self, entry, options=None, short_circuit=True):
        sigmatch.perf.counters["evaluate.node"] += 1
        sigmatch.perf.counters["evaluate.node.not"] += 1

        results = [self.child.evaluate(entry, options, short_circuit=short_circuit)]
        success = not results[0]
        return Result(success, self, results)
