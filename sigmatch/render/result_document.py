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

import datetime
from typing import Union, Literal, Optional, TypeAlias

from pydantic import BaseModel, ConfigDict

import sigmatch.engine
from sigmatch.rules import Rule
from sigmatch.search import SearchAtom
from sigmatch.helpers import assert_never
from sigmatch.rules.meta import Level, Status, Relation, LogSource, FrozenModel
from sigmatch.capabilities import MatchResults


class Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LogSourceOptions(Model):
    product: Optional[str] = None
    service: Optional[str] = None
    category: Optional[str] = None


class Metadata(Model):
    timestamp: datetime.datetime
    version: str
    argv: Optional[tuple[str, ...]] = None
    input: str
    rules: tuple[str, ...]
    logsource: LogSourceOptions
    entry_count: int


class StatementType:
    AND = "and"
    OR = "or"
    NOT = "not"
    NAMED = "named"


class StatementNode(FrozenModel):
    """
    args:
      statement: the kind of logic node, like `and`.
      name: for named nodes, the search identifier.
    """

    type: Literal["statement"] = "statement"
    statement: str
    name: Optional[str] = None


class SearchNode(FrozenModel):
    type: Literal["search"] = "search"
    field: Optional[str] = None
    modifiers: tuple[str, ...]
    patterns: tuple[str, ...]


Node: TypeAlias = Union[StatementNode, SearchNode]


def node_from_sigmatch(node: sigmatch.engine.Expression) -> Node:
    if isinstance(node, SearchAtom):
        return SearchNode(field=node.field, modifiers=tuple(node.modifiers), patterns=tuple(node.patterns))

    elif isinstance(node, sigmatch.engine.Named):
        return StatementNode(statement=StatementType.NAMED, name=node.name)

    elif isinstance(node, (sigmatch.engine.And, sigmatch.engine.Or, sigmatch.engine.Not)):
        return StatementNode(statement=node.__class__.__name__.lower())

    else:
        assert_never(node)


class Match(FrozenModel):
    """
    args:
      success: did the node match?
      node: the logic node or search node.
      children: any children of the logic node. not relevant for searches, can be empty.
      value: for searches, the content of the field (or message) that was inspected.
    """

    success: bool
    node: Node
    children: tuple["Match", ...]
    value: Optional[str] = None

    @classmethod
    def from_sigmatch(cls, result: sigmatch.engine.Result) -> "Match":
        return cls(
            success=bool(result),
            node=node_from_sigmatch(result.statement),
            children=tuple(Match.from_sigmatch(child) for child in result.children),
            value=result.value,
        )


class RuleMetadata(FrozenModel):
    title: str
    id: Optional[str] = None
    status: Optional[Status] = None
    level: Optional[Level] = None
    description: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None
    modified: Optional[str] = None
    references: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    related: tuple[Relation, ...] = ()
    logsource: Optional[LogSource] = None
    falsepositives: tuple[str, ...] = ()
    path: Optional[str] = None

    @classmethod
    def from_sigmatch(cls, rule: Rule) -> "RuleMetadata":
        return cls(
            title=rule.title,
            id=rule.id,
            status=rule.status,
            level=rule.level,
            description=rule.description,
            author=rule.author,
            date=str(rule.date) if rule.date else None,
            modified=str(rule.modified) if rule.modified else None,
            references=tuple(rule.references or ()),
            tags=tuple(rule.tags or ()),
            related=tuple(rule.related or ()),
            logsource=rule.logsource,
            falsepositives=tuple(rule.falsepositives),
            path=str(rule.path) if rule.path else None,
        )


class RuleMatches(FrozenModel):
    """
    args:
        meta: the metadata from the rule
        source: the raw rule text
        matches: the line number of each matching log entry, and how it matched.
    """

    meta: RuleMetadata
    source: str
    matches: tuple[tuple[int, Match], ...]


class ResultDocument(FrozenModel):
    meta: Metadata
    rules: tuple[RuleMatches, ...]

    @classmethod
    def from_sigmatch(cls, meta: Metadata, matches: MatchResults) -> "ResultDocument":
        rule_matches = []
        for rule, results in matches.items():
            rule_matches.append(
                RuleMatches(
                    meta=RuleMetadata.from_sigmatch(rule),
                    source=rule.definition,
                    matches=tuple((line_number, Match.from_sigmatch(res)) for line_number, res in results),
                )
            )

        return ResultDocument(meta=meta, rules=tuple(rule_matches))
