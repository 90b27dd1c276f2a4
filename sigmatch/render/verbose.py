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

from rich.text import Text
from rich.table import Table

import sigmatch.render.utils as rutils
import sigmatch.render.result_document as rd
from sigmatch.helpers import assert_never
from sigmatch.render.utils import Console
from sigmatch.capabilities import MatchResults

logger = logging.getLogger(__name__)


# display nodes that successfully evaluated against the log entry.
MODE_SUCCESS = "success"

# display nodes that did not evaluate to True against the log entry.
# this is useful when rendering the logic tree under a `not` node.
MODE_FAILURE = "failure"


def render_statement(console: Console, statement: rd.StatementNode, indent: int):
    console.write("  " * indent)

    if statement.statement == rd.StatementType.NAMED:
        # emit `selection:` rather than `named:`
        console.write(rutils.bold(statement.name or ""))
    else:
        # emit `and:`  `or:`  `not:`
        console.write(statement.statement)

    console.writeln(":")


def render_search(console: Console, match: rd.Match, search: rd.SearchNode, indent: int):
    console.write("  " * indent)

    key = "|".join([search.field or ""] + list(search.modifiers))
    patterns = ", ".join(map(repr, search.patterns))
    if key:
        console.write(Text(f"{key}: "))
    else:
        console.write("keywords: ")
    console.write(Text(patterns))

    if match.value:
        # the field content that was inspected
        console.write(" = ")
        console.write(Text(repr(match.value), style="dim"))

    console.writeln()


def render_node(console: Console, match: rd.Match, node: rd.Node, indent: int):
    if isinstance(node, rd.StatementNode):
        render_statement(console, node, indent=indent)
    elif isinstance(node, rd.SearchNode):
        render_search(console, match, node, indent=indent)
    else:
        assert_never(node)


def render_match(console: Console, match: rd.Match, indent=0, mode=MODE_SUCCESS):
    child_mode = mode
    is_not = isinstance(match.node, rd.StatementNode) and match.node.statement == rd.StatementType.NOT

    if mode == MODE_SUCCESS:
        # display only nodes that evaluated successfully.
        if not match.success:
            return

        # not statement, so invert the child mode to show failed evaluations
        if is_not:
            child_mode = MODE_FAILURE

    elif mode == MODE_FAILURE:
        # display only nodes that did not evaluate to True
        if match.success:
            return

        # not statement, so invert the child mode to show successful evaluations
        if is_not:
            child_mode = MODE_SUCCESS
    else:
        raise RuntimeError("unexpected mode: " + mode)

    render_node(console, match, match.node, indent=indent)

    for child in match.children:
        render_match(console, child, indent=indent + 1, mode=child_mode)


def render_rule_meta(console: Console, rule: rd.RuleMatches):
    rows = []
    meta = rule.meta

    if meta.id:
        rows.append(("id", meta.id))
    if meta.level:
        rows.append(("level", rutils.format_level(meta.level)))
    if meta.status:
        rows.append(("status", meta.status.value))
    if meta.author:
        rows.append(("author", meta.author))
    if meta.date:
        rows.append(("date", meta.date))
    if meta.logsource:
        logsource = ", ".join(
            f"{attr}: {getattr(meta.logsource, attr)}"
            for attr in ("product", "service", "category")
            if getattr(meta.logsource, attr)
        )
        if logsource:
            rows.append(("logsource", logsource))
    if meta.tags:
        rows.append(("tags", ", ".join(meta.tags)))
    if meta.references:
        rows.append(("references", "\n".join(meta.references)))
    if meta.falsepositives:
        rows.append(("false positives", "\n".join(meta.falsepositives)))
    if meta.description:
        rows.append(("description", meta.description.strip()))
    if meta.path:
        rows.append(("path", meta.path))

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="dim")
    grid.add_column()

    for key, value in rows:
        # metadata is free text, not markup.
        grid.add_row(key, value if isinstance(value, Text) else Text(value))

    console.writeln(grid)


def render_rules(console: Console, doc: rd.ResultDocument):
    """
    like:

        Whoami Execution (2 matches)
        id        e28a5a99-da44-436d-b7a0-2afc20a5f413
        level     high
        logsource product: windows, category: process_creation
        entry @ line 3
          selection:
            Image|endswith: '\\whoami.exe' = 'C:\\Windows\\System32\\whoami.exe'
    """
    if not doc.rules:
        console.writeln(rutils.bold("no matches found"))
        return

    for rule in doc.rules:
        count = len(rule.matches)
        if count == 1:
            title = rutils.bold(rule.meta.title)
        else:
            title = Text.assemble(rutils.bold(rule.meta.title), f" ({count} matches)")

        console.writeln(title)
        render_rule_meta(console, rule)

        for line_number, match in rule.matches:
            console.writeln(f"entry @ line {line_number}")
            render_match(console, match, indent=1)

        console.writeln()


def render_meta(console: Console, doc: rd.ResultDocument):
    rows = [
        ("timestamp", str(doc.meta.timestamp)),
        ("version", doc.meta.version),
        ("input", doc.meta.input),
        ("entries", str(doc.meta.entry_count)),
        ("rules", "\n".join(doc.meta.rules)),
    ]
    for attr in ("product", "service", "category"):
        value = getattr(doc.meta.logsource, attr)
        if value:
            rows.append((attr, value))

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="dim")
    grid.add_column()

    for key, value in rows:
        # metadata is free text, not markup.
        grid.add_row(key, value if isinstance(value, Text) else Text(value))

    console.writeln(grid)


def render_verbose(doc: rd.ResultDocument) -> str:
    console = Console(highlight=False)

    with console.capture() as capture:
        render_meta(console, doc)
        console.writeln()
        render_rules(console, doc)

    return capture.get()


def render(meta: rd.Metadata, matches: MatchResults) -> str:
    return render_verbose(rd.ResultDocument.from_sigmatch(meta, matches))
