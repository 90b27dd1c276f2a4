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

import re
import collections

import rich.table
from rich.markup import escape

import sigmatch.render.utils as rutils
import sigmatch.render.result_document as rd
from sigmatch.render.utils import Console
from sigmatch.capabilities import MatchResults

# like: attack.t1059 or attack.t1059.001
ATTACK_TECHNIQUE_TAG = re.compile(r"^attack\.(t\d{4}(?:\.\d{3})?)$", re.IGNORECASE)


def bold_markup(s) -> str:
    """
    Generate Rich markup in a bold style.

    The resulting string should be passed to a Rich renderable
    and/or printed via Rich or the markup will be visible to the user.
    """
    return f"[cyan]{s}[/cyan]"


def link_markup(s: str, href: str) -> str:
    """
    Generate Rich markup for a clickable hyperlink.
    This works in many modern terminals.
    When it doesn't work, the fallback is just to show the link name (s),
     as if it was not a link.
    """
    return f"[link={href}]{s}[/link]"


def width(s: str, character_count: int) -> str:
    """pad the given string to at least `character_count`"""
    if len(s) < character_count:
        return s + " " * (character_count - len(s))
    else:
        return s


def render_meta(doc: rd.ResultDocument, console: Console):
    rows = [
        ("input", doc.meta.input),
        ("entries", str(doc.meta.entry_count)),
        ("rules", "\n".join(doc.meta.rules)),
    ]
    for attr in ("product", "service", "category"):
        value = getattr(doc.meta.logsource, attr)
        if value:
            rows.append((attr, value))

    table = rich.table.Table(show_header=False, min_width=100)
    table.add_column()
    table.add_column()

    for key, value in rows:
        table.add_row(key, escape(value))

    console.print(table)


def render_attack_link(id: str) -> str:
    url = f"https://attack.mitre.org/techniques/{id.upper().replace('.', '/')}/"
    return rf"\[{link_markup(id.upper(), url)}]"


def render_attack(doc: rd.ResultDocument, console: Console):
    """
    example::

        +------------------------+----------------------------------------------------------------------+
        | ATT&CK Technique       | Rule                                                                 |
        |------------------------+----------------------------------------------------------------------|
        | [T1033]                | Whoami Execution                                                     |
        +------------------------+----------------------------------------------------------------------+
    """
    techniques = collections.defaultdict(set)
    for rule in doc.rules:
        for tag in rule.meta.tags:
            m = ATTACK_TECHNIQUE_TAG.match(tag)
            if m:
                techniques[m.group(1).upper()].add(rule.meta.title)

    rows = []
    for technique, titles in sorted(techniques.items()):
        rows.append((render_attack_link(technique), escape("\n".join(sorted(titles)))))

    if rows:
        table = rich.table.Table(min_width=100)
        table.add_column(width("ATT&CK Technique", 20))
        table.add_column("Rule")

        for row in rows:
            table.add_row(*row)

        console.print(table)


def render_detections(doc: rd.ResultDocument, console: Console):
    """
    example::

        +------------------------------------------+----------+--------------------------------------+---------+
        | Rule                                     | Level    | ID                                   | Matches |
        |------------------------------------------+----------+--------------------------------------+---------|
        | Whoami Execution                         | high     | e28a5a99-da44-436d-b7a0-2afc20a5f413 | 2       |
        +------------------------------------------+----------+--------------------------------------+---------+
    """
    rows = []
    for rule in doc.rules:
        rows.append(
            (
                bold_markup(escape(rule.meta.title)),
                rutils.format_level(rule.meta.level),
                rule.meta.id or "",
                str(len(rule.matches)),
            )
        )

    if rows:
        table = rich.table.Table(min_width=100)
        table.add_column(width("Rule", 40))
        table.add_column("Level")
        table.add_column("ID")
        table.add_column("Matches", justify="right")

        for row in rows:
            table.add_row(*row)

        console.print(table)
    else:
        console.print(bold_markup("no matches found"))


def render_default(doc: rd.ResultDocument) -> str:
    console = Console(highlight=False)

    with console.capture() as capture:
        render_meta(doc, console)
        render_attack(doc, console)
        render_detections(doc, console)

    return capture.get()


def render(meta: rd.Metadata, matches: MatchResults) -> str:
    doc = rd.ResultDocument.from_sigmatch(meta, matches)
    return render_default(doc)
