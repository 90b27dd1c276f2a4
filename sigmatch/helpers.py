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

import gzip
import logging
from typing import Any, BinaryIO, Iterator, NoReturn
from pathlib import Path

import yaml
import msgspec.json
from rich.console import Console
from rich.progress import (
    Task,
    Text,
    Progress,
    BarColumn,
    TextColumn,
    SpinnerColumn,
    ProgressColumn,
    TimeElapsedColumn,
    MofNCompleteColumn,
    TaskProgressColumn,
)

from sigmatch.engine import LogEntry
from sigmatch.exceptions import InvalidLogEntry

logger = logging.getLogger("sigmatch")


# shared console used to redirect logging to stderr
log_console: Console = Console(stderr=True)


def assert_never(value) -> NoReturn:
    # careful: python -O will remove this assertion.
    # but this is only used for type checking, so it's ok.
    assert False, f"Unhandled value: {value} ({type(value).__name__})"  # noqa: B011


def decode_json_lines(path: Path, fd: BinaryIO | gzip.GzipFile) -> Iterator[tuple[int, LogEntry]]:
    """
    decode the log entries of a JSON-lines document, along with their 1-based line numbers.
    blank lines are skipped.

    raises:
      InvalidLogEntry: if a line isn't a JSON object.
    """
    for i, line in enumerate(fd, start=1):
        line = line.strip()
        if not line:
            continue

        try:
            obj = msgspec.json.decode(line)
        except msgspec.DecodeError as e:
            raise InvalidLogEntry(path, i, str(e)) from e

        if not isinstance(obj, dict):
            raise InvalidLogEntry(path, i, f"expected an object, found: {type(obj).__name__}")

        yield i, LogEntry.from_dict(obj)


def load_jsonl_from_path(jsonl_path: Path) -> Iterator[tuple[int, LogEntry]]:
    """load the log entries from the given file, which may be gzip compressed."""
    try:
        with gzip.open(jsonl_path, "rb") as fg:
            # trigger the gzip header check before yielding anything.
            fg.peek(1)
            yield from decode_json_lines(jsonl_path, fg)
    except gzip.BadGzipFile:
        with jsonl_path.open(mode="rb") as f:
            yield from decode_json_lines(jsonl_path, f)


def load_placeholders_from_path(path: Path) -> dict[str, list[str]]:
    """
    load placeholder values from a YAML mapping like:

        Admins_Workstations:
          - 'OFFSEC-WS-01'
          - 'OFFSEC-WS-02'
        Domain_Controllers: 'DC01'

    raises:
      ValueError: if the document isn't a mapping from names to strings or lists of strings.
    """
    try:
        doc: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"{path}: {e}") from e

    if doc is None:
        return {}

    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a mapping of placeholder names to values")

    placeholders: dict[str, list[str]] = {}
    for name, value in doc.items():
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            placeholders[str(name)] = [str(value)]
        elif isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
            placeholders[str(name)] = [str(v) for v in value]
        else:
            raise ValueError(f"{path}: placeholder {name}: expected a string or list of strings")

    logger.debug("loaded %d placeholders from %s", len(placeholders), path)
    return placeholders


class RateColumn(ProgressColumn):
    """Renders speed column in progress bar."""

    def render(self, task: "Task") -> Text:
        speed = f"{task.speed:>.1f}" if task.speed else "00.0"
        unit = task.fields.get("unit", "it")
        return Text.from_markup(f"[progress.data.speed]{speed} {unit}/s")


class MofNCompleteColumnWithUnit(MofNCompleteColumn):
    """Renders completed/total count column with a unit."""

    def render(self, task: "Task") -> Text:
        ret = super().render(task)
        unit = task.fields.get("unit")
        return ret.append(f" {unit}") if unit else ret


class SigmatchProgressBar(Progress):
    @classmethod
    def get_default_columns(cls):
        return (
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TaskProgressColumn(),
            BarColumn(),
            MofNCompleteColumnWithUnit(),
            "•",
            TimeElapsedColumn(),
            "•",
            RateColumn(),
        )
