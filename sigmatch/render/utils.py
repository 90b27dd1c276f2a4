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

import rich.console
from rich.text import Text

from sigmatch.rules.meta import Level


def bold(s: str) -> Text:
    """draw attention to the given string"""
    return Text(s, style="cyan")


def mute(s: str) -> Text:
    """draw attention away from the given string"""
    return Text(s, style="dim")


LEVEL_STYLES = {
    Level.INFORMATIONAL: "dim",
    Level.LOW: "green",
    Level.MEDIUM: "yellow",
    Level.HIGH: "red",
    Level.CRITICAL: "bold red",
}


def format_level(level) -> Text:
    if level is None:
        return mute("-")
    return Text(level.value, style=LEVEL_STYLES[level])


class Console(rich.console.Console):
    def writeln(self, *args, **kwargs) -> None:
        """
        prints the text with a new line at the end.
        """
        return self.print(*args, **kwargs)

    def write(self, *args, **kwargs) -> None:
        """
        prints the text without a new line at the end.
        """
        return self.print(*args, **kwargs, end="")
