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


class InvalidRule(ValueError):
    def __init__(self, msg):
        super().__init__()
        self.msg = msg

    def __str__(self):
        return f"invalid rule: {self.msg}"

    def __repr__(self):
        return str(self)


class InvalidRuleWithPath(InvalidRule):
    def __init__(self, path, msg):
        super().__init__(msg)
        self.path = path
        self.msg = msg
        self.__cause__ = None

    def __str__(self):
        return f"invalid rule: {self.path}: {self.msg}"


class InvalidSearch(InvalidRule):
    """a search atom carries an unknown modifier or a pattern that doesn't fit its modifiers."""

    def __str__(self):
        return f"invalid search: {self.msg}"


class InvalidCondition(InvalidRule):
    """the condition string of a detection cannot be parsed."""

    def __str__(self):
        return f"invalid condition: {self.msg}"


class UnsupportedAggregation(InvalidRule):
    """
    the rule is valid Sigma, but uses aggregation (`timeframe`, `| count()`, `near`...)
    which this engine doesn't evaluate.
    """

    def __init__(self, msg="aggregation expressions not supported"):
        super().__init__(msg)

    def __str__(self):
        return f"unsupported rule: {self.msg}"


class InvalidRuleSet(ValueError):
    def __init__(self, msg):
        super().__init__()
        self.msg = msg

    def __str__(self):
        return f"invalid rule set: {self.msg}"

    def __repr__(self):
        return str(self)


class InvalidLogEntry(ValueError):
    def __init__(self, path, line_number: int, msg):
        super().__init__()
        self.path = path
        self.line_number = line_number
        self.msg = msg

    def __str__(self):
        return f"invalid log entry: {self.path}:{self.line_number}: {self.msg}"

    def __repr__(self):
        return str(self)
