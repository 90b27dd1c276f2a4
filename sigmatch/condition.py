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
parse the condition of a detection, like:

    selection and not (filter_main or 1 of filter_optional_*)

into an expression tree, given the expressions of the search identifiers.

grammar, from loosest to tightest binding:

    expr   := unary (("and" | "or") unary)*       # "or" binds looser than "and"
    unary  := "(" expr ")"
            | "not" unary
            | ("1" | "all") "of" (pattern | "them")
            | identifier

chains of the same operator are flattened, so `a and b and c` is a single `And` with three children.
the pipe (`|`) introduces aggregations (`| count() > 5`), which are not supported.
"""

import re
import logging
from typing import Optional

from sigmatch.engine import Or, And, Not, Named, Expression
from sigmatch.exceptions import InvalidCondition, UnsupportedAggregation

logger = logging.getLogger(__name__)


# parentheses and pipes are tokens on their own, regardless of whitespace;
# everything else is split on whitespace.
TOKEN = re.compile(r"[()|]|[^()|\s]+")

OPERATOR_PRECEDENCE = {
    "or": 0,
    "and": 1,
}

# the precedence of anything that isn't a binary operator.
NOT_AN_OPERATOR = -1


def tokenize(condition: str) -> list[str]:
    return TOKEN.findall(condition)


def get_precedence(token: str) -> int:
    return OPERATOR_PRECEDENCE.get(token, NOT_AN_OPERATOR)


def identifier_pattern_to_regex(pattern: str) -> re.Pattern:
    """translate an identifier pattern like `selection_*`, where `*` matches any run of characters."""
    return re.compile(".*".join(map(re.escape, pattern.split("*"))))


class ConditionParser:
    """
    a precedence climbing parser over the tokens of a single condition.

    args:
      condition: the condition string.
      identifiers: mapping from search identifier name to its expression, in a stable order.
    """

    def __init__(self, condition: str, identifiers: dict[str, Named]):
        super().__init__()
        self.condition = condition
        self.identifiers = identifiers
        self.tokens = tokenize(condition)
        self.offset = 0

    def peek(self) -> Optional[str]:
        if self.offset >= len(self.tokens):
            return None
        return self.tokens[self.offset]

    def next(self) -> Optional[str]:
        token = self.peek()
        if token is not None:
            self.offset += 1
        return token

    def parse(self) -> Expression:
        expr = self.parse_expression()
        token = self.next()
        if token is not None:
            raise InvalidCondition(f'unexpected "{token}"')
        return expr

    def parse_expression(self) -> Expression:
        return self.parse_binary_trail(self.parse_unary(), 0)

    def parse_unary(self) -> Expression:
        token = self.next()
        if token is None:
            raise InvalidCondition("unexpected end of condition")

        if token == "(":
            expr = self.parse_expression()
            if self.next() != ")":
                raise InvalidCondition("missing ')'")
            return expr

        elif token == "not":
            return Not(self.parse_unary())

        elif token in ("1", "all"):
            return self.parse_quantifier(token)

        elif token in self.identifiers:
            return self.identifiers[token]

        else:
            raise InvalidCondition(f"unknown search identifier {token}")

    def parse_quantifier(self, quantifier: str) -> Expression:
        """
        parse the remainder of `1 of selection_*` or `all of them`,
        after the quantifier (`1` or `all`) has been consumed.
        """
        of = self.next()
        if of != "of":
            raise InvalidCondition(f'expected "of" after "{quantifier}"')

        pattern = self.next()
        if pattern is None:
            raise InvalidCondition(f'expected word after "{quantifier} of"')

        if pattern == "them":
            candidates = list(self.identifiers.values())
        else:
            regex = identifier_pattern_to_regex(pattern)
            candidates = [expr for name, expr in self.identifiers.items() if regex.fullmatch(name)]

        if not candidates:
            raise InvalidCondition(f"{quantifier} of {pattern} did not match any identifiers")

        logger.debug("%s of %s: %s", quantifier, pattern, ", ".join(c.name for c in candidates))

        if len(candidates) == 1:
            return candidates[0]

        if quantifier == "1":
            return Or(candidates)
        else:
            return And(candidates)

    def parse_binary_trail(self, lhs: Expression, min_precedence: int) -> Expression:
        """
        consume binary operators (and their right hand sides) that bind at least as tightly as `min_precedence`,
        folding them into `lhs`.
        """
        while True:
            op = self.peek()
            if op is None:
                return lhs

            if op == "|":
                raise UnsupportedAggregation()

            precedence = get_precedence(op)
            if precedence < min_precedence:
                # leave the token for our caller, like a `)` or a looser operator.
                return lhs
            self.next()

            rhs = self.parse_unary()

            while True:
                next_op = self.peek()
                if next_op is None:
                    break

                if get_precedence(next_op) <= precedence:
                    break

                rhs = self.parse_binary_trail(rhs, precedence + 1)

            if op == "and":
                lhs = And(lhs.children + [rhs]) if isinstance(lhs, And) else And([lhs, rhs])
            else:
                lhs = Or(lhs.children + [rhs]) if isinstance(lhs, Or) else Or([lhs, rhs])


def parse_condition(condition: str, identifiers: dict[str, Named]) -> Expression:
    """
    parse the given condition into an expression tree.

    raises:
      InvalidCondition: if the condition is malformed or refers to unknown identifiers.
      UnsupportedAggregation: if the condition uses aggregation (`|`).
    """
    return ConditionParser(condition, identifiers).parse()
