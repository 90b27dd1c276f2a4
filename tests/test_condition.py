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

import pytest
from fixtures import make_entry

from sigmatch.engine import Or, And, Not, Named
from sigmatch.search import SearchAtom
from sigmatch.condition import tokenize, parse_condition
from sigmatch.exceptions import InvalidCondition, UnsupportedAggregation

A = Named("a", SearchAtom("A", [], ["1"]))
B = Named("b", SearchAtom("B", [], ["1"]))
C = Named("c", SearchAtom("C", [], ["1"]))
SEL_A = Named("selection_a", SearchAtom("A", [], ["1"]))
SEL_B = Named("selection_b", SearchAtom("B", [], ["1"]))
FILTER = Named("filter", SearchAtom("C", [], ["1"]))

IDENTIFIERS = {"a": A, "b": B, "c": C}
SELECTIONS = {"filter": FILTER, "selection_a": SEL_A, "selection_b": SEL_B}


def parse(condition, identifiers=IDENTIFIERS):
    return parse_condition(condition, identifiers)


def test_tokenize():
    assert tokenize("a and b") == ["a", "and", "b"]
    assert tokenize("(a or b)and not c") == ["(", "a", "or", "b", ")", "and", "not", "c"]
    assert tokenize("sel | count() > 5") == ["sel", "|", "count", "(", ")", ">", "5"]
    assert tokenize("  a\tand\nb ") == ["a", "and", "b"]


def test_identifier():
    assert parse("a") == A
    assert parse("a") is A


def test_and_or():
    assert parse("a and b") == And([A, B])
    assert parse("a or b") == Or([A, B])


def test_flatten():
    assert parse("a and b and c") == And([A, B, C])
    assert parse("a or b or c") == Or([A, B, C])


def test_precedence():
    # and binds tighter than or
    assert parse("a or b and c") == Or([A, And([B, C])])
    assert parse("a and b or c") == Or([And([A, B]), C])
    assert parse("a and b or b and c") == Or([And([A, B]), And([B, C])])


def test_parens():
    assert parse("(a or b) and c") == And([Or([A, B]), C])
    assert parse("a and (b or c)") == And([A, Or([B, C])])
    assert parse("((a))") == A


def test_not():
    assert parse("not a") == Not(A)
    assert parse("not a and b") == And([Not(A), B])
    assert parse("not (a and b)") == Not(And([A, B]))
    assert parse("not not a") == Not(Not(A))
    assert parse("a and not b or c") == Or([And([A, Not(B)]), C])


def test_quantifiers():
    assert parse("1 of selection_*", SELECTIONS) == Or([SEL_A, SEL_B])
    assert parse("all of selection_*", SELECTIONS) == And([SEL_A, SEL_B])
    assert parse("1 of them", SELECTIONS) == Or([FILTER, SEL_A, SEL_B])
    assert parse("all of them", SELECTIONS) == And([FILTER, SEL_A, SEL_B])
    assert parse("1 of selection_* and not filter", SELECTIONS) == And([Or([SEL_A, SEL_B]), Not(FILTER)])
    assert parse("not 1 of selection_*", SELECTIONS) == Not(Or([SEL_A, SEL_B]))


def test_quantifier_single_match_is_unwrapped():
    assert parse("1 of filter*", SELECTIONS) is FILTER
    assert parse("all of selection_a", SELECTIONS) is SEL_A
    assert parse("1 of them", {"a": A}) is A


def test_quantifier_patterns():
    # `*` is the only wildcard, and identifier names are case sensitive
    assert parse("1 of *_a", SELECTIONS) is SEL_A
    assert parse("1 of sel*_?", {"sel_?": A, "sel_b": B}) is A
    with pytest.raises(InvalidCondition):
        parse("1 of SELECTION_*", SELECTIONS)


def test_quantifier_laws():
    entries = [
        make_entry(A="1", B="1"),
        make_entry(A="1", B="0"),
        make_entry(A="0", B="1"),
        make_entry(A="0", B="0"),
    ]
    ids = {"a": A, "b": B}
    for entry in entries:
        assert parse("1 of them", ids).matches(entry) == parse("a or b", ids).matches(entry)
        assert parse("all of them", ids).matches(entry) == parse("a and b", ids).matches(entry)


def test_quantified_selections_match():
    assert parse("1 of selection_*", SELECTIONS).matches(make_entry(A="1")) is True
    assert parse("1 of selection_*", SELECTIONS).matches(make_entry(B="1")) is True
    assert parse("1 of selection_*", SELECTIONS).matches(make_entry(C="1")) is False
    assert parse("all of selection_*", SELECTIONS).matches(make_entry(A="1")) is False
    assert parse("all of selection_*", SELECTIONS).matches(make_entry(A="1", B="1")) is True


@pytest.mark.parametrize(
    "condition,message",
    [
        ("", "unexpected end of condition"),
        ("a and", "unexpected end of condition"),
        ("not", "unexpected end of condition"),
        ("(a or b", "missing ')'"),
        ("a or b)", 'unexpected ")"'),
        ("a b", 'unexpected "b"'),
        ("a and d", "unknown search identifier d"),
        ("A", "unknown search identifier A"),
        ("1 a", 'expected "of" after "1"'),
        ("all of", 'expected word after "all of"'),
        ("1 of x*", "1 of x* did not match any identifiers"),
        ("2 of them", "unknown search identifier 2"),
    ],
)
def test_invalid(condition, message):
    with pytest.raises(InvalidCondition) as e:
        parse(condition)
    assert e.value.msg == message


def test_aggregation():
    with pytest.raises(UnsupportedAggregation):
        parse("a | count() > 5")

    with pytest.raises(UnsupportedAggregation):
        parse("a and b | count(c) by d > 5")
