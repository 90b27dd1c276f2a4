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

from fixtures import make_entry

import sigmatch.perf
from sigmatch.engine import Or, And, Not, Named, Result, LogEntry
from sigmatch.search import SearchAtom

FOO = SearchAtom("Image", [], ["foo"])
BAR = SearchAtom("Image", [], ["bar"])
BAZ = SearchAtom("User", [], ["baz"])

E_FOO = make_entry(Image="foo")
E_BAR = make_entry(Image="bar", User="baz")
E_NONE = make_entry(Image="qux")


def test_and():
    assert bool(And([FOO]).evaluate(E_FOO)) is True
    assert bool(And([FOO]).evaluate(E_NONE)) is False
    assert bool(And([BAR, BAZ]).evaluate(E_BAR)) is True
    assert bool(And([FOO, BAZ]).evaluate(E_BAR)) is False
    assert bool(And([FOO, BAR]).evaluate(E_FOO)) is False


def test_or():
    assert bool(Or([FOO]).evaluate(E_FOO)) is True
    assert bool(Or([FOO]).evaluate(E_NONE)) is False
    assert bool(Or([FOO, BAR]).evaluate(E_FOO)) is True
    assert bool(Or([FOO, BAR]).evaluate(E_BAR)) is True
    assert bool(Or([FOO, BAR]).evaluate(E_NONE)) is False


def test_not():
    assert bool(Not(FOO).evaluate(E_FOO)) is False
    assert bool(Not(FOO).evaluate(E_NONE)) is True
    assert bool(Not(Not(FOO)).evaluate(E_FOO)) is True


def test_named():
    # the name doesn't participate in matching
    assert bool(Named("selection", FOO).evaluate(E_FOO)) is True
    assert bool(Named("selection", FOO).evaluate(E_NONE)) is False
    assert str(Named("selection", FOO)) == "selection(search(Image: 'foo'))"


def test_complex():
    assert True is bool(Or([And([FOO, BAZ]), Or([BAR, Not(BAZ)])]).evaluate(E_BAR))
    assert False is bool(And([Named("a", FOO), Not(Named("b", BAR))]).evaluate(E_BAR))
    assert True is bool(And([Named("a", FOO), Not(Named("b", BAR))]).evaluate(E_FOO))


def test_matches():
    assert Or([FOO, BAR]).matches(E_FOO) is True
    assert And([FOO, BAR]).matches(E_FOO) is False


def test_result_is_boolish():
    res = FOO.evaluate(E_FOO)
    assert isinstance(res, Result)
    assert res == True  # noqa: E712
    assert res.statement is FOO
    assert res.value == "foo"


def test_short_circuit():
    assert bool(Or([FOO, BAR]).evaluate(E_FOO)) is True
    assert len(Or([FOO, BAR]).evaluate(E_FOO).children) == 1

    # now without short circuiting
    assert bool(Or([FOO, BAR]).evaluate(E_FOO, short_circuit=False)) is True
    assert len(Or([FOO, BAR]).evaluate(E_FOO, short_circuit=False).children) == 2

    assert len(And([BAR, FOO]).evaluate(E_FOO).children) == 1
    assert len(And([BAR, FOO]).evaluate(E_FOO, short_circuit=False).children) == 2


def test_evaluation_order():
    # the first failing child of an `and` is the last one evaluated.
    res = And([FOO, BAR, BAZ]).evaluate(E_BAR)
    assert [child.statement for child in res.children] == [FOO]

    res = Or([FOO, BAR, BAZ]).evaluate(E_BAR)
    assert [child.statement for child in res.children] == [FOO, BAR]


def test_statement_equality():
    assert And([FOO, BAR]) == And([FOO, BAR])
    assert And([FOO, BAR]) != And([BAR, FOO])
    assert And([FOO, BAR]) != Or([FOO, BAR])
    assert Named("a", FOO) == Named("a", FOO)
    assert Named("a", FOO) != Named("b", FOO)
    assert Not(FOO) == Not(SearchAtom("Image", [], ["foo"]))


def test_perf_counters():
    sigmatch.perf.reset()
    And([FOO, Not(BAR)]).evaluate(E_FOO)
    assert sigmatch.perf.counters["evaluate.node.and"] == 1
    assert sigmatch.perf.counters["evaluate.node.not"] == 1
    assert sigmatch.perf.counters["evaluate.node.search"] == 2


def test_log_entry_get():
    entry = LogEntry(fields={"Image": "foo", "image": "bar"})
    # field names are compared case-insensitively, first one wins
    assert entry.get("IMAGE") == "foo"
    assert entry.get("image") == "foo"
    assert entry.get("missing") == ""


def test_log_entry_from_dict_nested():
    entry = LogEntry.from_dict({"message": "hello", "fields": {"EventID": 4688, "Initiated": True, "Parent": None}})
    assert entry.message == "hello"
    assert entry.fields == {"EventID": "4688", "Initiated": "true", "Parent": ""}


def test_log_entry_from_dict_flat():
    entry = LogEntry.from_dict({"EventID": 4688, "Image": "C:\\Windows\\System32\\whoami.exe"})
    assert entry.message == ""
    assert entry.fields == {"EventID": "4688", "Image": "C:\\Windows\\System32\\whoami.exe"}


def test_log_entry_renders_values():
    entry = LogEntry(message=None, fields={"EventID": 4688, "Initiated": True, "Parent": None, 7: "seven"})
    assert entry.message == ""
    assert entry.fields == {"EventID": "4688", "Initiated": "true", "Parent": "", "7": "seven"}

    # matching never throws on the shape of the values.
    assert SearchAtom("EventID", [], ["4688"]).matches(entry) is True
    assert SearchAtom("Initiated", [], ["true"]).matches(entry) is True
    assert SearchAtom("7", [], ["seven"]).matches(entry) is True
    # an integer isn't an IP address
    assert SearchAtom("EventID", ["cidr"], ["0.0.0.0/0"]).matches(entry) is False
    assert SearchAtom(None, [], ["foo"]).matches(LogEntry(message=1234, fields={})) is False
