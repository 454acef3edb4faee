import json
import types

import pytest

from traycer_agent.provider_runtime import ToolCallAccumulator


def _delta(index, call_id=None, name=None, arguments=None):
    return types.SimpleNamespace(
        index=index,
        id=call_id,
        function=types.SimpleNamespace(name=name, arguments=arguments),
    )


@pytest.mark.parametrize("pieces", [1, 2, 7, 40])
def test_argument_fragments_concatenate_in_arrival_order(pieces):
    arguments = json.dumps({"path": "src/app.ts", "maxLines": 120, "note": "ünïcode ✓"})
    size = max(1, len(arguments) // pieces)
    fragments = [arguments[i : i + size] for i in range(0, len(arguments), size)]

    acc = ToolCallAccumulator()
    acc.add_delta(_delta(0, call_id="call_1", name="filesystem__read_file"))
    for fragment in fragments:
        acc.add_delta(_delta(0, arguments=fragment))

    calls = acc.finalize()
    assert len(calls) == 1
    assert calls[0].id == "call_1"
    assert calls[0].name == "filesystem__read_file"
    assert calls[0].arguments == "".join(fragments) == arguments


def test_interleaved_calls_are_ordered_by_index():
    acc = ToolCallAccumulator()
    acc.add_delta(_delta(1, call_id="b", name="git__status", arguments=""))
    acc.add_delta(_delta(0, call_id="a", name="filesystem__list_dir", arguments='{"pa'))
    acc.add_delta(_delta(1, arguments="{}"))
    acc.add_delta(_delta(0, arguments='th": "."}'))

    calls = acc.finalize()
    assert [c.id for c in calls] == ["a", "b"]
    assert calls[0].arguments == '{"path": "."}'
    assert calls[1].arguments == "{}"


def test_dict_deltas_and_finalize_resets_state():
    acc = ToolCallAccumulator()
    acc.add_delta({"index": 0, "id": "x", "function": {"name": "t", "arguments": "{}"}})
    assert len(acc) == 1

    assert [c.id for c in acc.finalize()] == ["x"]
    assert len(acc) == 0
    assert acc.finalize() == []


def test_late_id_and_name_are_adopted():
    acc = ToolCallAccumulator()
    acc.add(0, arguments='{"a":')
    acc.add(0, call_id="late", name="p__tool", arguments="1}")

    (call,) = acc.finalize()
    assert (call.id, call.name, call.arguments) == ("late", "p__tool", '{"a":1}')


def test_index_less_fragments_continue_the_latest_call():
    acc = ToolCallAccumulator()
    acc.add_delta(_delta(None, call_id="a", name="filesystem__read_file", arguments='{"pa'))
    acc.add_delta(_delta(None, arguments='th": "a.ts"'))
    acc.add_delta(_delta(None, arguments="}"))
    acc.add_delta(_delta(None, call_id="b", name="git__status"))
    acc.add_delta(_delta(None, arguments="{}"))

    calls = acc.finalize()

    assert [(c.id, c.name, c.arguments) for c in calls] == [
        ("a", "filesystem__read_file", '{"path": "a.ts"}'),
        ("b", "git__status", "{}"),
    ]
    acc.add_delta(_delta(None, arguments="{}"))
    assert [c.arguments for c in acc.finalize()] == ["{}"]
