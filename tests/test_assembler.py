"""Fragment assembly and forgiving argument parsing."""

from __future__ import annotations

import json
import logging

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from fluxgate._json import (
    escape_control_chars,
    first_balanced_object,
    outermost_object_span,
    parse_arguments,
)
from fluxgate.assembler import FragmentAssembler, synthesize_call_id
from fluxgate.types import ToolCall

pytestmark = pytest.mark.unit


# =============================================================================
# parse_arguments
# =============================================================================


def test_parse_arguments_plain_object() -> None:
    assert parse_arguments('{"q": "rust", "n": 3}') == {"q": "rust", "n": 3}


@pytest.mark.parametrize("text", ["", "   ", None])
def test_parse_arguments_empty_is_empty_mapping(text: str | None) -> None:
    assert parse_arguments(text) == {}


def test_parse_arguments_strips_vendor_control_markers() -> None:
    text = '<|tool_call_begin|>{"path": "a.txt"}<|FunctionCallEnd|>'
    assert parse_arguments(text) == {"path": "a.txt"}


def test_parse_arguments_trims_to_outermost_object() -> None:
    text = 'Here you go: {"a": {"b": 1}} trailing words'
    assert parse_arguments(text) == {"a": {"b": 1}}


def test_parse_arguments_first_balanced_object_when_objects_repeat() -> None:
    # Outermost span covers both objects and is not valid JSON.
    text = '{"a": 1} {"b": 2}'
    assert parse_arguments(text) == {"a": 1}


def test_parse_arguments_escapes_raw_newlines_inside_strings() -> None:
    text = '{"content": "line one\nline two\tend"}'
    assert parse_arguments(text) == {"content": "line one\nline two\tend"}


@pytest.mark.parametrize("text", ['{"q": ', "[1, 2]", '"just a string"', "42", "nope"])
def test_parse_arguments_unparseable_or_non_object_is_empty(text: str) -> None:
    assert parse_arguments(text) == {}


def test_helpers_respect_braces_inside_strings() -> None:
    text = '{"s": "}{"} tail'
    assert first_balanced_object(text) == '{"s": "}{"}'
    assert outermost_object_span("no braces") is None
    assert escape_control_chars('"a\nb" \n') == '"a\\nb" \n'


# =============================================================================
# FragmentAssembler
# =============================================================================


def test_fragmented_call_seals_on_explicit_completion() -> None:
    asm = FragmentAssembler()

    assert asm.start(0, "c1", "search") == []
    asm.append(0, '{"q":')
    asm.append(0, '"rust"}')
    call = asm.complete(0)

    assert call == ToolCall(id="c1", name="search", arguments={"q": "rust"})
    assert asm.sealed == [call]
    assert not asm.has_open


def test_truncated_stream_seals_exactly_once_on_finish() -> None:
    asm = FragmentAssembler()
    asm.start(0, "c1", "read_file")
    asm.append(0, '{"path": "src/ma')

    sealed = asm.finish()

    assert len(sealed) == 1
    assert sealed[0].name == "read_file"
    # Truncated JSON degrades to an empty mapping instead of failing.
    assert sealed[0].arguments == {}
    assert asm.finish() == []


def test_new_id_on_open_slot_seals_previous_call() -> None:
    asm = FragmentAssembler()
    asm.start(0, "a", "first")
    asm.append(0, '{"x": 1}')

    sealed = asm.start(0, "b", "second")
    asm.append(0, '{"y": 2}')

    assert sealed == [ToolCall(id="a", name="first", arguments={"x": 1})]
    assert asm.finish() == [ToolCall(id="b", name="second", arguments={"y": 2})]


def test_repeated_start_with_same_id_does_not_seal() -> None:
    asm = FragmentAssembler()
    asm.start(0, "a", "first")
    asm.append(0, '{"x"')
    assert asm.start(0, "a", None) == []
    asm.append(0, ": 1}")

    assert asm.finish() == [ToolCall(id="a", name="first", arguments={"x": 1})]


def test_slot_opened_by_fragment_adopts_later_id_and_name() -> None:
    asm = FragmentAssembler()
    asm.append(1, '{"k": ')
    assert asm.start(1, "late", "tool") == []
    asm.append(1, '"v"}')

    assert asm.complete(1) == ToolCall(id="late", name="tool", arguments={"k": "v"})


def test_interleaved_indices_accumulate_independently() -> None:
    asm = FragmentAssembler()
    asm.start(0, "a", "one")
    asm.start(1, "b", "two")
    asm.append(1, '{"n": ')
    asm.append(0, '{"n": ')
    asm.append(0, "1}")
    asm.append(1, "2}")

    sealed = asm.finish()

    assert [c.id for c in sealed] == ["a", "b"]
    assert [c.arguments for c in sealed] == [{"n": 1}, {"n": 2}]


def test_missing_id_is_synthesized() -> None:
    asm = FragmentAssembler()
    asm.append(0, "{}", name="noid")

    (call,) = asm.finish()

    assert call.id.startswith("call_")
    assert len(call.id) == len("call_") + 8


def test_nameless_call_is_discarded_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    asm = FragmentAssembler()
    asm.append(0, '{"x": 1}')

    with caplog.at_level(logging.WARNING, logger="fluxgate.assembler"):
        assert asm.finish() == []

    assert "without a name" in caplog.text


def test_add_complete_accepts_mapping_or_text_and_dedupes_ids() -> None:
    asm = FragmentAssembler()

    first = asm.add_complete("g1", "lookup", {"id": 7})
    second = asm.add_complete("g2", "lookup", '{"id": 8}')
    duplicate = asm.add_complete("g1", "lookup", {"id": 7})

    assert first == ToolCall(id="g1", name="lookup", arguments={"id": 7})
    assert second is not None and second.arguments == {"id": 8}
    assert duplicate is None
    assert len(asm.sealed) == 2


def test_complete_on_unknown_index_is_none() -> None:
    assert FragmentAssembler().complete(3) is None


def test_synthesized_ids_are_unique() -> None:
    assert len({synthesize_call_id() for _ in range(50)}) == 50


# =============================================================================
# Chunking property
# =============================================================================

# "|" excluded so text never forms a vendor control marker.
_text = st.text(alphabet=st.characters(exclude_characters="|"), max_size=12)
_json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | _text,
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(_text, children, max_size=3),
    max_leaves=8,
)


@settings(max_examples=75, deadline=None)
@given(
    arguments=st.dictionaries(_text, _json_values, max_size=4),
    data=st.data(),
)
def test_sealed_arguments_do_not_depend_on_chunking(arguments, data) -> None:
    text = json.dumps(arguments)
    cuts = sorted(
        data.draw(
            st.lists(st.integers(min_value=0, max_value=len(text)), max_size=12)
        )
    )
    bounds = [0, *cuts, len(text)]
    chunks = [text[a:b] for a, b in zip(bounds, bounds[1:])]

    asm = FragmentAssembler()
    asm.start(0, "c1", "tool")
    for chunk in chunks:
        asm.append(0, chunk)
    call = asm.complete(0)

    assert call is not None
    assert call.arguments == parse_arguments(text) == arguments
