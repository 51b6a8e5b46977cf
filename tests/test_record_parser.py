# Test the incremental record parser state machine
import random

import pytest

from slidestream.events.schema import (
    RecordCompleteEvent,
    RecordContentChunkEvent,
    RecordStartEvent,
)
from slidestream.exceptions import GrammarViolation
from slidestream.streaming.record_parser import (
    InRecord,
    InRecordList,
    InTextField,
    ListComplete,
    ParserState,
    RecordParser,
    RecordSchema,
    _markers,
    min_lookahead_size,
    step,
)

from .conftest import event_types, slides_document


def body(document: str) -> str:
    """The part of a document the parser sees once the filter consumed '{'."""
    assert document.startswith("{")
    return document[1:]


def script_of(events, index: int) -> str:
    return "".join(
        e.fragment for e in events
        if isinstance(e, RecordContentChunkEvent) and e.index == index
    )


def push_in_parts(parts):
    parser = RecordParser()
    events = []
    for part in parts:
        events.extend(parser.push(part))
    return events


class TestBasicParsing:
    def test_single_record(self):
        """A record emits start, one chunk per character, then complete."""
        parser = RecordParser()
        events = parser.push(body(slides_document((1, "Intro", "Hi!"))))

        assert events == [
            RecordStartEvent(index=1, label="Intro"),
            RecordContentChunkEvent(index=1, fragment="H"),
            RecordContentChunkEvent(index=1, fragment="i"),
            RecordContentChunkEvent(index=1, fragment="!"),
            RecordCompleteEvent(index=1),
        ]
        assert parser.is_complete

    def test_fragments_split_inside_keys(self):
        """Markers split across fragments are still recognised."""
        parts = ['"sl', 'ides":[{"sli', 'deNumber":1,"title":"Intro","script":"Hi!"}]}']
        events = push_in_parts(parts)

        assert event_types(events) == [
            "record-start",
            "record-content-chunk",
            "record-content-chunk",
            "record-content-chunk",
            "record-complete",
        ]
        assert events[0] == RecordStartEvent(index=1, label="Intro")

    def test_two_records_in_one_fragment(self):
        """Both records' events appear in full, strictly in order."""
        document = slides_document((1, "A", "ab"), (2, "B", "c"))
        events = RecordParser().push(body(document))

        assert event_types(events) == [
            "record-start", "record-content-chunk", "record-content-chunk", "record-complete",
            "record-start", "record-content-chunk", "record-complete",
        ]
        assert [e.index for e in events] == [1, 1, 1, 1, 2, 2, 2]

    def test_pretty_printed_document(self):
        """Whitespace around colons and before digits is tolerated."""
        text = '''
          "slides" : [
            {
              "slideNumber" :  12 ,
              "title" : "Spaced",
              "script" : "ok"
            }
          ]
        }'''
        events = RecordParser().push(text)

        assert events[0] == RecordStartEvent(index=12, label="Spaced")
        assert script_of(events, 12) == "ok"
        assert events[-1] == RecordCompleteEvent(index=12)

    def test_number_closed_by_record_brace(self):
        """The delimiter ending a number is processed as part of the record."""
        text = '"slides":[{"title":"T","script":"x","slideNumber":3}]}'
        parser = RecordParser()
        parser.push(text)
        assert parser.is_complete

    def test_unknown_fields_are_skipped(self):
        """Braces inside unrelated string values never close the record."""
        text = (
            '"slides":[{"notes":"use {braces} and ] here","slideNumber":4,'
            '"layout":"two \\"col\\"","title":"T","script":"go"}]}'
        )
        events = RecordParser().push(text)

        assert events[0] == RecordStartEvent(index=4, label="T")
        assert script_of(events, 4) == "go"

    def test_text_after_list_is_ignored(self):
        parser = RecordParser()
        parser.push(body(slides_document((1, "A", "x"))))
        assert parser.push('\n```\n{"slides":[{"slideNumber":9,"title":"Z","script":"y"}]}') == []

    def test_custom_schema(self):
        schema = RecordSchema(list_field="items", index_field="n", label_field="name", content_field="body")
        parser = RecordParser(schema=schema)
        events = parser.push('"items":[{"n":7,"name":"Seven","body":"s"}]}')

        assert events == [
            RecordStartEvent(index=7, label="Seven"),
            RecordContentChunkEvent(index=7, fragment="s"),
            RecordCompleteEvent(index=7),
        ]


class TestListKey:
    def test_sibling_array_before_list(self):
        """An earlier array's closing bracket does not end the record list."""
        text = '"tags":["a","]"],"slides":[{"slideNumber":1,"title":"A","script":"x"}]}'
        parser = RecordParser()
        events = parser.push(text)

        assert events == [
            RecordStartEvent(index=1, label="A"),
            RecordContentChunkEvent(index=1, fragment="x"),
            RecordCompleteEvent(index=1),
        ]
        assert parser.is_complete

    def test_sibling_objects_before_list_are_not_records(self):
        text = (
            '"meta":{"slideNumber":9,"title":"M","script":"no"},'
            '"slides":[{"slideNumber":1,"title":"A","script":"x"}]}'
        )
        events = RecordParser().push(text)
        assert {e.index for e in events} == {1}

    def test_records_under_other_key_are_ignored(self):
        parser = RecordParser()
        events = parser.push('"other":[{"slideNumber":1,"title":"A","script":"x"}]}')

        assert events == []
        assert not parser.is_complete

    def test_list_key_inside_string_does_not_open(self):
        text = '"note":"see \\"slides\\":[ below","slides":[{"slideNumber":2,"title":"B","script":"y"}]}'
        events = RecordParser().push(text)
        assert event_types(events) == ["record-start", "record-content-chunk", "record-complete"]

    def test_list_key_split_across_fragments(self):
        parts = ['"tags":[],"sli', 'des"', ' :', ' [{"slideNumber":1,"title":"A","script":"x"}]}']
        events = push_in_parts(parts)
        assert events[0] == RecordStartEvent(index=1, label="A")


class TestEscapes:
    def test_escaped_quotes_do_not_complete_early(self):
        """An escaped quote is content, not the end of the script."""
        text = r'"slides":[{"slideNumber":2,"title":"Q","script":"She said \"go\""}]}'
        events = RecordParser().push(text)

        assert script_of(events, 2) == 'She said "go"'
        assert event_types(events).count("record-complete") == 1
        assert events[-1] == RecordCompleteEvent(index=2)

    def test_standard_escapes_are_decoded(self):
        text = r'"slides":[{"slideNumber":1,"title":"Tab\there","script":"a\nb\\c\/d"}]}'
        events = RecordParser().push(text)

        assert events[0].label == "Tab\there"
        assert script_of(events, 1) == "a\nb\\c/d"

    def test_unicode_escapes_and_surrogate_pairs(self):
        """A surrogate pair becomes a single chunk with one character."""
        text = r'"slides":[{"slideNumber":1,"title":"U","script":"caf\u00e9 \ud83d\ude00"}]}'
        events = RecordParser().push(text)

        chunks = [e.fragment for e in events if isinstance(e, RecordContentChunkEvent)]
        assert chunks == ["c", "a", "f", "\u00e9", " ", "\U0001F600"]

    def test_lone_surrogate_is_replaced(self):
        text = r'"slides":[{"slideNumber":1,"title":"U","script":"x\ud83dy"}]}'
        events = RecordParser().push(text)
        assert script_of(events, 1) == "x\ufffdy"

    def test_buffer_holds_decoded_text(self):
        parser = RecordParser()
        parser.push(r'"slides":[{"slideNumber":1,"title":"T","script":"a\"b')

        phase = parser.phase
        assert isinstance(phase, InTextField)
        assert phase.buffer == 'a"b'


class TestDuplicatesAndViolations:
    def test_duplicate_start_is_suppressed(self):
        """A repeated record opening emits record-start only once."""
        document = slides_document((1, "A", "x"), (1, "A", "x"))
        events = RecordParser().push(body(document))

        assert event_types(events) == [
            "record-start", "record-content-chunk", "record-complete",
            "record-content-chunk", "record-complete",
        ]

    def test_content_before_identifiers_is_skipped(self, caplog):
        """Content opened before index and label emits nothing and is logged."""
        text = '"slides":[{"script":"early","slideNumber":1,"title":"A"},{"slideNumber":2,"title":"B","script":"ok"}]}'
        with caplog.at_level("WARNING"):
            events = RecordParser().push(text)

        assert all(e.index == 2 for e in events)
        assert script_of(events, 2) == "ok"
        assert "Grammar violation" in caplog.text

    def test_strict_mode_raises(self):
        parser = RecordParser(strict=True)
        with pytest.raises(GrammarViolation):
            parser.push('"slides":[{"title":"A","script":"x"}]}')

    def test_non_numeric_index_is_a_violation(self):
        parser = RecordParser()
        events = parser.push('"slides":[{"slideNumber":"1","title":"A","script":"x"}]}')
        assert events == []

    def test_start_never_has_null_fields(self):
        text = '"slides":[{"slideNumber":1,"script":"x"},{"title":"B","script":"y"}]}'
        events = RecordParser().push(text)
        assert events == []


class TestStateAndBounds:
    def test_step_is_pure(self):
        """step returns a new state and leaves the old one untouched."""
        state = ParserState(phase=InRecordList(opened=True))
        new_state, events = step(state, "{")

        assert state.phase == InRecordList(opened=True)
        assert isinstance(new_state.phase, InRecord)
        assert new_state.position == 1
        assert events == []

    def test_list_opens_on_list_key(self):
        parser = RecordParser()
        parser.push('"slides"')
        assert parser.phase.opened is False

        parser.push(" : [")
        assert parser.phase == InRecordList(opened=True)

    def test_markers_compiled_once_per_schema(self):
        schema = RecordSchema(list_field="items")
        assert _markers(schema) is _markers(RecordSchema(list_field="items"))
        assert _markers(schema) is not _markers(RecordSchema())

    def test_record_context_carried(self):
        parser = RecordParser()
        parser.push('"slides":[{"slideNumber":5,"title":"Five",')

        phase = parser.phase
        assert isinstance(phase, InRecord)
        assert (phase.index, phase.label) == (5, "Five")

    def test_context_reset_after_record_closes(self):
        parser = RecordParser()
        parser.push('"slides":[{"slideNumber":5,"title":"Five","script":""},{')

        assert parser.phase == InRecord()

    def test_lookahead_window_is_bounded(self):
        parser = RecordParser(lookahead_size=32)
        parser.push('"slides":[{"notes":"' + "x" * 5000 + '"')

        assert isinstance(parser.phase, InRecord)
        assert len(parser.phase.window) <= 32

    def test_memo_grows_once_per_index(self):
        document = slides_document((1, "A", "x"), (2, "B", "y"), (1, "A", "x"))
        parser = RecordParser()
        parser.push(body(document))

        assert parser.state.started == frozenset({1, 2})
        assert isinstance(parser.phase, ListComplete)

    def test_lookahead_too_small_for_schema(self):
        with pytest.raises(ValueError):
            RecordParser(lookahead_size=10)

    def test_lookahead_minimum_covers_longest_field(self):
        assert min_lookahead_size(RecordSchema()) == len("slideNumber") + 4
        assert min_lookahead_size(RecordSchema(list_field="presentation_slides")) == 23
        RecordParser(lookahead_size=min_lookahead_size(RecordSchema()))


class TestFragmentationInvariance:
    DOCUMENT = body(slides_document(
        (1, "Intro", 'Hello "world"\n'),
        (2, "Café", "Tabs\tand \\ slashes"),
        (3, "End", "Bye!"),
    ))

    def test_every_split_point(self):
        """Splitting the input at any single position changes nothing."""
        expected = RecordParser().push(self.DOCUMENT)
        for i in range(len(self.DOCUMENT) + 1):
            parts = [self.DOCUMENT[:i], self.DOCUMENT[i:]]
            assert push_in_parts(parts) == expected

    def test_random_splits(self):
        expected = RecordParser().push(self.DOCUMENT)
        rng = random.Random(1234)
        for _ in range(50):
            cuts = sorted(rng.sample(range(1, len(self.DOCUMENT)), 8))
            bounds = [0] + cuts + [len(self.DOCUMENT)]
            parts = [self.DOCUMENT[a:b] for a, b in zip(bounds, bounds[1:])]
            assert push_in_parts(parts) == expected

    def test_one_character_at_a_time(self):
        expected = RecordParser().push(self.DOCUMENT)
        assert push_in_parts(list(self.DOCUMENT)) == expected

    def test_per_index_ordering(self):
        """For each index: start, chunks, complete."""
        events = RecordParser().push(self.DOCUMENT)
        for index in (1, 2, 3):
            kinds = [e.type for e in events if e.index == index]
            assert kinds[0] == "record-start"
            assert kinds[-1] == "record-complete"
            assert set(kinds[1:-1]) <= {"record-content-chunk"}
