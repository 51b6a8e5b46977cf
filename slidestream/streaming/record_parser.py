"""
Incremental Record Parser: turns a character stream into slide events.

The agent is asked for a document shaped like::

    {"slides": [{"slideNumber": 1, "title": "Intro", "script": "..."}, ...]}

This module consumes that document one character at a time and emits an
event the moment each piece becomes known, long before the JSON is complete.

Key Features:
- Pure transition function ``step(state, char) -> (state, events)``
- Records are read only from the configured list key; sibling values are skipped
- Per-character script streaming
- Full JSON string escape decoding, including surrogate pairs
- Duplicate record-start suppression per session
- Bounded marker lookahead regardless of stream length
"""

import functools
import logging
import re
from dataclasses import dataclass, field, replace
from typing import FrozenSet, List, Optional, Tuple, Union

from ..events.schema import (
    RecordCompleteEvent,
    RecordContentChunkEvent,
    RecordEvent,
    RecordStartEvent,
)
from ..exceptions import GrammarViolation

logger = logging.getLogger(__name__)


DEFAULT_LOOKAHEAD_SIZE = 32

SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

REPLACEMENT_CHAR = "\ufffd"


@dataclass(frozen=True)
class RecordSchema:
    """Field names of the target document."""
    list_field: str = "slides"
    index_field: str = "slideNumber"
    label_field: str = "title"
    content_field: str = "script"

    def marker(self, name: str, tail: str) -> "re.Pattern[str]":
        return re.compile('"' + re.escape(name) + '"' + tail + r"\Z")


def min_lookahead_size(schema: RecordSchema) -> int:
    """Smallest marker window that still holds ``"<longest field>":"``."""
    longest = max(
        len(schema.list_field),
        len(schema.index_field),
        len(schema.label_field),
        len(schema.content_field),
    )
    return longest + 4


# =============================================================================
# Parse states
# =============================================================================

@dataclass(frozen=True)
class Idle:
    """No structured value detected yet."""


@dataclass(frozen=True)
class InRecordList:
    """
    Before the record list, or between its records.

    Until ``opened``, the parser is still looking for the list key and its
    ``[``; braces and brackets of sibling values are not delimiters.
    """
    opened: bool = False
    window: str = ""
    in_string: bool = False
    escape: bool = False


@dataclass(frozen=True)
class InRecord:
    """Inside one record, outside any recognised field value."""
    index: Optional[int] = None
    label: Optional[str] = None
    window: str = ""
    in_string: bool = False
    escape: bool = False


@dataclass(frozen=True)
class InTextField:
    """Inside the quoted label or content value of a record."""
    field_kind: str  # 'label' | 'content'
    index: Optional[int]
    label: Optional[str]
    buffer: str = ""
    # None when no escape is pending, "" right after a backslash,
    # "u", "u1", ... while collecting a \\uXXXX sequence.
    escape: Optional[str] = None
    high_surrogate: Optional[str] = None


@dataclass(frozen=True)
class InNumberField:
    """Inside the numeric index literal."""
    index: Optional[int]
    label: Optional[str]
    buffer: str = ""


@dataclass(frozen=True)
class ListComplete:
    """The record list has closed; everything after is ignored."""


Phase = Union[Idle, InRecordList, InRecord, InTextField, InNumberField, ListComplete]


@dataclass(frozen=True)
class ParserState:
    """
    The whole state of one parse session.

    ``started`` is the duplicate-start memo and only ever grows.
    """
    phase: Phase = field(default_factory=InRecordList)
    started: FrozenSet[int] = frozenset()
    position: int = 0


@dataclass(frozen=True)
class ParserOptions:
    schema: RecordSchema = field(default_factory=RecordSchema)
    lookahead_size: int = DEFAULT_LOOKAHEAD_SIZE
    strict: bool = False


_DEFAULT_OPTIONS = ParserOptions()


@functools.lru_cache(maxsize=None)
def _markers(schema: RecordSchema):
    """(list, index, label, content) marker patterns, compiled once per schema."""
    return (
        schema.marker(schema.list_field, r"\s*:\s*\["),
        schema.marker(schema.index_field, r"\s*:"),
        schema.marker(schema.label_field, r'\s*:\s*"'),
        schema.marker(schema.content_field, r'\s*:\s*"'),
    )


# =============================================================================
# Transition function
# =============================================================================

def step(
    state: ParserState,
    char: str,
    options: ParserOptions = _DEFAULT_OPTIONS
) -> Tuple[ParserState, List[RecordEvent]]:
    """
    Advance the parser by exactly one character.

    Args:
        state: Current parser state (never mutated)
        char: A single character of the structured value
        options: Schema, lookahead size and grammar violation policy

    Returns:
        The new state and the events this character produced, in order

    Raises:
        GrammarViolation: In strict mode, when the input leaves the grammar
    """
    events: List[RecordEvent] = []
    phase, started = _dispatch(state.phase, char, state, options, events)
    return ParserState(phase=phase, started=started, position=state.position + 1), events


def _dispatch(phase, char, state, options, events):
    if isinstance(phase, Idle):
        phase = InRecordList()
    if isinstance(phase, InRecordList):
        if not phase.opened:
            return _before_record_list(phase, char, options), state.started
        return _in_record_list(phase, char), state.started
    if isinstance(phase, InRecord):
        return _in_record(phase, char, state, options, events)
    if isinstance(phase, InTextField):
        return _in_text_field(phase, char, events), state.started
    if isinstance(phase, InNumberField):
        return _in_number_field(phase, char, state, options, events)
    return phase, state.started


def _before_record_list(phase: InRecordList, char: str, options: ParserOptions) -> Phase:
    window = (phase.window + char)[-options.lookahead_size:]

    if phase.in_string:
        if phase.escape:
            return replace(phase, window=window, escape=False)
        if char == "\\":
            return replace(phase, window=window, escape=True)
        if char == '"':
            return replace(phase, window=window, in_string=False)
        return replace(phase, window=window)
    if char == '"':
        return replace(phase, window=window, in_string=True)

    if char == "[" and _markers(options.schema)[0].search(window):
        logger.debug("Record list %r opened", options.schema.list_field)
        return InRecordList(opened=True)

    return replace(phase, window=window)


def _in_record_list(phase: InRecordList, char: str) -> Phase:
    if phase.in_string:
        if phase.escape:
            return replace(phase, escape=False)
        if char == "\\":
            return replace(phase, escape=True)
        if char == '"':
            return replace(phase, in_string=False)
        return phase
    if char == '"':
        return replace(phase, in_string=True)
    if char == "{":
        return InRecord()
    if char == "]":
        logger.debug("Record list closed")
        return ListComplete()
    return phase


def _in_record(phase: InRecord, char: str, state: ParserState, options: ParserOptions, events):
    window = (phase.window + char)[-options.lookahead_size:]

    if phase.in_string:
        if phase.escape:
            return replace(phase, window=window, escape=False), state.started
        if char == "\\":
            return replace(phase, window=window, escape=True), state.started
        if char == '"':
            return replace(phase, window=window, in_string=False), state.started
        return replace(phase, window=window), state.started

    _, index_marker, label_marker, content_marker = _markers(options.schema)

    if char == '"':
        if label_marker.search(window):
            return InTextField("label", phase.index, phase.label), state.started
        if content_marker.search(window):
            return _open_content(phase, state, options, events)
        return replace(phase, window=window, in_string=True), state.started

    if char == ":" and index_marker.search(window):
        return InNumberField(phase.index, phase.label), state.started

    if char == "}":
        logger.debug("Record closed (index=%s, label=%r)", phase.index, phase.label)
        return InRecordList(opened=True), state.started

    return replace(phase, window=window), state.started


def _open_content(phase: InRecord, state: ParserState, options: ParserOptions, events):
    if phase.index is None or phase.label is None:
        _violation(
            "content field opened before index and label were known",
            state,
            options,
        )
        # Consume the value as an opaque string without emitting.
        return InRecord(phase.index, phase.label, in_string=True), state.started

    started = state.started
    if phase.index in started:
        logger.debug("Suppressing duplicate record-start for index %s", phase.index)
    else:
        events.append(RecordStartEvent(index=phase.index, label=phase.label))
        started = started | {phase.index}
    return InTextField("content", phase.index, phase.label), started


def _in_number_field(phase: InNumberField, char: str, state: ParserState, options: ParserOptions, events):
    if char.isdigit() and char.isascii():
        return replace(phase, buffer=phase.buffer + char), state.started
    if not phase.buffer:
        if char.isspace():
            return phase, state.started
        _violation(f"expected a digit for the index field, got {char!r}", state, options)
        return _in_record(InRecord(phase.index, phase.label), char, state, options, events)
    record = InRecord(int(phase.buffer), phase.label)
    return _in_record(record, char, state, options, events)


def _in_text_field(phase: InTextField, char: str, events) -> Phase:
    if phase.escape is not None:
        return _continue_escape(phase, char, events)
    if char == "\\":
        return replace(phase, escape="")
    if char == '"':
        phase = _append(phase, "", events)
        if phase.field_kind == "label":
            return InRecord(phase.index, phase.buffer)
        events.append(RecordCompleteEvent(index=phase.index))
        return InRecord(phase.index, phase.label)
    return _append(phase, char, events)


def _continue_escape(phase: InTextField, char: str, events) -> Phase:
    pending = phase.escape
    if pending == "":
        if char == "u":
            return replace(phase, escape="u")
        decoded = SIMPLE_ESCAPES.get(char, char)
        return _append(replace(phase, escape=None), decoded, events)

    if char not in HEX_DIGITS:
        # Malformed \u escape: keep what we saw literally.
        literal = "\\" + pending + char
        return _append(replace(phase, escape=None), literal, events)

    pending += char
    if len(pending) < 5:
        return replace(phase, escape=pending)

    code = int(pending[1:], 16)
    phase = replace(phase, escape=None)
    if 0xD800 <= code <= 0xDBFF:
        phase = _append(phase, "", events)
        return replace(phase, high_surrogate=chr(code))
    if 0xDC00 <= code <= 0xDFFF and phase.high_surrogate is not None:
        high = ord(phase.high_surrogate)
        combined = chr(0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00))
        return _append(replace(phase, high_surrogate=None), combined, events)
    if 0xD800 <= code <= 0xDFFF:
        return _append(phase, REPLACEMENT_CHAR, events)
    return _append(phase, chr(code), events)


def _append(phase: InTextField, text: str, events) -> InTextField:
    if phase.high_surrogate is not None:
        # Unpaired high surrogate.
        text = REPLACEMENT_CHAR + text
        phase = replace(phase, high_surrogate=None)

    if phase.field_kind == "content":
        for ch in text:
            events.append(RecordContentChunkEvent(index=phase.index, fragment=ch))
    return replace(phase, buffer=phase.buffer + text)


def _violation(message: str, state: ParserState, options: ParserOptions) -> None:
    if options.strict:
        raise GrammarViolation(message, state.position)
    logger.warning("Grammar violation at character %d: %s; skipping", state.position, message)


# =============================================================================
# Stateful wrapper
# =============================================================================

class RecordParser:
    """
    Feeds characters through ``step`` and keeps the resulting state.

    Example:
        >>> parser = RecordParser()
        >>> [e.type for e in parser.push('"slides":[{"slideNumber":1,"title":"A","script":"Hi"}]')]
        ['record-start', 'record-content-chunk', 'record-content-chunk', 'record-complete']
    """

    def __init__(
        self,
        schema: Optional[RecordSchema] = None,
        lookahead_size: int = DEFAULT_LOOKAHEAD_SIZE,
        strict: bool = False
    ):
        schema = schema or RecordSchema()
        minimum = min_lookahead_size(schema)
        if lookahead_size < minimum:
            raise ValueError(
                f"lookahead_size {lookahead_size} is too small for this schema (minimum {minimum})"
            )
        self.options = ParserOptions(
            schema=schema,
            lookahead_size=lookahead_size,
            strict=strict,
        )
        self.state = ParserState()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def is_complete(self) -> bool:
        """True once the record list has closed."""
        return isinstance(self.state.phase, ListComplete)

    def feed(self, char: str) -> List[RecordEvent]:
        """Process a single character."""
        self.state, events = step(self.state, char, self.options)
        return events

    def push(self, text: str) -> List[RecordEvent]:
        """
        Process a run of characters one at a time.

        Args:
            text: Any slice of the structured value

        Returns:
            All events produced, in character order
        """
        events: List[RecordEvent] = []
        for char in text:
            events.extend(self.feed(char))
        return events
