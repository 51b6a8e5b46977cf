"""Session events, server-push framing and slide assembly."""

from .schema import (
    StartEvent,
    RecordStartEvent,
    RecordContentChunkEvent,
    RecordCompleteEvent,
    ErrorEvent,
    FinishEvent,
    StreamEvent,
    RenderStyle,
    Slide,
    SlideScript,
    encode_sse,
    decode_sse,
    parse_event,
    parse_slide_script,
    slides_to_markdown,
)
from .assembler import SlideAssembler

__all__ = [
    "StartEvent",
    "RecordStartEvent",
    "RecordContentChunkEvent",
    "RecordCompleteEvent",
    "ErrorEvent",
    "FinishEvent",
    "StreamEvent",
    "RenderStyle",
    "Slide",
    "SlideScript",
    "SlideAssembler",
    "encode_sse",
    "decode_sse",
    "parse_event",
    "parse_slide_script",
    "slides_to_markdown",
]
