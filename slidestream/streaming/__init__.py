"""Preamble filtering, incremental record parsing and session driving."""

from .preamble import PreambleFilter, FilterResult, DEFAULT_LEAD_IN_MARKERS
from .record_parser import RecordParser, RecordSchema, ParserState, step
from .session import SlidePipeline, stream_session, encode_sse_stream
from .upstream import (
    UpstreamStreamHandler,
    SlideAgentClient,
    extract_presentation_id,
    is_valid_presentation_id,
)

__all__ = [
    "PreambleFilter",
    "FilterResult",
    "DEFAULT_LEAD_IN_MARKERS",
    "RecordParser",
    "RecordSchema",
    "ParserState",
    "step",
    "SlidePipeline",
    "stream_session",
    "encode_sse_stream",
    "UpstreamStreamHandler",
    "SlideAgentClient",
    "extract_presentation_id",
    "is_valid_presentation_id",
]
