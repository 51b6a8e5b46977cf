"""Stream presentation scripts from an LLM as per-slide events."""

from .context import RequestContext
from .exceptions import SlideStreamError, UpstreamError, UpstreamTimeout, GrammarViolation
from .streaming import SlidePipeline, stream_session, encode_sse_stream

__version__ = "0.1.0"

__all__ = [
    "RequestContext",
    "SlideStreamError",
    "UpstreamError",
    "UpstreamTimeout",
    "GrammarViolation",
    "SlidePipeline",
    "stream_session",
    "encode_sse_stream",
]
