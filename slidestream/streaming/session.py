"""
Session driver: upstream fragments in, ordered session events out.

One session binds one upstream stream to a fresh PreambleFilter and
RecordParser. Each fragment is processed synchronously, character by
character; the driver only suspends while waiting for the next fragment.
"""

import logging
from typing import AsyncIterator, Callable, Iterable, List, Optional, Union

from pydantic import BaseModel

from ..context import RequestContext
from ..events.schema import (
    ErrorEvent,
    FinishEvent,
    RecordEvent,
    StartEvent,
    StreamEvent,
    encode_sse,
)
from ..exceptions import GrammarViolation, UpstreamError
from .preamble import DEFAULT_WINDOW_SIZE, PreambleFilter
from .record_parser import DEFAULT_LOOKAHEAD_SIZE, RecordParser, RecordSchema

logger = logging.getLogger(__name__)


NarrativeCallback = Callable[[str], None]


class SlidePipeline:
    """
    PreambleFilter and RecordParser wired together for one session.

    Example:
        >>> pipeline = SlidePipeline()
        >>> pipeline.push("Here you go:\\n")
        []
        >>> [e.type for e in pipeline.push('{"slides":[{"slideNumber":1,"title":"A","script":"!"}]}')]
        ['record-start', 'record-content-chunk', 'record-complete']
    """

    def __init__(
        self,
        markers: Optional[Iterable[str]] = None,
        schema: Optional[RecordSchema] = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        lookahead_size: int = DEFAULT_LOOKAHEAD_SIZE,
        strict: bool = False,
        on_narrative: Optional[NarrativeCallback] = None
    ):
        self.filter = PreambleFilter(markers=markers, window_size=window_size)
        self.parser = RecordParser(schema=schema, lookahead_size=lookahead_size, strict=strict)
        self.on_narrative = on_narrative

    def push(self, fragment: str) -> List[RecordEvent]:
        """Route one upstream fragment and return the events it produced."""
        routed = self.filter.push(fragment)
        if routed.narrative and self.on_narrative is not None:
            self.on_narrative(routed.narrative)
        if not routed.structured:
            return []
        return self.parser.push(routed.structured)


async def stream_session(
    fragments: AsyncIterator[str],
    context: RequestContext,
    pipeline: Optional[SlidePipeline] = None
) -> AsyncIterator[StreamEvent]:
    """
    Run one session to completion.

    Yields ``start``, every record event in character order, and finally
    exactly one ``finish``. Upstream failures and strict-mode grammar
    violations yield an ``error`` right before ``finish``.

    If the consumer stops iterating (``aclose()``) or the task is
    cancelled, nothing further is yielded and the upstream iterator is
    closed.

    Args:
        fragments: Upstream text fragments in production order
        context: Per-request context (run id, style)
        pipeline: Pre-configured pipeline; a fresh default one otherwise
    """
    pipeline = pipeline or SlidePipeline()
    logger.info("Session %s started", context.run_id)

    failure: Optional[str] = None
    try:
        yield StartEvent(run_id=context.run_id, style=context.style)
        async for fragment in fragments:
            for event in pipeline.push(fragment):
                yield event
    except (UpstreamError, GrammarViolation) as e:
        logger.error("Session %s failed: %s", context.run_id, e)
        failure = str(e)
    except Exception as e:
        logger.exception("Session %s failed unexpectedly", context.run_id)
        failure = f"Error generating presentation script: {e}"
    finally:
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()

    if failure is not None:
        yield ErrorEvent(message=failure)
    if not pipeline.filter.active:
        logger.info("Session %s: no structured output found in upstream text", context.run_id)
    logger.info("Session %s finished", context.run_id)
    yield FinishEvent(run_id=context.run_id)


async def encode_sse_stream(events: AsyncIterator[Union[StreamEvent, BaseModel]]) -> AsyncIterator[str]:
    """
    Encode session events as Server-Sent Events frames.

    Suitable as the body iterator of any ASGI streaming response.
    """
    try:
        async for event in events:
            yield encode_sse(event)
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
