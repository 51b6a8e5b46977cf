"""
Upstream Handler: reads the slide agent's Server-Sent Events stream.

This module turns the agent's HTTP response into a plain sequence of text
fragments for the pipeline, handling SSE framing, the completion sentinel,
timeouts and transport failures.

Key Features:
- SSE format parsing ("data: {...}\\n\\n")
- Envelope decoding (text-delta payloads and OpenAI-style deltas)
- Completion sentinel handling ([DONE], finish events, finish_reason)
- Timeout management (first chunk, between chunks, total duration)
- Scoped acquisition of the HTTP response
"""

import asyncio
import json
import logging
import re
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..context import RequestContext
from ..events.schema import RENDER_STYLES
from ..exceptions import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)


DONE_MARKER = "[DONE]"

# Marker returned by decode_envelope when the upstream signals completion.
FINISHED = object()


def decode_envelope(data_str: str) -> Any:
    """
    Decode one SSE data payload from the agent.

    Args:
        data_str: Text after the ``data:`` prefix

    Returns:
        - The text fragment carried by the envelope
        - ``FINISHED`` if the envelope is the completion sentinel
        - None if the envelope carries no text (tool calls, metadata)

    Raises:
        ValueError: If the payload is not valid JSON or has an unknown shape
    """
    if data_str.strip() == DONE_MARKER:
        return FINISHED

    data = json.loads(data_str)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    event_type = data.get("type")
    if event_type == "finish":
        return FINISHED
    payload = data.get("payload")
    if event_type == "error":
        # The agent sends either {"message": ...} or a bare string
        message = payload.get("message") if isinstance(payload, dict) else payload
        raise UpstreamError(str(message or data.get("error") or "upstream reported an error"))
    if event_type == "text-delta":
        if not isinstance(payload, dict):
            raise ValueError("text-delta payload is not an object")
        return payload.get("text") or None

    # OpenAI-style chat completion chunk
    choices = data.get("choices")
    if choices:
        delta = choices[0].get("delta", {})
        content = delta.get("content", "")
        if content:
            return content
        if choices[0].get("finish_reason"):
            return FINISHED
        return None

    if event_type is not None:
        return None
    raise ValueError("unrecognised envelope")


class UpstreamStreamHandler:
    """
    Handles streaming responses from the slide agent (SSE format).

    Provides timeout protection and turns the response into text fragments.

    Example:
        >>> handler = UpstreamStreamHandler(
        ...     stream_timeout=30.0,
        ...     chunk_timeout=5.0,
        ...     max_duration=120.0
        ... )
        >>> async for fragment in handler.process_stream(response):
        ...     print(fragment)
    """

    def __init__(
        self,
        stream_timeout: float = 30.0,
        chunk_timeout: float = 15.0,
        max_duration: float = 300.0
    ):
        """
        Initialize streaming handler.

        Args:
            stream_timeout: Timeout for first chunk in seconds
            chunk_timeout: Timeout between chunks in seconds
            max_duration: Maximum total stream duration in seconds
        """
        self.stream_timeout = stream_timeout
        self.chunk_timeout = chunk_timeout
        self.max_duration = max_duration

    async def process_stream(self, response: httpx.Response) -> AsyncIterator[str]:
        """
        Process a streaming response from the agent.

        Args:
            response: httpx.Response opened with ``client.stream(...)``

        Yields:
            Text fragments in production order

        Raises:
            UpstreamTimeout: If the stream stalls or runs too long
            UpstreamError: If reading the stream fails
        """
        async for fragment in self.iter_fragments(
            self._stream_with_timeout(response.aiter_text())
        ):
            yield fragment

    async def iter_fragments(self, chunks: AsyncIterator[str]) -> AsyncIterator[str]:
        """
        Split raw text chunks into SSE lines and decode their envelopes.

        Malformed envelopes are logged and skipped. Anything after the
        completion sentinel is discarded.
        """
        buffer = ""
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                buffer += chunk
                # Process complete lines (SSE format: "data: {...}\n\n")
                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    decoded = self._decode_line(line)
                    if decoded is FINISHED:
                        return
                    if decoded:
                        yield decoded
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error reading upstream stream: {e}") from e

        # The final line may arrive without its newline.
        decoded = self._decode_line(buffer)
        if decoded and decoded is not FINISHED:
            yield decoded

    def _decode_line(self, line: str) -> Any:
        line = line.strip()

        # Skip empty lines, comments and non-data fields
        if not line or line.startswith(":") or not line.startswith("data:"):
            return None

        data_str = line[5:].strip()
        try:
            decoded = decode_envelope(data_str)
        except (ValueError, AttributeError, IndexError) as e:
            logger.warning("Skipping malformed upstream envelope %r: %s", data_str[:80], e)
            return None

        if decoded is FINISHED:
            logger.debug("Upstream signalled completion")
        return decoded

    async def _stream_with_timeout(self, chunk_iter: AsyncIterator[str]) -> AsyncIterator[str]:
        """
        Stream chunks with timeout protection.

        Raises:
            UpstreamTimeout: If the stream times out
        """
        stream_start_time = time.time()
        received_first_chunk = False

        while True:
            total_elapsed = time.time() - stream_start_time
            if total_elapsed > self.max_duration:
                raise UpstreamTimeout(
                    f"Stream exceeded maximum duration of {self.max_duration}s. "
                    f"Total elapsed: {total_elapsed:.1f}s"
                )

            timeout = self.chunk_timeout if received_first_chunk else self.stream_timeout
            try:
                chunk = await asyncio.wait_for(chunk_iter.__anext__(), timeout=timeout)
            except asyncio.TimeoutError:
                elapsed = time.time() - stream_start_time
                if not received_first_chunk:
                    raise UpstreamTimeout(
                        f"The request to the slide agent timed out after {elapsed:.1f} seconds. "
                        f"Please try again."
                    )
                raise UpstreamTimeout(
                    f"No chunk received for {self.chunk_timeout}s. "
                    f"The slide agent may have stopped responding. "
                    f"Total elapsed: {elapsed:.1f}s"
                )
            except StopAsyncIteration:
                return

            received_first_chunk = True
            yield chunk


# =============================================================================
# Agent client
# =============================================================================

PRESENTATION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{40,50}$")


def extract_presentation_id(value: str) -> str:
    """
    Pull the presentation id out of a Google Slides URL.

    Example:
        >>> extract_presentation_id("https://docs.google.com/presentation/d/abc_123/edit")
        'abc_123'
    """
    if "/" not in value:
        return value.strip()

    match = re.search(r"/presentation/d/([a-zA-Z0-9_-]+)", value) or re.search(r"/d/([a-zA-Z0-9_-]+)", value)
    if match:
        return match.group(1)
    return value.strip()


def is_valid_presentation_id(presentation_id: str) -> bool:
    """Google Slides ids are 40-50 characters of letters, digits, - and _."""
    return bool(PRESENTATION_ID_PATTERN.match(presentation_id))


def build_prompt(context: RequestContext) -> str:
    """Build the user message asking the agent for a full script."""
    prompt = f"Generate a complete presentation script for presentation ID: {context.presentation_id}"
    if context.style:
        prompt += f"\n\nPresentation style: {context.style} - {RENDER_STYLES[context.style]}."
    return prompt


class SlideAgentClient:
    """
    Client for the slide agent's streaming endpoint.

    Example:
        >>> async with httpx.AsyncClient() as http:
        ...     client = SlideAgentClient("http://localhost:3001/api/stream-with-user", http)
        ...     async for fragment in client.stream_text(context):
        ...         print(fragment, end="")
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient,
        handler: Optional[UpstreamStreamHandler] = None
    ):
        self.url = url
        self.http_client = http_client
        self.handler = handler or UpstreamStreamHandler()

    def build_request_body(self, context: RequestContext) -> Dict[str, Any]:
        return {
            "messages": [{"role": "user", "content": build_prompt(context)}],
            "memory": {
                "thread": f"presentation-{context.presentation_id}-{context.run_id}",
                "resource": "slide-agent",
            },
            "userId": context.user_id,
        }

    async def stream_text(self, context: RequestContext) -> AsyncIterator[str]:
        """
        Stream the agent's raw text output for one request.

        The HTTP response is held only for the lifetime of this generator
        and is closed on completion, error, or when the caller stops
        iterating.

        Raises:
            UpstreamError: On connection failure or a non-success status
        """
        body = self.build_request_body(context)
        logger.info("Requesting slide script (run_id=%s, presentation=%s)", context.run_id, context.presentation_id)
        try:
            async with self.http_client.stream("POST", self.url, json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise UpstreamError(
                        f"Slide agent returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                async for fragment in self.handler.process_stream(response):
                    yield fragment
        except httpx.HTTPError as e:
            raise UpstreamError(f"Could not reach slide agent: {e}") from e
