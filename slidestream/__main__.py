"""
Command line entry point.

    python -m slidestream replay response.txt --chunk-size 7
    python -m slidestream generate <slides-url-or-id> --user alice --style formal
"""

import argparse
import asyncio
import logging
import sys
from typing import AsyncIterator, List, Optional

import httpx

from .config import Settings
from .context import RequestContext
from .events import SlideAssembler, encode_sse, slides_to_markdown
from .events.schema import RENDER_STYLES
from .streaming.preamble import DEFAULT_LEAD_IN_MARKERS
from .streaming.session import SlidePipeline, stream_session
from .streaming.upstream import (
    SlideAgentClient,
    UpstreamStreamHandler,
    extract_presentation_id,
    is_valid_presentation_id,
)

logger = logging.getLogger("slidestream")


async def _chunked(text: str, size: int) -> AsyncIterator[str]:
    for i in range(0, len(text), size):
        yield text[i:i + size]
        await asyncio.sleep(0)


def _pipeline(settings: Settings) -> SlidePipeline:
    return SlidePipeline(
        markers=DEFAULT_LEAD_IN_MARKERS + settings.LEAD_IN_MARKERS,
        lookahead_size=settings.LOOKAHEAD_SIZE,
        strict=settings.STRICT_GRAMMAR,
        on_narrative=lambda text: logger.info("narrative: %r", text),
    )


async def _run(events, output_format: str) -> int:
    assembler = SlideAssembler()
    async for event in events:
        assembler.apply(event)
        if output_format == "sse":
            sys.stdout.write(encode_sse(event))
            sys.stdout.flush()

    if output_format == "markdown":
        assembler.close_all_partial()
        sys.stdout.write(slides_to_markdown(assembler.slides))
    return 1 if assembler.error else 0


async def replay(args: argparse.Namespace, settings: Settings) -> int:
    with open(args.path, encoding="utf-8") as f:
        text = f.read()
    context = RequestContext(user_id="local", presentation_id=args.path)
    events = stream_session(_chunked(text, args.chunk_size), context, _pipeline(settings))
    return await _run(events, args.format)


async def generate(args: argparse.Namespace, settings: Settings) -> int:
    presentation_id = extract_presentation_id(args.presentation)
    if not is_valid_presentation_id(presentation_id):
        logger.error("Invalid Google Slides URL or presentation ID: %s", args.presentation)
        return 2

    context = RequestContext(user_id=args.user, presentation_id=presentation_id, style=args.style)
    handler = UpstreamStreamHandler(
        stream_timeout=settings.STREAM_TIMEOUT,
        chunk_timeout=settings.CHUNK_TIMEOUT,
        max_duration=settings.MAX_DURATION,
    )
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.STREAM_TIMEOUT, read=None)) as http:
        client = SlideAgentClient(settings.UPSTREAM_URL, http, handler)
        events = stream_session(client.stream_text(context), context, _pipeline(settings))
        return await _run(events, args.format)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slidestream", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--format", choices=["sse", "markdown"], default="sse")
    sub = parser.add_subparsers(dest="command", required=True)

    p_replay = sub.add_parser("replay", help="Feed a saved model response through the parser")
    p_replay.add_argument("path")
    p_replay.add_argument("--chunk-size", type=int, default=16)

    p_generate = sub.add_parser("generate", help="Stream a script from the slide agent")
    p_generate.add_argument("presentation", help="Google Slides URL or presentation id")
    p_generate.add_argument("--user", required=True)
    p_generate.add_argument("--style", choices=sorted(RENDER_STYLES))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    command = replay if args.command == "replay" else generate
    try:
        return asyncio.run(command(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
