import json
from pathlib import Path
from typing import AsyncIterator, Iterable, List

import pytest

from slidestream.context import RequestContext


FIXTURES = Path(__file__).parent / "fixtures"


def slides_document(*slides) -> str:
    """Build a compact slides document from (number, title, script) tuples."""
    return json.dumps(
        {"slides": [{"slideNumber": n, "title": t, "script": s} for n, t, s in slides]},
        separators=(",", ":"),
    )


async def fragments_of(parts: Iterable[str]) -> AsyncIterator[str]:
    for part in parts:
        yield part


def event_types(events: List) -> List[str]:
    return [e.type for e in events]


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(user_id="user-1", presentation_id="p" * 44, run_id="run-1")


@pytest.fixture
def fenced_response() -> str:
    return (FIXTURES / "fenced_response.txt").read_text(encoding="utf-8")
