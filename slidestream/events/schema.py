"""
Slide Events: Type-safe events for streamed presentation scripts.

This module provides Pydantic models for the events produced while a
presentation script is being generated, plus the server-push framing used
to hand them to a remote consumer.

Key Features:
- Discriminated union of all session events
- Server-Sent Events encoding and decoding
- Slide and script models for the complete-document case
- Markdown rendering for fallback display
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


RenderStyle = Literal["concise", "explanatory", "formal", "storytelling"]

RENDER_STYLES: Dict[str, str] = {
    "concise": "Brief, to-the-point script with key highlights",
    "explanatory": "Detailed explanations with context and examples",
    "formal": "Professional, business-appropriate tone",
    "storytelling": "Narrative approach with engaging flow",
}

SSE_DATA_PREFIX = "data: "


# =============================================================================
# Session Events
# =============================================================================

class StartEvent(BaseModel):
    """Event emitted once when a session begins."""
    type: Literal["start"] = "start"
    run_id: str = Field(..., description="Correlation identifier for the session")
    style: Optional[RenderStyle] = Field(None, description="Render style used for the prompt")


class RecordStartEvent(BaseModel):
    """Event emitted when a slide's number and title are known."""
    type: Literal["record-start"] = "record-start"
    index: int = Field(..., description="Slide number")
    label: str = Field(..., description="Slide title")


class RecordContentChunkEvent(BaseModel):
    """Event emitted for each piece of a slide's script."""
    type: Literal["record-content-chunk"] = "record-content-chunk"
    index: int = Field(..., description="Slide this fragment belongs to")
    fragment: str = Field(..., description="Decoded script text to append")


class RecordCompleteEvent(BaseModel):
    """Event emitted when a slide's script string closes."""
    type: Literal["record-complete"] = "record-complete"
    index: int = Field(..., description="Slide that has completed")


class ErrorEvent(BaseModel):
    """Event emitted when the session fails; always followed by finish."""
    type: Literal["error"] = "error"
    message: str = Field(..., description="Human readable failure description")


class FinishEvent(BaseModel):
    """Terminal event, exactly one per session."""
    type: Literal["finish"] = "finish"
    run_id: str = Field(..., description="Correlation identifier for the session")


RecordEvent = Union[RecordStartEvent, RecordContentChunkEvent, RecordCompleteEvent]

StreamEvent = Annotated[
    Union[
        StartEvent,
        RecordStartEvent,
        RecordContentChunkEvent,
        RecordCompleteEvent,
        ErrorEvent,
        FinishEvent,
    ],
    Field(discriminator="type")
]

_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)


# =============================================================================
# Server-Sent Events framing
# =============================================================================

def encode_sse(event: BaseModel) -> str:
    """
    Encode one event as a server-push frame.

    Example:
        >>> encode_sse(RecordCompleteEvent(index=2))
        'data: {"type":"record-complete","index":2}\\n\\n'
    """
    return f"{SSE_DATA_PREFIX}{event.model_dump_json(exclude_none=True)}\n\n"


def decode_sse(frame: str) -> Optional[StreamEvent]:
    """
    Decode a single ``data:`` frame back into an event model.

    Returns None for comments, blank frames and frames without a data line.
    Raises pydantic.ValidationError when the payload is not a known event.
    """
    for line in frame.splitlines():
        line = line.strip()
        if line.startswith("data:"):
            return _event_adapter.validate_json(line[5:].strip())
    return None


def parse_event(data: Dict[str, Any]) -> StreamEvent:
    """Validate a plain dict as one of the session events."""
    return _event_adapter.validate_python(data)


# =============================================================================
# Complete documents
# =============================================================================

class Slide(BaseModel):
    """One slide of a presentation script."""
    slide_number: int = Field(..., alias="slideNumber", description="Slide number (1-indexed)")
    title: str = Field(..., description="Title of the slide")
    script: str = Field("", description="Narration script for this slide")
    is_complete: bool = Field(True, alias="isComplete")
    is_streaming: bool = Field(False, alias="isStreaming")

    model_config = {"populate_by_name": True}


class SlideScript(BaseModel):
    """The complete document the agent is asked to produce."""
    slides: List[Slide] = Field(default_factory=list, description="Slides in generation order")

    @field_validator("slides")
    @classmethod
    def unique_slide_numbers(cls, v: List[Slide]) -> List[Slide]:
        seen = set()
        for slide in v:
            if slide.slide_number in seen:
                raise ValueError(f"duplicate slideNumber {slide.slide_number}")
            seen.add(slide.slide_number)
        return v


def parse_slide_script(json_str: str) -> Optional[SlideScript]:
    """
    Parse a complete response into a SlideScript.

    Args:
        json_str: Raw text from the agent, possibly wrapped in a code fence

    Returns:
        SlideScript if parsing succeeds, None otherwise

    Example:
        >>> doc = parse_slide_script('{"slides":[{"slideNumber":1,"title":"Intro","script":"Hi!"}]}')
        >>> doc.slides[0].title
        'Intro'
    """
    try:
        cleaned = json_str.strip()
        if cleaned.startswith("```"):
            lines = cleaned.split("\n")
            if lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            cleaned = "\n".join(lines)

        data = json.loads(cleaned)
        return SlideScript.model_validate(data)
    except Exception:
        return None


def slides_to_markdown(slides: List[Slide]) -> str:
    """
    Convert slides to markdown for fallback rendering.

    Incomplete slides are marked so a reader can tell the stream was cut.
    """
    markdown_parts = []

    for slide in slides:
        markdown_parts.append(f"## Slide {slide.slide_number}: {slide.title}")
        markdown_parts.append("")
        if slide.script:
            markdown_parts.append(slide.script)
            markdown_parts.append("")
        if not slide.is_complete:
            markdown_parts.append("> *(incomplete)*")
            markdown_parts.append("")

    return "\n".join(markdown_parts)
