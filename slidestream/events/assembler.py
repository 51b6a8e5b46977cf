"""
Slide Assembler: rebuilds slides from streamed session events.

This module provides the SlideAssembler class a consumer uses to track
in-progress slides through their lifecycle (start -> chunks -> complete).

Key Features:
- Slide lifecycle management
- Script accumulation from single or multi-character fragments
- Partial slide recovery on stream interruption
- Session status tracking (finished, error)
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .schema import (
    ErrorEvent,
    FinishEvent,
    RecordCompleteEvent,
    RecordContentChunkEvent,
    RecordStartEvent,
    Slide,
    StartEvent,
    StreamEvent,
    parse_event,
)

logger = logging.getLogger(__name__)


class SlideAssembler:
    """
    Assembles slides from session events.

    Example:
        >>> assembler = SlideAssembler()
        >>> assembler.apply(RecordStartEvent(index=1, label="Intro"))
        >>> assembler.apply(RecordContentChunkEvent(index=1, fragment="Hello "))
        >>> assembler.apply(RecordContentChunkEvent(index=1, fragment="world"))
        >>> assembler.apply(RecordCompleteEvent(index=1))
        >>> assembler.slides[0].script
        'Hello world'
    """

    def __init__(self):
        self._slides: Dict[int, Slide] = {}
        self.run_id: Optional[str] = None
        self.error: Optional[str] = None
        self.finished = False

    def apply(self, event: Union[StreamEvent, Dict[str, Any]]) -> None:
        """
        Apply one event.

        Args:
            event: A session event model or its plain dict form
        """
        if isinstance(event, dict):
            event = parse_event(event)

        if isinstance(event, StartEvent):
            self.run_id = event.run_id
        elif isinstance(event, RecordStartEvent):
            self.start_slide(event.index, event.label)
        elif isinstance(event, RecordContentChunkEvent):
            self.append_script(event.index, event.fragment)
        elif isinstance(event, RecordCompleteEvent):
            self.complete_slide(event.index)
        elif isinstance(event, ErrorEvent):
            self.error = event.message
        elif isinstance(event, FinishEvent):
            self.finished = True

    def start_slide(self, index: int, title: str) -> Slide:
        """Start tracking a slide; a repeated start keeps the existing script."""
        slide = self._slides.get(index)
        if slide is None:
            slide = Slide(slide_number=index, title=title, is_complete=False, is_streaming=True)
            self._slides[index] = slide
        return slide

    def append_script(self, index: int, fragment: str) -> Optional[Slide]:
        """
        Append script text to a slide.

        Returns:
            The updated slide, or None if the slide was never started
        """
        slide = self._slides.get(index)
        if slide is None:
            logger.warning("Content for unknown slide %s dropped", index)
            return None
        slide.script += fragment
        slide.is_streaming = True
        return slide

    def complete_slide(self, index: int) -> Optional[Slide]:
        slide = self._slides.get(index)
        if slide is None:
            return None
        slide.is_complete = True
        slide.is_streaming = False
        return slide

    def close_all_partial(self) -> List[Slide]:
        """
        Stop streaming on every open slide (for stream interruption).

        Returns:
            Slides that never completed
        """
        partial = []
        for slide in self._slides.values():
            if not slide.is_complete:
                slide.is_streaming = False
                partial.append(slide)
        return partial

    @property
    def slides(self) -> List[Slide]:
        """All slides ordered by slide number."""
        return [self._slides[k] for k in sorted(self._slides)]

    def has_open_slides(self) -> bool:
        return any(not s.is_complete for s in self._slides.values())
