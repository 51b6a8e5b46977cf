"""
Preamble Filter: finds where the JSON document starts in narrative text.

Models often wrap structured output in chatter ("Sure! Here is the
result:") and ```json fences even when told not to. The filter watches a
small rolling window of the incoming text and, once a lead-in marker
matches, hands every following character to the record parser.
"""

import logging
import re
from typing import Iterable, List, NamedTuple, Optional, Union

logger = logging.getLogger(__name__)


# A fenced block opener (```json, ```JSON, or bare ```) followed by the
# outer brace, and an outer brace at the start of the stream or a line.
FENCED_OBJECT_MARKER = r"```[A-Za-z]*[ \t]*\r?\n?\s*\{"
LINE_START_OBJECT_MARKER = r"\n[ \t]*\{"

DEFAULT_LEAD_IN_MARKERS: List[str] = [
    FENCED_OBJECT_MARKER,
    LINE_START_OBJECT_MARKER,
]

DEFAULT_WINDOW_SIZE = 32

# Seeded into the window so a brace at the very start of the stream looks
# like one at the start of a line.
_STREAM_START = "\n"


class FilterResult(NamedTuple):
    """What one fragment turned into."""
    narrative: str
    structured: str


class PreambleFilter:
    """
    Gates a fragment stream between narrative text and the structured value.

    Example:
        >>> f = PreambleFilter()
        >>> f.push("Sure! Here it is:\\n```json\\n")
        FilterResult(narrative='Sure! Here it is:\\n```json\\n', structured='')
        >>> f.push('{"slides":[')
        FilterResult(narrative='', structured='"slides":[')
        >>> f.active
        True
    """

    def __init__(
        self,
        markers: Optional[Iterable[Union[str, "re.Pattern[str]"]]] = None,
        window_size: int = DEFAULT_WINDOW_SIZE
    ):
        """
        Initialize the filter.

        Args:
            markers: Regular expressions recognised as lead-ins; each is
                matched against the end of the rolling window and the
                structured value starts right after the match
            window_size: Number of trailing characters kept for matching
        """
        patterns = list(markers) if markers is not None else DEFAULT_LEAD_IN_MARKERS
        if not patterns:
            raise ValueError("at least one lead-in marker is required")
        self.markers: List["re.Pattern[str]"] = [
            re.compile("(?:" + p.pattern + r")\Z", p.flags) if isinstance(p, re.Pattern) else re.compile("(?:" + p + r")\Z")
            for p in patterns
        ]
        self.window_size = window_size
        self.window = _STREAM_START
        self.active = False

    def push(self, fragment: str) -> FilterResult:
        """
        Route one fragment.

        Before the lead-in is seen the fragment is narrative text. The
        fragment that completes the lead-in is split at the character that
        completes it: everything before that character is narrative and
        everything after it is structured. The marker text itself, apart
        from its last character, is therefore narrative, and the
        concatenated narrative is the same however the stream is
        fragmented. Once active, whole fragments are structured.
        """
        if self.active:
            return FilterResult("", fragment)

        for i, char in enumerate(fragment):
            self.window = (self.window + char)[-self.window_size:]
            match = self._match()
            if match is None:
                continue

            self.active = True
            narrative = fragment[:i]
            structured = fragment[i + 1:]
            logger.debug("Lead-in matched by %r; structured parsing begins", match.re.pattern)
            self.window = ""
            return FilterResult(narrative, structured)

        return FilterResult(fragment, "")

    def _match(self) -> Optional["re.Match[str]"]:
        for marker in self.markers:
            match = marker.search(self.window)
            if match is not None:
                return match
        return None
