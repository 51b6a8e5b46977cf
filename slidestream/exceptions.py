"""
Exceptions raised by the slide streaming pipeline.
"""

from typing import Optional


class SlideStreamError(Exception):
    """Base class for all pipeline errors."""


class UpstreamError(SlideStreamError):
    """The upstream generation service failed (connection, status, read)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTimeout(UpstreamError):
    """The upstream stream stalled or ran past its maximum duration."""


class GrammarViolation(SlideStreamError):
    """Input ordering the record grammar does not cover (strict mode only)."""

    def __init__(self, message: str, position: int):
        super().__init__(f"{message} (at character {position})")
        self.position = position
