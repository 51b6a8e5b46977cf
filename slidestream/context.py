"""
Per-request context threaded explicitly through the pipeline.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from .events.schema import RenderStyle


@dataclass(frozen=True)
class RequestContext:
    """
    Everything one request needs to know about its caller.

    Created once per top-level request and passed as an argument; never
    stored in module globals, so concurrent sessions cannot see each
    other's user.
    """
    user_id: str
    presentation_id: str
    style: Optional[RenderStyle] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
