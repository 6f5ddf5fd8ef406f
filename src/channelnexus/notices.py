"""Summary: User-visible notices for connect and inbox actions.

Importance: Replaces toast popups with a feed the API and CLI can surface.
Alternatives: Log outcomes only and let clients infer them.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: str = "default"
    created_at: datetime = field(default_factory=datetime.utcnow)


class NoticeFeed:
    """Summary: Bounded, newest-last list of notices.

    Importance: Keeps notices available to clients without growing forever.
    Alternatives: Persist notices in SQLite.
    """

    def __init__(self, limit: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=limit)

    def success(self, title: str, description: str) -> Notice:
        return self._emit(Notice(title=title, description=description))

    def failure(self, title: str, description: str) -> Notice:
        return self._emit(Notice(title=title, description=description, variant="destructive"))

    def recent(self, limit: int = 20) -> list[Notice]:
        if limit <= 0:
            return []
        return list(self._notices)[-limit:]

    def _emit(self, notice: Notice) -> Notice:
        if notice.variant == "destructive":
            logger.warning("%s: %s", notice.title, notice.description)
        else:
            logger.info("%s: %s", notice.title, notice.description)
        self._notices.append(notice)
        return notice
