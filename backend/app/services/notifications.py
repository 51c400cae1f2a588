"""In-memory feed of user-facing toasts polled by the Streamlit client."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from typing import Deque, List, Literal

from ..models.schemas import Notification

LOGGER = logging.getLogger(__name__)


class NotificationCenter:
    """Bounded, ordered list of notifications with monotonically increasing ids."""

    def __init__(self, max_items: int = 200) -> None:
        self._items: Deque[Notification] = deque(maxlen=max_items)
        self._ids = itertools.count(1)

    def notify(
        self,
        title: str,
        description: str,
        variant: Literal["default", "destructive"] = "default",
    ) -> Notification:
        notification = Notification(
            id=next(self._ids), title=title, description=description, variant=variant
        )
        self._items.append(notification)
        LOGGER.info("Notification [%s] %s: %s", variant, title, description)
        return notification

    def since(self, after_id: int = 0) -> List[Notification]:
        return [item for item in self._items if item.id > after_id]
