from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEPLOYMENTS_PATH = "/deployments"

Subscriber = Callable[[str], None]


class InvalidationHub:
    """Fan-out of "this view is stale" notices to presentation layers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Subscriber:
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, path: str) -> None:
        for callback in list(self._subscribers):
            try:
                callback(path)
            except Exception:
                logger.exception("invalidation subscriber failed path=%s", path)


hub = InvalidationHub()
