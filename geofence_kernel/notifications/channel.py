"""Presentation channel boundary: how a notification reaches the user."""

import threading
from typing import List, Protocol

from pydantic import BaseModel

from geofence_kernel.observability.logging import get_logger

logger = get_logger(__name__)


class PresentationChannel(Protocol):
    def present(self, title: str, message: str, deep_link: str) -> None:
        ...


class Presentation(BaseModel):
    title: str
    message: str
    deep_link: str


class RecordingPresentationChannel:
    """Keeps every presentation in memory. Used by tests and the HTTP API."""

    def __init__(self):
        self._lock = threading.Lock()
        self._presented: List[Presentation] = []

    def present(self, title: str, message: str, deep_link: str) -> None:
        with self._lock:
            self._presented.append(
                Presentation(title=title, message=message, deep_link=deep_link)
            )

    @property
    def presented(self) -> List[Presentation]:
        with self._lock:
            return list(self._presented)

    def clear(self) -> None:
        with self._lock:
            self._presented.clear()


class LoggingPresentationChannel:
    """Writes presentations to the log instead of a device."""

    def present(self, title: str, message: str, deep_link: str) -> None:
        logger.info("Notification presented", title=title, message=message, deep_link=deep_link)
