from typing import Callable, List
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

class Notification(BaseModel):
    level: str # "success" | "error"
    message: str

Subscriber = Callable[[Notification], None]

class NotificationChannel:
    """User-facing messages raised by the session, observed by the UI layer."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, level: str, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        for callback in list(self._subscribers):
            callback(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.publish("success", message)

    def error(self, message: str) -> Notification:
        logger.warning("Storefront error: %s", message)
        return self.publish("error", message)
