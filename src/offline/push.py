"""Push → notification hook. Display and delivery belong to the host."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_TEXT = "New update available!"

# Only the most recent notifications are kept on the handler
RECENT_NOTIFICATIONS = 20


@dataclass
class Notification:
    title: str
    body: str
    icon: str
    badge: str

    def options(self) -> Dict[str, Any]:
        return {"body": self.body, "icon": self.icon, "badge": self.badge}


@dataclass
class PushHandler:
    """
    Turns a push payload into a notification request.

    show_notification is called as show_notification(title, options); it is
    whatever the host runtime uses to put something on screen.
    """

    app_name: str
    icon: str
    badge: str
    show_notification: Optional[Callable[[str, Dict[str, Any]], Any]] = None
    shown: deque = field(default_factory=lambda: deque(maxlen=RECENT_NOTIFICATIONS))

    def on_push(self, payload: Union[str, bytes, None] = None) -> Notification:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        text = payload if payload else DEFAULT_NOTIFICATION_TEXT

        notification = Notification(title=self.app_name, body=text, icon=self.icon, badge=self.badge)
        self.shown.append(notification)
        if self.show_notification is not None:
            self.show_notification(notification.title, notification.options())
        else:
            logger.info("push received with no notifier bound: %s", text)
        return notification
