from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class NotificationMessage:
    notification_id: int
    user_id: int
    type: str
    title: str
    message: str
    related_id: int | None
    related_type: str | None
    status: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(ABC):
    """Real-time push channel. Delivery is best effort."""

    @abstractmethod
    def push(self, message: NotificationMessage) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("prflow.notifications")

    def push(self, message: NotificationMessage) -> None:
        self._logger.info(
            "notification_pushed",
            extra={
                "notification_id": message.notification_id,
                "user_id": message.user_id,
                "notification_type": message.type,
                "related_id": message.related_id,
                "related_type": message.related_type,
            },
        )
