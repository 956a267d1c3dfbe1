from __future__ import annotations

import logging

from prflow.contexts.notifications.domain.plan import NotificationIntent, NotificationPlan, ResolutionIntent
from prflow.contexts.notifications.domain.sink import LoggingNotificationSink, NotificationMessage, NotificationSink
from prflow.contexts.notifications.infrastructure.notification_repository import NotificationRepository
from prflow.domain.contracts import ServiceOutput
from prflow.errors import not_found
from prflow.observability import observe_notification_emitted, observe_notification_failed
from prflow.ui_strings import render_notification


class NotificationLifecycleManager:
    """Emits, deduplicates and resolves workflow notifications.

    Every write runs in its own short transaction after the workflow mutation has
    committed. Failures are logged and counted, never raised to the caller.
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        sink: NotificationSink | None = None,
        repository: NotificationRepository | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.sink = sink or LoggingNotificationSink()
        self.repository = repository or NotificationRepository(tenant_id=tenant_id)
        self._logger = logging.getLogger("prflow.notifications")

    def dispatch(self, db, plan: NotificationPlan) -> dict:
        emitted: list[int] = []
        resolved = 0
        failed = 0
        for step in plan:
            if isinstance(step, ResolutionIntent):
                count = self.resolve(db, related_id=step.related_id, related_type=step.related_type, notification_type=step.type)
                if count is None:
                    failed += 1
                else:
                    resolved += count
                continue
            notification_id = self.emit(db, step)
            if notification_id is None:
                failed += 1
            else:
                emitted.append(notification_id)
        return {"emitted": emitted, "resolved": resolved, "failed": failed}

    def emit(self, db, intent: NotificationIntent) -> int | None:
        """Create an UNREAD notification, reusing an open one for the same (user, type, related id)."""
        try:
            with db.transaction():
                existing = self.repository.find_unread(
                    db,
                    user_id=intent.user_id,
                    notification_type=intent.type,
                    related_id=intent.related_id,
                    related_type=intent.related_type,
                )
                if existing:
                    notification_id = int(existing["id"])
                    title, message = str(existing["title"]), str(existing["message"])
                else:
                    title, message = render_notification(intent.type, intent.context)
                    notification_id = self.repository.create(
                        db,
                        user_id=intent.user_id,
                        role=intent.role,
                        notification_type=intent.type,
                        title=title,
                        message=message,
                        related_id=intent.related_id,
                        related_type=intent.related_type,
                        metadata=intent.context,
                    )
        except Exception:  # noqa: BLE001
            observe_notification_failed(1)
            self._logger.exception(
                "notification_emit_failed",
                extra={
                    "notification_type": intent.type,
                    "user_id": intent.user_id,
                    "related_id": intent.related_id,
                    "tenant_id": self.tenant_id,
                },
            )
            return None

        observe_notification_emitted(intent.type)
        self._push(
            NotificationMessage(
                notification_id=notification_id,
                user_id=intent.user_id,
                type=intent.type,
                title=title,
                message=message,
                related_id=intent.related_id,
                related_type=intent.related_type,
                status="UNREAD",
                metadata=dict(intent.context),
            )
        )
        return notification_id

    def _push(self, message: NotificationMessage) -> None:
        try:
            self.sink.push(message)
        except Exception:  # noqa: BLE001
            observe_notification_failed(1)
            self._logger.exception(
                "notification_push_failed",
                extra={"notification_id": message.notification_id, "notification_type": message.type},
            )

    def resolve(self, db, *, related_id: int, related_type: str, notification_type: str) -> int | None:
        try:
            with db.transaction():
                return self.repository.resolve(
                    db,
                    related_id=related_id,
                    related_type=related_type,
                    notification_type=notification_type,
                )
        except Exception:  # noqa: BLE001
            observe_notification_failed(1)
            self._logger.exception(
                "notification_resolve_failed",
                extra={"notification_type": notification_type, "related_id": related_id, "tenant_id": self.tenant_id},
            )
            return None

    def mark_read(self, db, notification_id: int, *, user_id: int) -> ServiceOutput:
        with db.transaction():
            notification = self.repository.get_by_id(db, notification_id)
            if not notification or int(notification["user_id"]) != int(user_id):
                raise not_found("notification", notification_id)
            changed = self.repository.mark_read(db, notification_id, user_id=user_id)
        status = "READ" if changed else str(notification["status"])
        return ServiceOutput({"id": notification_id, "status": status})

    def unread_count(self, db, *, user_id: int) -> int:
        return self.repository.count_unread(db, user_id=user_id)

    def list_for_user(self, db, *, user_id: int, status: str | None = None, limit: int = 50) -> ServiceOutput:
        items = self.repository.list_for_user(db, user_id=user_id, status=status, limit=limit)
        return ServiceOutput({"items": items, "unread": self.unread_count(db, user_id=user_id)})
