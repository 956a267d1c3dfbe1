from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Union


PURCHASE_REQUEST = "purchase_request"


@dataclass(frozen=True)
class NotificationIntent:
    user_id: int
    type: str
    related_id: int
    related_type: str = PURCHASE_REQUEST
    role: str | None = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolutionIntent:
    type: str
    related_id: int
    related_type: str = PURCHASE_REQUEST


PlanStep = Union[NotificationIntent, ResolutionIntent]


class NotificationPlan:
    """Ordered notification side effects collected during a unit of work.

    Nothing is written while the plan is built; the plan is dispatched after the
    workflow transaction commits.
    """

    def __init__(self) -> None:
        self._steps: List[PlanStep] = []

    def notify(
        self,
        user_id: int,
        notification_type,
        *,
        related_id: int,
        related_type: str = PURCHASE_REQUEST,
        role: str | None = None,
        **context: Any,
    ) -> "NotificationPlan":
        self._steps.append(
            NotificationIntent(
                user_id=int(user_id),
                type=str(getattr(notification_type, "value", notification_type)),
                related_id=int(related_id),
                related_type=related_type,
                role=role,
                context=dict(context),
            )
        )
        return self

    def notify_all(
        self,
        users: Iterable[dict],
        notification_type,
        *,
        related_id: int,
        related_type: str = PURCHASE_REQUEST,
        **context: Any,
    ) -> "NotificationPlan":
        for user in users:
            self.notify(
                int(user["id"]),
                notification_type,
                related_id=related_id,
                related_type=related_type,
                role=user.get("role"),
                **context,
            )
        return self

    def resolve(
        self,
        notification_type,
        *,
        related_id: int,
        related_type: str = PURCHASE_REQUEST,
    ) -> "NotificationPlan":
        self._steps.append(
            ResolutionIntent(
                type=str(getattr(notification_type, "value", notification_type)),
                related_id=int(related_id),
                related_type=related_type,
            )
        )
        return self

    @property
    def notifications(self) -> List[NotificationIntent]:
        return [step for step in self._steps if isinstance(step, NotificationIntent)]

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(list(self._steps))

    def __len__(self) -> int:
        return len(self._steps)
