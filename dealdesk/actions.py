"""Action boundary: identity, notifications, and the in-flight guard.

Every user-triggered async action (fetch, save, upload) runs through an
``ActionGuard``. The guard holds a single busy slot: while an action is in
flight, further triggers are ignored rather than dispatched as a second
concurrent write. Store failures and rejected input (``ValueError``, which
includes ``DocumentRejected``) are caught here and turned into a notification;
neither escapes to the caller as an exception.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from dealdesk.blobstore import DocumentRejected
from dealdesk.store import StoreError

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Identity:
    """The signed-in user, passed explicitly to every user-scoped operation."""
    user_id: str

    def __post_init__(self) -> None:
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id must be non-empty")


class Severity(str, Enum):
    info = "info"
    success = "success"
    destructive = "destructive"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    severity: Severity = Severity.info


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Default notifier: writes notifications to the log."""

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.severity is Severity.destructive else logging.INFO
        log.log(level, "%s: %s", notification.title, notification.description)


@dataclass
class CollectingNotifier:
    """Keeps notifications in memory; used by the HTTP layer and tests."""
    notifications: list[Notification] = field(default_factory=list)

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


class ActionStatus(str, Enum):
    ok = "ok"
    failed = "failed"
    ignored = "ignored"


@dataclass
class ActionResult(Generic[T]):
    status: ActionStatus
    value: T | None = None
    error: str | None = None
    # failed on the caller's input rather than in the store
    rejected: bool = False

    @property
    def ok(self) -> bool:
        return self.status is ActionStatus.ok


class ActionGuard:
    """Single-slot guard for one kind of action (e.g. "save review")."""

    def __init__(self, name: str, notifier: Notifier | None = None):
        self.name = name
        self.notifier = notifier or LoggingNotifier()
        self.busy = False

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        success: Notification | None = None,
        failure_title: str = "Error",
        **kwargs: Any,
    ) -> ActionResult[T]:
        if self.busy:
            log.debug("Action %s already in flight, ignoring trigger", self.name)
            return ActionResult(ActionStatus.ignored)
        self.busy = True
        try:
            value = await fn(*args, **kwargs)
        except DocumentRejected as exc:
            self.notifier.notify(Notification(exc.title, str(exc), Severity.destructive))
            return ActionResult(ActionStatus.failed, error=str(exc), rejected=True)
        except StoreError as exc:
            log.warning("Action %s failed: %s", self.name, exc)
            self.notifier.notify(Notification(failure_title, str(exc), Severity.destructive))
            return ActionResult(ActionStatus.failed, error=str(exc))
        except ValueError as exc:
            log.warning("Action %s rejected input: %s", self.name, exc)
            self.notifier.notify(Notification(failure_title, str(exc), Severity.destructive))
            return ActionResult(ActionStatus.failed, error=str(exc), rejected=True)
        finally:
            self.busy = False
        if success is not None:
            self.notifier.notify(success)
        return ActionResult(ActionStatus.ok, value=value)
