"""
Production workflow domain events.

Events are published after the service has committed, so a subscriber
never observes a change that was rolled back. Each event kind carries
only the fields relevant to it:

    WorkflowCreated     workflow_id, piece_mark_id, project_id, actor, timestamp
    StageTransitioned   workflow_id, from_stage_id, to_stage_id, actor,
                        project_id, timestamp
    StatusChanged       workflow_id, from_status, to_status, actor,
                        project_id, timestamp
    TaskStatusChanged   workflow_id, task_id, stage_id, from_status,
                        to_status, actor, project_id, timestamp

Subscriptions are owned by the caller and may be narrowed by kind, by
workflow or by project:

    bus = get_event_bus()
    sub = bus.subscribe(handler, kinds={"stage_transitioned"}, project_id=7)
    ...
    sub.unsubscribe()

or, scoped:

    with bus.subscribe(handler, workflow_id=42):
        ...
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Union

from flask import current_app

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _EventMixin:
    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass(frozen=True)
class WorkflowCreated(_EventMixin):
    """A workflow record was created for a piece mark."""
    workflow_id: int
    piece_mark_id: str
    project_id: int | None
    actor: str
    timestamp: datetime = field(default_factory=_utcnow)
    kind: str = field(default="workflow_created", init=False)


@dataclass(frozen=True)
class StageTransitioned(_EventMixin):
    """A workflow moved from one catalog stage to another."""
    workflow_id: int
    from_stage_id: int | None
    to_stage_id: int
    actor: str
    project_id: int | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    kind: str = field(default="stage_transitioned", init=False)


@dataclass(frozen=True)
class StatusChanged(_EventMixin):
    """A workflow's lifecycle status changed."""
    workflow_id: int
    from_status: str
    to_status: str
    actor: str
    project_id: int | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    kind: str = field(default="status_changed", init=False)


@dataclass(frozen=True)
class TaskStatusChanged(_EventMixin):
    """A checklist task of a workflow changed status."""
    workflow_id: int
    task_id: int
    stage_id: int
    from_status: str
    to_status: str
    actor: str
    project_id: int | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    kind: str = field(default="task_status_changed", init=False)


WorkflowEvent = Union[WorkflowCreated, StageTransitioned, StatusChanged, TaskStatusChanged]

EVENT_KINDS = {"workflow_created", "stage_transitioned", "status_changed", "task_status_changed"}

Handler = Callable[[WorkflowEvent], None]


class Subscription:
    """Handle returned by ``EventBus.subscribe``; the caller disposes it."""

    def __init__(
        self,
        bus: EventBus,
        handler: Handler,
        kinds: frozenset[str] | None,
        workflow_id: int | None = None,
        project_id: int | None = None,
    ):
        self._bus = bus
        self.handler = handler
        self.kinds = kinds
        self.workflow_id = workflow_id
        self.project_id = project_id
        self.active = True

    def accepts(self, event: WorkflowEvent) -> bool:
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.workflow_id is not None and event.workflow_id != self.workflow_id:
            return False
        if self.project_id is not None and event.project_id != self.project_id:
            return False
        return True

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventBus:
    """In-process fan-out of workflow events to live subscriptions.

    Delivery is best effort: a failing handler is logged and skipped so
    it cannot undo a change that has already been committed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: Handler,
        kinds=None,
        *,
        workflow_id: int | None = None,
        project_id: int | None = None,
    ) -> Subscription:
        """Register *handler* for matching events.

        Args:
            kinds: Event kinds to receive; all kinds when None.
            workflow_id: Only events about this workflow.
            project_id: Only events about workflows of this project.
        """
        if kinds is not None:
            kinds = frozenset(kinds)
            unknown = kinds - EVENT_KINDS
            if unknown:
                raise ValueError(f"Unknown event kind(s): {', '.join(sorted(unknown))}")
        sub = Subscription(self, handler, kinds, workflow_id=workflow_id, project_id=project_id)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: WorkflowEvent) -> int:
        """Deliver *event* to every matching subscription; return delivery count."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.accepts(event)]
        delivered = 0
        for sub in targets:
            try:
                sub.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler failed kind=%s workflow_id=%s",
                    event.kind, event.workflow_id,
                    extra={"event_type": event.kind, "workflow_id": event.workflow_id},
                )
        return delivered


def init_event_bus(app) -> EventBus:
    """Attach a fresh bus to the application."""
    bus = EventBus()
    app.extensions["event_bus"] = bus
    return bus


def get_event_bus() -> EventBus:
    """Return the bus owned by the current application."""
    return current_app.extensions["event_bus"]


def publish(event: WorkflowEvent) -> int:
    """Publish on the current application's bus."""
    logger.debug("Publishing %s workflow_id=%s", event.kind, event.workflow_id,
                 extra={"event_type": event.kind, "workflow_id": event.workflow_id})
    return get_event_bus().publish(event)
