"""In-memory registry of running operations.

The registry mirrors the progress of executing jobs for live views and
idle detection.  It is never persisted: after a restart it starts empty and
in-flight work is rediscovered from the ledger.  Create one per process and
call ``shutdown()`` when the process stops.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ... import config as _cfg

logger = logging.getLogger(__name__)

OperationKey = Tuple[str, str]


class OperationStatus(str, enum.Enum):
    active = "active"
    completed = "completed"
    failed = "failed"


_TERMINAL = (OperationStatus.completed, OperationStatus.failed)
_FIELDS = ("status", "completed", "failed", "total", "message")


@dataclass
class Operation:
    kind: str
    id: str
    status: OperationStatus = OperationStatus.active
    completed: int = 0
    failed: int = 0
    total: int = 0
    message: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "status": self.status.value,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
            "message": self.message,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "data": dict(self.data),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OperationRegistry:
    """Tracks operations keyed by ``(kind, id)``.

    Parameters
    ----------
    clock : callable, optional
        Returns the current aware datetime.  Tests pass a fake clock.
    grace_seconds : float
        How long a terminal operation stays visible before eviction.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        grace_seconds: float = _cfg.OPERATION_GRACE_SECONDS,
    ) -> None:
        self._clock = clock or _utc_now
        self._grace = grace_seconds
        self._ops: Dict[OperationKey, Operation] = {}
        self._evictions: Dict[OperationKey, asyncio.TimerHandle] = {}
        self._last_activity = self._clock()

    # ── Mutation ─────────────────────────────────────────────────────

    def register(self, kind: str, op_id: str, data: Optional[Dict[str, Any]] = None) -> Operation:
        """Start tracking an operation; re-registering replaces the old entry."""
        key = (str(kind), str(op_id))
        self._cancel_eviction(key)
        op = Operation(kind=key[0], id=key[1], start_time=self._clock())
        self._apply(op, data or {})
        self._ops[key] = op
        return op

    def update(self, kind: str, op_id: str, **partial: Any) -> Optional[Operation]:
        """Merge *partial* into an operation.

        A terminal ``status`` stamps ``end_time``, refreshes the activity
        clock and schedules eviction after the grace window.  Updates to
        unknown operations are ignored.
        """
        key = (str(kind), str(op_id))
        op = self._ops.get(key)
        if op is None:
            return None
        was_terminal = op.is_terminal
        self._apply(op, partial)
        if op.is_terminal and not was_terminal:
            op.end_time = self._clock()
            self._last_activity = op.end_time
            self._schedule_eviction(key)
        return op

    def remove(self, kind: str, op_id: str) -> bool:
        key = (str(kind), str(op_id))
        self._cancel_eviction(key)
        return self._ops.pop(key, None) is not None

    def evict_expired(self) -> int:
        """Drop terminal operations whose grace window has passed."""
        cutoff = self._clock() - timedelta(seconds=self._grace)
        expired = [
            key for key, op in self._ops.items()
            if op.is_terminal and op.end_time is not None and op.end_time <= cutoff
        ]
        for key in expired:
            self.remove(*key)
        return len(expired)

    def shutdown(self) -> None:
        """Cancel pending evictions and forget every operation."""
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        self._ops.clear()

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, kind: str, op_id: str) -> Optional[Operation]:
        return self._ops.get((str(kind), str(op_id)))

    def by_kind(self, kind: str) -> List[Operation]:
        return [op for op in self._ops.values() if op.kind == str(kind)]

    def list_active(self) -> List[Operation]:
        """Operations that have not reached a terminal status."""
        return [op for op in self._ops.values() if not op.is_terminal]

    def list_operations(self) -> List[Operation]:
        """Every tracked operation, including terminal ones in their grace window."""
        return list(self._ops.values())

    def is_active(self) -> bool:
        return any(not op.is_terminal for op in self._ops.values())

    def idle_duration(self) -> timedelta:
        """Time since the last operation reached a terminal status.

        The clock starts at construction.
        """
        return self._clock() - self._last_activity

    def summary(self) -> Dict[str, Any]:
        by_type: Dict[str, Dict[str, int]] = {}
        active = 0
        for op in self._ops.values():
            bucket = by_type.setdefault(op.kind, {"active": 0, "completed": 0, "failed": 0})
            bucket[op.status.value] += 1
            if not op.is_terminal:
                active += 1
        return {"total": len(self._ops), "active": active, "byType": by_type}

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _apply(op: Operation, values: Dict[str, Any]) -> None:
        for name, value in values.items():
            if name == "status":
                op.status = OperationStatus(getattr(value, "value", value))
            elif name in _FIELDS:
                setattr(op, name, value)
            else:
                op.data[name] = value

    def _schedule_eviction(self, key: OperationKey) -> None:
        self._cancel_eviction(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller); evict_expired() will catch it later.
            return
        self._evictions[key] = loop.call_later(self._grace, self._evict, key)

    def _evict(self, key: OperationKey) -> None:
        self._evictions.pop(key, None)
        op = self._ops.get(key)
        if op is not None and op.is_terminal:
            del self._ops[key]
            logger.debug("Evicted operation %s/%s", *key)

    def _cancel_eviction(self, key: OperationKey) -> None:
        handle = self._evictions.pop(key, None)
        if handle is not None:
            handle.cancel()
