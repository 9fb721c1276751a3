"""Operation state tracking

Holds the current (or last known) operation of every service instance and
enforces single-flight: at most one backup or restore per service can be
queued or running at any time.

State machine::

    idle -> queued -> running -> succeeded
                 \\         \\-> failed
                  \\-> failed

A terminal state is the resting "last known result"; a new ``reserve``
moves it back to queued. State lives in memory for the process lifetime.
"""

import itertools
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from cfbackup.exceptions import BackupError, BusyError
from cfbackup.models import ServiceKey


class OperationKind(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"


class Phase(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def in_flight(self) -> bool:
        return self in (Phase.QUEUED, Phase.RUNNING)

    @property
    def terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.FAILED)


_TRANSITIONS = {
    Phase.RUNNING: {Phase.QUEUED},
    Phase.SUCCEEDED: {Phase.RUNNING},
    Phase.FAILED: {Phase.QUEUED, Phase.RUNNING},
}


class StateTransitionError(RuntimeError):
    """Illegal transition or stale handle; always a programming error."""


@dataclass(frozen=True)
class OperationState:
    """Snapshot of one service's current or last operation."""

    service_type: str
    service_name: str
    phase: Phase = Phase.IDLE
    kind: Optional[OperationKind] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    filename: Optional[str] = None
    last_error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def key(self) -> ServiceKey:
        return ServiceKey(self.service_type, self.service_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Type": self.service_type,
            "Name": self.service_name,
            "Operation": self.kind.value if self.kind else None,
            "Status": self.phase.value,
            "Filename": self.filename,
            "StartedAt": self.started_at.isoformat() if self.started_at else None,
            "EndedAt": self.ended_at.isoformat() if self.ended_at else None,
            "Error": self.last_error,
            "ErrorCode": self.error_code,
        }


@dataclass(frozen=True)
class OperationHandle:
    """Proof of a successful reservation, required for every transition."""

    key: ServiceKey
    kind: OperationKind
    token: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore:
    """Process-wide map from service identity to operation state.

    One coarse lock guards the map. ``reserve`` performs its check and its
    write under that lock, so two callers can never both observe an idle
    service and both proceed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[ServiceKey, OperationState] = {}
        self._tokens: Dict[ServiceKey, int] = {}
        self._counter = itertools.count(1)

    def reserve(self, key: ServiceKey, kind: OperationKind) -> OperationHandle:
        """
        Reserve ``key`` for a new operation

        Raises:
            BusyError: If an operation is already queued or running
        """
        with self._lock:
            current = self._states.get(key)
            if current is not None and current.phase.in_flight:
                raise BusyError(
                    f"a {current.kind.value if current.kind else 'job'} for {key} is already {current.phase.value}",
                    details={
                        "service_type": key.type,
                        "service_name": key.name,
                        "operation": current.kind.value if current.kind else None,
                        "status": current.phase.value,
                    },
                )

            token = next(self._counter)
            self._tokens[key] = token
            self._states[key] = OperationState(
                service_type=key.type,
                service_name=key.name,
                phase=Phase.QUEUED,
                kind=kind,
                started_at=_now(),
            )
            return OperationHandle(key=key, kind=kind, token=token)

    def _transition(self, handle: OperationHandle, phase: Phase, **changes: Any) -> OperationState:
        with self._lock:
            if self._tokens.get(handle.key) != handle.token:
                raise StateTransitionError(f"stale operation handle for {handle.key}")

            current = self._states[handle.key]
            if current.phase not in _TRANSITIONS.get(phase, set()):
                raise StateTransitionError(
                    f"illegal transition {current.phase.value} -> {phase.value} for {handle.key}"
                )

            updated = replace(current, phase=phase, **changes)
            self._states[handle.key] = updated
            return updated

    def mark_running(self, handle: OperationHandle) -> OperationState:
        return self._transition(handle, Phase.RUNNING)

    def mark_succeeded(self, handle: OperationHandle, filename: Optional[str] = None) -> OperationState:
        return self._transition(handle, Phase.SUCCEEDED, ended_at=_now(), filename=filename)

    def mark_failed(
        self,
        handle: OperationHandle,
        error: BaseException,
        filename: Optional[str] = None,
    ) -> OperationState:
        code = error.code if isinstance(error, BackupError) else type(error).__name__
        message = error.message if isinstance(error, BackupError) else str(error)
        return self._transition(
            handle,
            Phase.FAILED,
            ended_at=_now(),
            last_error=message,
            error_code=code,
            filename=filename,
        )

    def query(self, key: ServiceKey) -> OperationState:
        """Snapshot of ``key``'s state; idle if it was never reserved."""
        with self._lock:
            state = self._states.get(key)
        if state is None:
            return OperationState(service_type=key.type, service_name=key.name)
        return state

    def is_busy(self, key: ServiceKey) -> bool:
        return self.query(key).phase.in_flight

    def snapshot(self) -> List[OperationState]:
        """All known states, ordered by service key."""
        with self._lock:
            states = list(self._states.values())
        return sorted(states, key=lambda s: (s.service_type, s.service_name))
