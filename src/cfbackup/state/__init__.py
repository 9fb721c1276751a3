"""In-memory operation state and single-flight enforcement."""

from cfbackup.state.tracker import (
    OperationHandle,
    OperationKind,
    OperationState,
    Phase,
    StateStore,
    StateTransitionError,
)

__all__ = [
    "OperationHandle",
    "OperationKind",
    "OperationState",
    "Phase",
    "StateStore",
    "StateTransitionError",
]
