"""Task lifecycle states and the transition table."""

from enum import Enum


class TaskState(str, Enum):
    """Lifecycle state of a task."""

    PENDING = "PENDING"
    RECORDING = "RECORDING"
    SAVED = "SAVED"
    IN_TRANSCRIB = "IN_TRANSCRIB"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AudioSource(str, Enum):
    """Where the task's audio comes from."""

    RECORD = "RECORD"
    IMPORT = "IMPORT"


# COMPLETED and FAILED are both re-enterable; there is no retry cap.
ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.RECORDING, TaskState.SAVED, TaskState.FAILED}),
    TaskState.RECORDING: frozenset({TaskState.SAVED, TaskState.FAILED}),
    TaskState.SAVED: frozenset({TaskState.IN_TRANSCRIB, TaskState.FAILED}),
    TaskState.IN_TRANSCRIB: frozenset({TaskState.COMPLETED, TaskState.FAILED}),
    TaskState.COMPLETED: frozenset({TaskState.FAILED}),
    TaskState.FAILED: frozenset({TaskState.PENDING, TaskState.SAVED}),
}

# States whose work is still in progress and must not be deleted.
BUSY_STATES = frozenset({TaskState.RECORDING, TaskState.IN_TRANSCRIB})


def is_valid_transition(from_state: TaskState | str, to_state: TaskState | str) -> bool:
    """Check whether ``to_state`` is reachable from ``from_state`` in one step."""
    try:
        source = TaskState(from_state)
        target = TaskState(to_state)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[source]
