"""Processing lifecycle shared by transcriptions, web contents and digests.

Every enrichment row moves pending -> processing -> (completed | failed).
Transitions are validated here instead of comparing status strings in the
stage handlers.
"""

from __future__ import annotations

from enum import Enum


class ProcessingStatus(str, Enum):
    """Lifecycle status of an enrichment row."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})

ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.FAILED}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.COMPLETED: frozenset(),
    ProcessingStatus.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """A status change that would break the lifecycle ordering."""

    def __init__(self, current: ProcessingStatus, target: ProcessingStatus):
        super().__init__(f"Illegal status transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(
    current: ProcessingStatus | None,
    target: ProcessingStatus,
    *,
    force: bool = False,
) -> bool:
    """Whether a row in `current` may move to `target`.

    `None` means the row does not exist yet; it may only be created pending.
    A forced regeneration may restart a terminal row at processing, but no
    transition ever re-enters pending.
    """
    if current is None:
        return target == ProcessingStatus.PENDING
    if target == ProcessingStatus.PENDING:
        return False
    if force and current.is_terminal and target == ProcessingStatus.PROCESSING:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(
    current: ProcessingStatus | None,
    target: ProcessingStatus,
    *,
    force: bool = False,
) -> None:
    """Raise InvalidTransitionError if the move is not allowed."""
    if not can_transition(current, target, force=force):
        raise InvalidTransitionError(current or ProcessingStatus.PENDING, target)


def should_process(current: ProcessingStatus | None) -> bool:
    """Idempotency guard: only absent or pending rows start a stage."""
    return current is None or current == ProcessingStatus.PENDING
