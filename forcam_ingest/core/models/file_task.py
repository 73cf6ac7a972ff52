"""
FileTask model representing one discovered drop file and its lifecycle state.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class FileState(str, Enum):
    DISCOVERED = "discovered"
    LOCK_WAITING = "lock_waiting"
    PROCESSING = "processing"
    ARCHIVED = "archived"
    QUARANTINED = "quarantined"


TERMINAL_STATES = frozenset({FileState.ARCHIVED, FileState.QUARANTINED})

# Allowed transitions; terminal states have none.
TRANSITIONS: dict[FileState, frozenset[FileState]] = {
    FileState.DISCOVERED: frozenset({FileState.LOCK_WAITING}),
    FileState.LOCK_WAITING: frozenset({FileState.PROCESSING, FileState.QUARANTINED}),
    FileState.PROCESSING: frozenset({FileState.ARCHIVED, FileState.QUARANTINED}),
    FileState.ARCHIVED: frozenset(),
    FileState.QUARANTINED: frozenset(),
}


class FileTask(BaseModel):
    """
    A candidate drop file owned by exactly one FileLifecycleManager run.

    Attributes:
        path: Current location of the file
        machine_name: Parent directory name
        state: Lifecycle state
        attempts: Load attempts made
        reason: Why the task ended where it did (locked, load_failed, ...)
        last_error: Last error message
        destination: Final path after the archive/quarantine move
        batch_id: Batch of the last load attempt
        move_failed: The terminal move could not be completed
        cancelled: A stop was requested before the task finished
    """

    path: Path
    machine_name: str = Field(..., min_length=1)
    state: FileState = FileState.DISCOVERED
    attempts: int = 0
    reason: str | None = None
    last_error: str | None = None
    destination: Path | None = None
    batch_id: str | None = None
    move_failed: bool = False
    cancelled: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: FileState) -> FileState:
        """
        Move the task to a new state.

        Args:
            new_state: Target state

        Returns:
            The previous state

        Raises:
            ValueError: If the transition is not allowed
        """
        if new_state not in TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid file state transition {self.state.value} -> {new_state.value} "
                f"for {self.path}"
            )
        previous = self.state
        self.state = new_state
        return previous
