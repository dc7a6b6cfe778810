"""Ordered log of applied side effects and their compensating actions."""

from dataclasses import dataclass
from typing import Callable, List, Optional, TYPE_CHECKING

from ramp.logging_config import get_logger

if TYPE_CHECKING:
    from ramp.services.display_service import Reporter

logger = get_logger(__name__)


@dataclass
class AppliedAction:
    description: str
    undo: Callable[[], None]


class RollbackLog:
    """Records each applied step with its inverse.

    ``rollback()`` walks the log in reverse and runs every inverse exactly once,
    collecting failures instead of raising them so the caller can still surface
    the error that triggered the rollback.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self._actions: List[AppliedAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def record(self, description: str, undo: Callable[[], None]) -> None:
        logger.debug(f"[{self.operation}] applied: {description}")
        self._actions.append(AppliedAction(description, undo))

    def rollback(self, reporter: Optional["Reporter"] = None) -> List[str]:
        """Undo all recorded steps, newest first.

        Returns:
            Error messages from inverse actions that failed
        """
        errors: List[str] = []
        while self._actions:
            action = self._actions.pop()
            try:
                action.undo()
                logger.info(f"[{self.operation}] rolled back: {action.description}")
            except Exception as e:
                message = f"rollback of '{action.description}' failed: {e}"
                logger.error(f"[{self.operation}] {message}")
                errors.append(message)
                if reporter is not None:
                    reporter.warning(message)
        return errors

    def clear(self) -> None:
        """Forget recorded steps once the operation has committed."""
        self._actions.clear()
