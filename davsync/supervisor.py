"""Bounded restart loop around the sync engine.

The engine may report after a run that another sync is needed, for example
because a file changed while it was transferred. The supervisor then starts
a fresh engine right away, up to a configured number of restarts.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    """States of the restart loop."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    NEEDS_RESTART = "needs_restart"
    RESTART_EXHAUSTED = "restart_exhausted"


@dataclass
class SupervisorOutcome:
    """Final result of a supervised sync."""

    state: SupervisorState
    success: bool
    restarts: int
    invocations: int

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class RetrySupervisor:
    """Runs sync engines until no follow-up sync is needed.

    Args:
        engine_factory: Creates a new engine for every attempt
        max_restarts: Restarts allowed after the first run
    """

    def __init__(self, engine_factory: Callable[[], SyncEngine], max_restarts: int = 3):
        self.engine_factory = engine_factory
        self.max_restarts = max_restarts
        self.state = SupervisorState.IDLE
        self.restarts = 0
        self.invocations = 0

    async def run(self) -> SupervisorOutcome:
        """Run the sync phase, restarting it while the engine asks for it.

        Returns:
            The outcome of the last engine run
        """
        while True:
            self.state = SupervisorState.RUNNING
            engine = self.engine_factory()
            self.invocations += 1
            success = await engine.start()

            if not engine.is_another_sync_needed():
                self.state = SupervisorState.COMPLETED
                break

            if self.restarts < self.max_restarts:
                self.state = SupervisorState.NEEDS_RESTART
                self.restarts += 1
                logger.info("Restarting sync, because another sync is needed")
                continue

            logger.warning(
                f"Another sync is needed, but not done because restart count "
                f"is exceeded ({self.restarts})"
            )
            self.state = SupervisorState.RESTART_EXHAUSTED
            break

        return SupervisorOutcome(
            state=self.state,
            success=success,
            restarts=self.restarts,
            invocations=self.invocations,
        )
