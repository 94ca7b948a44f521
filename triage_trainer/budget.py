"""Per-episode budgets for active queries and expert consultations."""

import logging
from dataclasses import dataclass, field

from triage_trainer.errors import BudgetExhausted

logger = logging.getLogger(__name__)


@dataclass
class Budget:
    """A non-negative counter that is refilled at every episode start.

    Units are consumed one at a time and never refunded.

    Attributes:
        name: Label used in logs and errors ("query", "consultation")
        maximum: Units available at the start of each episode
        remaining: Units left in the current episode
    """

    name: str
    maximum: int
    remaining: int = field(init=False, default=0)

    def __post_init__(self):
        if self.maximum < 0:
            raise ValueError(f"{self.name} budget must be >= 0, got {self.maximum}")
        self.remaining = self.maximum

    @property
    def used(self) -> int:
        return self.maximum - self.remaining

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def consume(self) -> int:
        """Take one unit.

        Returns:
            Units remaining after this one was taken

        Raises:
            BudgetExhausted: If no units remain
        """
        if self.remaining <= 0:
            raise BudgetExhausted(self.name)
        self.remaining -= 1
        return self.remaining

    def reset(self, maximum: int | None = None) -> None:
        """Refill to the configured maximum (optionally changing it)."""
        if maximum is not None:
            if maximum < 0:
                raise ValueError(f"{self.name} budget must be >= 0, got {maximum}")
            self.maximum = maximum
        self.remaining = self.maximum
        logger.debug(f"[BUDGET] {self.name} reset to {self.maximum}")
