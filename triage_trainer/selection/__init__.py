"""Training case selection.

- complexity: cached multi-factor difficulty profiles
- strategies: the five interchangeable selection strategies
- engine: strategy choice, performance tracking and competencies
"""

from triage_trainer.selection.complexity import (
    ComplexityProfiler,
    categorize_complaint,
    competency_tags,
    compute_profile,
    difficulty_histogram,
)
from triage_trainer.selection.engine import (
    CaseSelectionEngine,
    PerformanceRecord,
    SelectionResult,
    candidate_pool_size,
)
from triage_trainer.selection.strategies import (
    SelectionContext,
    SelectionStrategyType,
)

__all__ = [
    # Complexity
    "ComplexityProfiler",
    "categorize_complaint",
    "competency_tags",
    "compute_profile",
    "difficulty_histogram",
    # Engine
    "CaseSelectionEngine",
    "PerformanceRecord",
    "SelectionResult",
    "candidate_pool_size",
    # Strategies
    "SelectionContext",
    "SelectionStrategyType",
]
