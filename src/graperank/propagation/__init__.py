"""GrapeRank trust propagation."""

from .algorithms import (
    MAX_CONFIDENCE,
    PropagationResult,
    calculate_scorecard,
    convert_input_to_confidence,
    initialize_scorecards,
    max_difference,
    propagate,
    rigority,
    run_propagation_cycle,
)

__all__ = [
    "MAX_CONFIDENCE",
    "PropagationResult",
    "calculate_scorecard",
    "convert_input_to_confidence",
    "initialize_scorecards",
    "max_difference",
    "propagate",
    "rigority",
    "run_propagation_cycle",
]
