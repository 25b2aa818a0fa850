"""
Decision session engine.

Parameter resolution, turn scheduling, elimination and the final draw.
"""

from tribepick.engine.history import HistoryRecorder, eliminations
from tribepick.engine.parameters import (
    InsufficientCandidatesError,
    InvalidParametersError,
    NoCandidatesError,
    ParameterSuggestion,
    ResolvedParameters,
    reduce_parameters,
    resolve,
    suggest,
)
from tribepick.engine.scheduler import TurnAdvance, TurnScheduler
from tribepick.engine.selection import SelectionResolver, SelectionResult
from tribepick.engine.state_machine import EliminationStateMachine, SessionStatusView

__all__ = [
    "EliminationStateMachine",
    "HistoryRecorder",
    "InsufficientCandidatesError",
    "InvalidParametersError",
    "NoCandidatesError",
    "ParameterSuggestion",
    "ResolvedParameters",
    "SelectionResolver",
    "SelectionResult",
    "SessionStatusView",
    "TurnAdvance",
    "TurnScheduler",
    "eliminations",
    "reduce_parameters",
    "resolve",
    "suggest",
]
