"""
Selection Resolver: the terminal random pick.

INVARIANTS:
- The final selection is drawn from the candidate set at completion
- Runners-up never include the final selection
- len(runners_up) + 1 == min(M, len(candidate_set))
- A single remaining candidate is chosen without a random draw
- The result is written once and never changes
"""

import logging
import random
from dataclasses import dataclass

from tribepick.models.session import DecisionSession, SessionIntegrityError, SessionStateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionResult:
    """The winning item and the other finalists."""

    final_selection: str
    runners_up: tuple[str, ...]
    drawn: bool


class SelectionResolver:
    """Draws the final selection from a session's candidate set."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.SystemRandom()

    def resolve(self, session: DecisionSession) -> SelectionResult:
        """
        Pick the final selection and runners-up and write them to the session.

        Raises:
            SessionStateError: If a final selection already exists
            SessionIntegrityError: If the candidate set is empty
        """
        if session.final_selection is not None:
            raise SessionStateError("resolve the selection", session.status)

        candidates = list(session.candidate_set)
        if not candidates:
            raise SessionIntegrityError(session.id, "candidate set is empty at completion")

        if len(candidates) == 1:
            result = SelectionResult(final_selection=candidates[0], runners_up=(), drawn=False)
        else:
            final = self._rng.choice(candidates)
            rest = [c for c in candidates if c != final]
            self._rng.shuffle(rest)
            m = session.params.m if session.params else len(candidates)
            finalists = min(m, len(candidates))
            result = SelectionResult(
                final_selection=final,
                runners_up=tuple(rest[: finalists - 1]),
                drawn=True,
            )

        session.final_selection = result.final_selection
        session.runners_up = list(result.runners_up)

        logger.info(
            "selection_resolved",
            extra={
                "session_id": session.id,
                "final_selection": result.final_selection,
                "runners_up": len(result.runners_up),
                "drawn": result.drawn,
            },
        )
        return result
