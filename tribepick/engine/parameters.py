"""
Parameter Resolver: fit (K, N, M) to the available candidate count.

A session needs K*N + M candidates: every participant eliminates K items
and M remain for the final draw. When fewer survive filtering, K and M are
reduced in a fixed order. The order matters (different orders give
different results for the same input), so it is applied literally:

    while K*N + M > available:
        1. K > 2  -> K -= 1
        2. M > 3  -> M -= 1
        3. K > 1  -> K -= 1
        4. M > 1  -> M -= 1
        5. K = 0, M = available, stop

Both functions are pure and safe to call concurrently.
"""

from dataclasses import dataclass

from tribepick.models.failure import FailureKind, KnownError, RefusalError
from tribepick.models.session import AlgorithmParameters


@dataclass(frozen=True)
class ParameterSuggestion:
    """An alternative (K, M) that fits the available candidates."""

    k: int
    m: int
    initial_count: int


@dataclass(frozen=True)
class ResolvedParameters:
    """Outcome of resolution: the parameters plus whether they were reduced."""

    params: AlgorithmParameters
    requested_k: int
    requested_m: int
    available: int

    @property
    def reduced(self) -> bool:
        return (self.params.k, self.params.m) != (self.requested_k, self.requested_m)


class InvalidParametersError(KnownError):
    """Raised for K < 0, M < 1 or N < 1."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=f"Invalid elimination parameters: {reason}",
            detail=reason,
            suggestion="Use K >= 0, M >= 1 and at least one participant.",
        )


class InsufficientCandidatesError(RefusalError):
    """
    Too few candidates for the requested parameters.

    Carries the suggestion grid so the caller can pick an alternative
    instead of failing outright.
    """

    def __init__(
        self,
        available: int,
        requested_k: int,
        requested_m: int,
        n: int,
        suggestions: list[ParameterSuggestion] | None = None,
        kind: FailureKind = FailureKind.INSUFFICIENT_CANDIDATES,
        message: str | None = None,
        suggestion: str = "Pick one of the suggested settings or add more options.",
    ):
        self.available = available
        self.requested_k = requested_k
        self.requested_m = requested_m
        self.n = n
        self.suggestions = suggestions or []
        super().__init__(
            kind=kind,
            message=message
            or (
                f"Only {available} options are available, but K={requested_k}, "
                f"M={requested_m} with {n} participants needs "
                f"{requested_k * n + requested_m}."
            ),
            detail=f"available={available} needed={requested_k * n + requested_m}",
            suggestion=suggestion,
            context={
                "available": available,
                "suggestions": [{"k": s.k, "m": s.m} for s in self.suggestions],
            },
        )


class NoCandidatesError(InsufficientCandidatesError):
    """Nothing survived the hard filters."""

    def __init__(self, requested_k: int, requested_m: int, n: int):
        super().__init__(
            available=0,
            requested_k=requested_k,
            requested_m=requested_m,
            n=n,
            kind=FailureKind.EMPTY_RESULT,
            message="No options passed the required filters.",
            suggestion="Relax one of the required filters or add more lists.",
        )


def _validate(k: int, m: int, n: int) -> None:
    if n < 1:
        raise InvalidParametersError("at least one participant is required")
    if k < 0:
        raise InvalidParametersError("K must not be negative")
    if m < 1:
        raise InvalidParametersError("M must be at least 1")


def reduce_parameters(k: int, m: int, n: int, available: int) -> tuple[int, int]:
    """Apply the reduction steps until K*N + M fits `available`."""
    while k * n + m > available:
        if k > 2:
            k -= 1
        elif m > 3:
            m -= 1
        elif k > 1:
            k -= 1
        elif m > 1:
            m -= 1
        else:
            return 0, available
    return k, m


def resolve(requested_k: int, requested_m: int, n: int, available: int) -> ResolvedParameters:
    """
    Resolve elimination parameters against the available candidates.

    Returns the request unchanged when it already fits.

    Raises:
        InvalidParametersError: On out-of-range inputs
        InsufficientCandidatesError: When nothing is available
    """
    _validate(requested_k, requested_m, n)
    if available <= 0:
        raise InsufficientCandidatesError(
            available=0, requested_k=requested_k, requested_m=requested_m, n=n
        )

    k, m = reduce_parameters(requested_k, requested_m, n, available)
    return ResolvedParameters(
        params=AlgorithmParameters(k=k, n=n, m=m),
        requested_k=requested_k,
        requested_m=requested_m,
        available=available,
    )


def suggest(n: int, available: int, max_k: int, max_m: int) -> list[ParameterSuggestion]:
    """
    Enumerate every (K, M) that fits, best first.

    K in [0, max_k], M in [1, max_m], K*N + M <= available.
    Ranked by higher K first, then lower M.
    """
    if n < 1:
        raise InvalidParametersError("at least one participant is required")

    suggestions = [
        ParameterSuggestion(k=k, m=m, initial_count=k * n + m)
        for k in range(max_k + 1)
        for m in range(1, max_m + 1)
        if k * n + m <= available
    ]
    suggestions.sort(key=lambda s: (-s.k, s.m))
    return suggestions
