from __future__ import annotations

from typing import Optional


class TrackError(Exception):
    """Base error for a failure confined to one individual's track."""

    def __init__(self, message: str, individual_id: Optional[str] = None):
        self.individual_id = individual_id
        super().__init__(message)


class InvalidCRS(TrackError):
    """Raised when fixes carry no usable coordinate reference system."""

    def __init__(self, crs: object = None, individual_id: Optional[str] = None):
        self.crs = crs
        if crs is None:
            message = "Fixes have no coordinate reference system"
        else:
            message = f"Unusable coordinate reference system: {crs!r}"
        super().__init__(message, individual_id)


class EmptyTrack(TrackError):
    def __init__(self, individual_id: str):
        super().__init__(f"Individual '{individual_id}' has no valid fixes", individual_id)


class InsufficientFixes(TrackError):
    def __init__(self, individual_id: str, n_fixes: int, required: int = 2):
        self.n_fixes = n_fixes
        self.required = required
        super().__init__(
            f"Individual '{individual_id}' has {n_fixes} fix(es); at least {required} are needed",
            individual_id,
        )


class MismatchedIndividual(TrackError):
    """Raised when events reference an individual absent from the track set."""

    def __init__(self, individual_id: str, n_events: int = 0):
        self.n_events = n_events
        super().__init__(
            f"{n_events} event(s) reference individual '{individual_id}' which has no track",
            individual_id,
        )


class NonConvergentTrack(TrackError):
    """Raised when speed filtering does not settle within the iteration bound."""

    def __init__(self, individual_id: str, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(
            f"Speed filter for '{individual_id}' did not converge after {max_iterations} iterations",
            individual_id,
        )
