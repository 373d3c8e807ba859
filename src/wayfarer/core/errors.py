"""Exceptions raised by the Wayfarer quest core.

``retryable`` tells the UI whether offering "try again" makes sense: the
controller's state is left untouched by every one of these.
"""


class WayfarerError(Exception):
    """Base class for all quest core errors."""

    retryable = False


class InvalidTransitionError(WayfarerError):
    """Raised when a transition is requested from a phase that does not allow it."""

    pass


class MissingLocationError(WayfarerError):
    """Raised when navigation needs a device location or step target that is absent."""

    retryable = True


class RouteUnavailableError(WayfarerError):
    """Raised when the route provider fails to produce a route."""

    retryable = True


class StepSequenceError(WayfarerError):
    """Raised when a step is completed out of order."""

    def __init__(self, expected_step: int, attempted_step: int) -> None:
        super().__init__(
            f"Step {attempted_step} cannot be completed now; step {expected_step} is next."
        )
        self.expected_step = expected_step
        self.attempted_step = attempted_step


class DuplicateSubmissionError(WayfarerError):
    """Raised when a step completion is already in flight."""

    pass


class SubmissionError(WayfarerError):
    """Raised when a submission does not meet the step's requirements."""

    pass


class BackendError(WayfarerError):
    """Raised for RPC timeouts, HTTP failures and malformed backend payloads."""

    retryable = True

    def __init__(self, message: str, rpc: str | None = None) -> None:
        super().__init__(message)
        self.rpc = rpc


class LocationUnavailableError(WayfarerError):
    """Raised by location providers that cannot produce a fix."""

    retryable = True
