"""
Faultline Errors

Exceptions raised at the edges of Faultline: while loading rule files and
by transport adapters that have to turn a failed or aborted interception
into something their caller understands. The engine itself reports these
conditions as result values and does not raise them.
"""

from typing import Optional


class FaultlineError(Exception):
    """Base class for all Faultline errors."""


class RuleConfigError(FaultlineError, ValueError):
    """A rule or configuration document holds an invalid value."""


class RequestAborted(FaultlineError):
    """The caller cancelled the request while it was being simulated."""

    def __init__(self, message: str = "Request aborted"):
        super().__init__(message)


class SimulatedNetworkError(FaultlineError):
    """A simulated transport-level failure."""

    outcome = 'offline'

    def __init__(self, message: str = "Failed to fetch", outcome: Optional[str] = None):
        super().__init__(message)
        if outcome:
            self.outcome = outcome


class SimulatedTimeout(SimulatedNetworkError):
    outcome = 'timeout'

    def __init__(self, message: str = "The operation timed out."):
        super().__init__(message)


class SimulatedOffline(SimulatedNetworkError):
    outcome = 'offline'
