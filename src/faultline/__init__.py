"""
Faultline

Development-time HTTP fault injection: declare rules that intercept
outgoing calls and answer them with synthetic responses, simulated latency,
network failures and partial data.
"""

from .engine import (
    Rule,
    GlobalConfig,
    InterceptRequest,
    InterceptionPipeline,
    InterceptResult,
    RequestState,
    CancellationToken,
    Outcome,
)
from .errors import (
    FaultlineError,
    RuleConfigError,
    RequestAborted,
    SimulatedNetworkError,
    SimulatedTimeout,
    SimulatedOffline,
)

__all__ = [
    'Rule',
    'GlobalConfig',
    'InterceptRequest',
    'InterceptionPipeline',
    'InterceptResult',
    'RequestState',
    'CancellationToken',
    'Outcome',
    'FaultlineError',
    'RuleConfigError',
    'RequestAborted',
    'SimulatedNetworkError',
    'SimulatedTimeout',
    'SimulatedOffline',
]

__version__ = '1.0.0'
