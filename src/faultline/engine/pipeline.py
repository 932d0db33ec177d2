"""
Faultline Interception Pipeline

Runs one outgoing call through the engine:

    received -> bypassed | unmatched | matched
    matched  -> delaying -> resolved | failed | aborted

The pipeline owns the rule table and global configuration. Both are
replaced together by ``refresh()``; a request reads one snapshot when it
arrives and keeps it until it settles.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from ..common.url_utils import URLNormalizer, apply_match_config, DEFAULT_BASE_ORIGIN
from ..errors import RequestAborted, SimulatedNetworkError, SimulatedOffline, SimulatedTimeout
from .matcher import RuleMatcher
from .network import CancellationToken, NetworkSimulator, Outcome, WaitResult
from .random_source import RandomSource, make_random_source
from .response import ResponseSynthesizer, SynthesizedResponse
from .types import BypassConfig, GlobalConfig, InterceptRequest, Rule

logger = logging.getLogger("faultline.pipeline")


class RequestState(str, Enum):
    """Terminal states a request can reach."""

    BYPASSED = 'bypassed'
    UNMATCHED = 'unmatched'
    RESOLVED = 'resolved'
    FAILED = 'failed'
    ABORTED = 'aborted'


@dataclass
class InterceptResult:
    """
    What the pipeline decided for one request.

    - bypassed / unmatched: let the real call through unmodified
    - resolved: ``response`` holds the synthetic status and body
    - failed: ``outcome`` names the simulated transport failure, no body
    - aborted: the caller cancelled the request
    """

    state: RequestState
    rule: Optional[Rule] = None
    params: Dict[str, str] = field(default_factory=dict)
    delay_ms: int = 0
    outcome: Optional[Outcome] = None
    response: Optional[SynthesizedResponse] = None
    reason: str = ""

    @property
    def passed_through(self) -> bool:
        return self.state in (RequestState.BYPASSED, RequestState.UNMATCHED)

    def raise_for_state(self) -> None:
        """
        Raise the error matching a failed or aborted result.

        For callers without a native error type of their own. Does nothing
        for the other states.

        Raises:
            RequestAborted: The request was cancelled
            SimulatedTimeout: Simulated timeout
            SimulatedOffline: Simulated offline network
            SimulatedNetworkError: Random failure
        """
        if self.state is RequestState.ABORTED:
            raise RequestAborted(f"Request aborted ({self.reason})")
        if self.state is not RequestState.FAILED:
            return
        if self.outcome is Outcome.TIMEOUT:
            raise SimulatedTimeout()
        if self.outcome is Outcome.OFFLINE:
            raise SimulatedOffline()
        raise SimulatedNetworkError(outcome=self.outcome.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'state': self.state.value,
            'rule_id': self.rule.id if self.rule else None,
            'params': dict(self.params),
            'delay_ms': self.delay_ms,
            'outcome': self.outcome.value if self.outcome else None,
            'status': self.response.status if self.response else None,
            'reason': self.reason,
        }


@dataclass
class InterceptMetrics:
    """Track how requests through the pipeline ended."""

    total_requests: int = 0
    bypassed: int = 0
    unmatched: int = 0
    resolved: int = 0
    failed: int = 0
    aborted: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def record(self, state: RequestState) -> None:
        setattr(self, state.value, getattr(self, state.value) + 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        mocked = self.resolved + self.failed + self.aborted
        return {
            'total_requests': self.total_requests,
            'bypassed': self.bypassed,
            'unmatched': self.unmatched,
            'resolved': self.resolved,
            'failed': self.failed,
            'aborted': self.aborted,
            'mock_rate': round((mocked / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time,
        }


class BypassFilter:
    """
    Decides whether the engine declines a request.

    A request is bypassed when any predicate matches: its method is listed,
    its content type starts with a listed prefix, its origin is listed, or
    its URL matches one of the regular expressions.
    """

    def __init__(self, config: BypassConfig, base_origin: str = DEFAULT_BASE_ORIGIN):
        self.methods = {m.upper() for m in config.methods}
        self.content_types = [c.lower() for c in config.content_types if c]
        self.origins = set(config.origins)
        self.base_origin = base_origin
        self.url_patterns: List[re.Pattern] = []

        for pattern in config.url_patterns:
            try:
                self.url_patterns.append(re.compile(pattern))
            except re.error as e:
                logger.warning(f"Invalid bypass URL pattern {pattern!r}: {e}")

    def should_bypass(self, request: InterceptRequest) -> Tuple[bool, str]:
        """
        Check the bypass predicates for a request.

        Returns:
            (bypass, reason) tuple
        """
        method = request.method.upper()
        if method in self.methods:
            return True, f"method {method}"

        if request.content_type and self.content_types:
            content_type = request.content_type.lower()
            for prefix in self.content_types:
                if content_type.startswith(prefix):
                    return True, f"content type {request.content_type}"

        if self.origins:
            origin = URLNormalizer.get_origin(request.url, self.base_origin)
            if origin in self.origins:
                return True, f"origin {origin}"

        for pattern in self.url_patterns:
            if pattern.search(request.url):
                return True, f"url pattern {pattern.pattern}"

        return False, ""


@dataclass(frozen=True)
class _Snapshot:
    rules: Tuple[Rule, ...]
    config: GlobalConfig
    bypass: BypassFilter


class Transport(Protocol):
    """A concrete HTTP transport the pipeline can be installed onto."""

    def attach(self, pipeline: 'InterceptionPipeline') -> None:
        ...

    def detach(self) -> None:
        ...


class InterceptionPipeline:
    """
    Orchestrates bypass check, matching, network simulation and synthesis.

    Example:
        pipeline = InterceptionPipeline(rules, GlobalConfig())
        result = await pipeline.handle(InterceptRequest('/api/user/1', 'GET'))

        if result.state is RequestState.RESOLVED:
            print(result.response.status, result.response.body)
    """

    def __init__(
        self,
        rules: Optional[Sequence[Rule]] = None,
        config: Optional[GlobalConfig] = None,
        rng: Optional[RandomSource] = None,
        matcher: Optional[RuleMatcher] = None,
        simulator: Optional[NetworkSimulator] = None,
        synthesizer: Optional[ResponseSynthesizer] = None,
        base_origin: str = DEFAULT_BASE_ORIGIN
    ):
        """
        Initialize interception pipeline.

        Args:
            rules: Ordered rule table
            config: Global configuration
            rng: Random source shared by the default simulator and synthesizer
            matcher: Optional RuleMatcher (will create if None)
            simulator: Optional NetworkSimulator (will create if None)
            synthesizer: Optional ResponseSynthesizer (will create if None)
            base_origin: Origin relative request URLs are resolved against
                for origin bypass checks
        """
        rng = rng or make_random_source()
        self.matcher = matcher or RuleMatcher()
        self.simulator = simulator or NetworkSimulator(rng)
        self.synthesizer = synthesizer or ResponseSynthesizer(rng)
        self.base_origin = base_origin
        self.metrics = InterceptMetrics()
        self.transport: Optional[Transport] = None

        self._snapshot = self._make_snapshot(rules or [], config or GlobalConfig())

    def _make_snapshot(self, rules: Sequence[Rule], config: GlobalConfig) -> _Snapshot:
        return _Snapshot(
            rules=tuple(rules),
            config=config,
            bypass=BypassFilter(config.bypass, self.base_origin),
        )

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._snapshot.rules

    @property
    def config(self) -> GlobalConfig:
        return self._snapshot.config

    @property
    def installed(self) -> bool:
        return self.transport is not None

    def refresh(self, rules: Optional[Sequence[Rule]] = None, config: Optional[GlobalConfig] = None) -> None:
        """
        Replace the rule table and/or global configuration.

        Requests already past matching keep the snapshot they started with.

        Args:
            rules: New rule table (current one kept if None)
            config: New global configuration (current one kept if None)
        """
        current = self._snapshot
        self._snapshot = self._make_snapshot(
            current.rules if rules is None else rules,
            current.config if config is None else config,
        )
        logger.info(f"Rule table refreshed ({len(self._snapshot.rules)} rules)")

    def install(self, transport: Transport) -> bool:
        """
        Install the pipeline onto a transport.

        A second call while a transport is installed does nothing.

        Returns:
            True if the transport was attached by this call
        """
        if self.transport is not None:
            logger.debug("Pipeline already installed, ignoring install()")
            return False

        transport.attach(self)
        self.transport = transport
        logger.info(f"Pipeline installed on {type(transport).__name__}")
        return True

    def uninstall(self) -> None:
        """Detach from the installed transport, if any."""
        if self.transport is None:
            return
        transport, self.transport = self.transport, None
        transport.detach()
        logger.info(f"Pipeline removed from {type(transport).__name__}")

    def match_url(self, url: str, config: Optional[GlobalConfig] = None) -> str:
        """Request URL as used for matching: path + query, prefixes stripped."""
        config = config or self.config
        return apply_match_config(URLNormalizer.to_match_path(url), config.strip_prefixes)

    def _finish(self, result: InterceptResult, request: InterceptRequest) -> InterceptResult:
        self.metrics.record(result.state)
        logger.debug(f"{request.method} {request.url} -> {result.state.value}: {result.reason}")
        return result

    async def handle(
        self,
        request: InterceptRequest,
        token: Optional[CancellationToken] = None
    ) -> InterceptResult:
        """
        Run one request through the pipeline.

        Args:
            request: Normalized request (url, method, content type)
            token: Cancellation token the caller may trigger at any time

        Returns:
            InterceptResult; never raises for bypass, misses, simulated
            failures or cancellation
        """
        snapshot = self._snapshot
        self.metrics.total_requests += 1

        if not snapshot.config.enabled:
            return self._finish(InterceptResult(RequestState.BYPASSED, reason="interception disabled"), request)

        bypass, reason = snapshot.bypass.should_bypass(request)
        if bypass:
            return self._finish(InterceptResult(RequestState.BYPASSED, reason=reason), request)

        match_url = self.match_url(request.url, snapshot.config)
        match = self.matcher.find_match(snapshot.rules, match_url, request.method)
        if not match.matched:
            return self._finish(InterceptResult(RequestState.UNMATCHED, reason=match.reason), request)

        rule = match.rule
        if rule.passthrough:
            return self._finish(
                InterceptResult(RequestState.UNMATCHED, rule=rule, params=match.params,
                                reason=f"rule {rule.id} passes through"),
                request
            )

        if token is not None and token.cancelled:
            return self._finish(
                InterceptResult(RequestState.ABORTED, rule=rule, params=match.params, reason="cancelled before delay"),
                request
            )

        delay_ms = self.simulator.resolve_delay(rule, snapshot.config)
        if await self.simulator.wait(delay_ms, token) is WaitResult.CANCELLED:
            return self._finish(
                InterceptResult(
                    RequestState.ABORTED, rule=rule, params=match.params, delay_ms=delay_ms,
                    reason="cancelled during delay"
                ),
                request
            )

        outcome = self.simulator.resolve_outcome(rule)
        if outcome.is_failure:
            logger.info(f"Simulated {outcome.value} for {request.method} {request.url} (rule {rule.id})")
            return self._finish(
                InterceptResult(
                    RequestState.FAILED, rule=rule, params=match.params, delay_ms=delay_ms,
                    outcome=outcome, reason=f"simulated {outcome.value}"
                ),
                request
            )

        response = self.synthesizer.synthesize(rule)
        return self._finish(
            InterceptResult(
                RequestState.RESOLVED, rule=rule, params=match.params, delay_ms=delay_ms,
                outcome=outcome, response=response, reason=match.reason
            ),
            request
        )

    def reset_metrics(self) -> None:
        self.metrics = InterceptMetrics()
