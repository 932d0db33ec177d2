"""
Faultline Network Simulator

Decides how long a mocked call waits and how it ends, and provides the
cancellable wait itself.

Delay resolution (first defined wins):
    rule delay -> rule profile -> global profile -> 0

Outcome resolution (first applicable wins, checked after the delay):
    error_mode timeout -> error_mode offline -> fail_rate draw -> proceed
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from .random_source import RandomSource, make_random_source
from .types import GlobalConfig, Rule

logger = logging.getLogger("faultline.engine")


class Outcome(str, Enum):
    """How a matched call ends once its delay has elapsed."""

    PROCEED = 'proceed'
    TIMEOUT = 'timeout'
    OFFLINE = 'offline'
    RANDOM_FAIL = 'random_fail'

    @property
    def is_failure(self) -> bool:
        return self is not Outcome.PROCEED


class WaitResult(str, Enum):
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


@dataclass(frozen=True)
class NetworkPlan:
    """Delay and outcome computed for one request."""

    delay_ms: int
    outcome: Outcome


class CancellationToken:
    """
    Out-of-band cancellation signal for one request.

    The caller may call ``cancel()`` at any time. Listeners run once, in
    registration order, and are dropped after firing.

    Example:
        token = CancellationToken()
        result = await simulator.wait(500, token)   # elsewhere: token.cancel()
    """

    def __init__(self):
        self._cancelled = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def listener_count(self) -> int:
        """Number of registered listeners (0 once a request has settled)."""
        return len(self._listeners)

    def cancel(self) -> None:
        """Cancel the request; a second call is a no-op."""
        if self._cancelled:
            return
        self._cancelled = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback for cancellation. Already cancelled tokens call it at once."""
        if self._cancelled:
            listener()
            return
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass


class NetworkSimulator:
    """
    Computes delays and outcomes and waits with cancellation support.

    Randomness for ``fail_rate`` comes from the injected ``rng``; tests pass
    a seeded source to make random failures reproducible.
    """

    def __init__(self, rng: Optional[RandomSource] = None):
        """
        Initialize network simulator.

        Args:
            rng: Random source for fail-rate draws (system source if None)
        """
        self.rng = rng or make_random_source()
        self._timers: Set[asyncio.TimerHandle] = set()

    @property
    def pending_timers(self) -> int:
        """Timers scheduled and not yet fired or cancelled."""
        return len(self._timers)

    def resolve_delay(self, rule: Rule, config: GlobalConfig) -> int:
        """
        Delay in milliseconds for a rule.

        Args:
            rule: Matched rule
            config: Global configuration holding the default profile

        Returns:
            Delay in ms
        """
        if rule.network.delay is not None:
            return rule.network.delay

        profiles = config.profile_table()
        for source, name in (('rule', rule.network.profile), ('global', config.network_profile)):
            if not name:
                continue
            if name in profiles:
                return profiles[name]
            logger.warning(f"Unknown {source} network profile {name!r} for rule {rule.id}, ignoring")

        return 0

    def resolve_outcome(self, rule: Rule) -> Outcome:
        """
        Outcome for a rule whose delay has elapsed.

        ``error_mode`` always wins and draws nothing from the generator;
        the fail-rate draw only happens when ``fail_rate`` is positive.
        """
        network = rule.network
        if network.error_mode == 'timeout':
            return Outcome.TIMEOUT
        if network.error_mode == 'offline':
            return Outcome.OFFLINE
        if network.fail_rate > 0 and self.rng() * 100 < network.fail_rate:
            return Outcome.RANDOM_FAIL
        return Outcome.PROCEED

    def plan(self, rule: Rule, config: GlobalConfig) -> NetworkPlan:
        """Delay and outcome for a rule in one step."""
        return NetworkPlan(delay_ms=self.resolve_delay(rule, config), outcome=self.resolve_outcome(rule))

    async def wait(self, delay_ms: int, token: Optional[CancellationToken] = None) -> WaitResult:
        """
        Wait ``delay_ms`` unless the token is cancelled first.

        An already-cancelled token returns at once without scheduling a
        timer. On every exit (completion, token cancellation or task
        cancellation) the timer is cancelled and the token listener removed.

        Args:
            delay_ms: Delay in milliseconds
            token: Cancellation token, optional

        Returns:
            WaitResult.COMPLETED or WaitResult.CANCELLED
        """
        if token is not None and token.cancelled:
            return WaitResult.CANCELLED
        if delay_ms <= 0:
            return WaitResult.COMPLETED

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()

        def settle(result: WaitResult) -> None:
            if not waiter.done():
                waiter.set_result(result)

        timer = loop.call_later(delay_ms / 1000, settle, WaitResult.COMPLETED)
        self._timers.add(timer)

        def on_cancel() -> None:
            settle(WaitResult.CANCELLED)

        if token is not None:
            token.add_listener(on_cancel)

        try:
            return await waiter
        finally:
            timer.cancel()
            self._timers.discard(timer)
            if token is not None:
                token.remove_listener(on_cancel)
