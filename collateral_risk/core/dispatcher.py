"""
Request Dispatcher - Rate-limited admission of outbound provider calls.

Every call to a named external service (coingecko, uniswap, sushiswap,
ethplorer, rpc) goes through one process-wide RequestDispatcher. Each service
has a sliding-window budget (rate requests per window seconds). Requests over
budget wait in a per-service list ordered by priority, then arrival.

An operation is a no-argument coroutine function. It either returns a
response, returns RetryAfter(seconds) when the provider throttled it, or
raises. RetryAfter re-admits the same request after the delay, keeping its
place in arrival order but consuming a fresh budget slot. Exceptions reach
the caller unchanged.

Usage:
    dispatcher = RequestDispatcher.from_settings()
    data = await dispatcher.submit("coingecko", uuid4().hex, fetch_coin)
"""

import asyncio
import heapq
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple
from uuid import uuid4

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


Operation = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ServiceRule:
    """Throughput limit for one named service."""
    rate_per_window: int
    window_seconds: float
    priority: int = 1

    def __post_init__(self):
        if self.rate_per_window < 1:
            raise ConfigurationError(
                f"rate_per_window must be >= 1, got {self.rate_per_window}"
            )
        if self.window_seconds <= 0:
            raise ConfigurationError(
                f"window_seconds must be > 0, got {self.window_seconds}"
            )


@dataclass(frozen=True)
class RetryAfter:
    """Returned by an operation the provider throttled (HTTP 429)."""
    seconds: float


@dataclass
class QueuedRequest:
    """A unit of work waiting for, or holding, a budget slot."""
    request_id: str
    service: str
    operation: Operation
    priority: int
    sequence: int
    attempts: int = 0


class _ServiceState:
    """Admission log and wait list for a single service."""

    def __init__(self, name: str, rule: ServiceRule):
        self.name = name
        self.rule = rule
        self.admitted: Deque[float] = deque()
        self.waiters: List[Tuple[int, int, asyncio.Future]] = []
        self.drainer: Optional[asyncio.Task] = None

    def delay_until_slot(self, now: float) -> float:
        window = self.rule.window_seconds
        while self.admitted and now - self.admitted[0] >= window:
            self.admitted.popleft()
        if len(self.admitted) < self.rule.rate_per_window:
            return 0.0
        return self.admitted[0] + window - now


class RequestDispatcher:
    """
    Rate-limited dispatcher shared by every fetch collaborator.

    Construct once per process and pass it to callers. All admission state
    lives on the instance and is only touched from the event loop.
    """

    def __init__(self, rules: Mapping[str, ServiceRule]):
        if not rules:
            raise ConfigurationError("RequestDispatcher needs at least one service rule")
        self._services: Dict[str, _ServiceState] = {
            name: _ServiceState(name, rule) for name, rule in rules.items()
        }
        self._sequence = itertools.count()
        self._in_flight: Set[str] = set()

    @classmethod
    def from_settings(cls, service_rules: Optional[Mapping[str, Mapping[str, Any]]] = None) -> "RequestDispatcher":
        """Build from a {name: {"rate", "window", "priority"}} table (defaults to settings)."""
        if service_rules is None:
            from ..config.settings import SERVICE_RULES
            service_rules = SERVICE_RULES

        rules = {}
        for name, rule in service_rules.items():
            try:
                rules[name] = ServiceRule(
                    rate_per_window=int(rule["rate"]),
                    window_seconds=float(rule["window"]),
                    priority=int(rule.get("priority", 1)),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Malformed rule for service '{name}': {e}", context={"rule": dict(rule)}
                ) from e
        return cls(rules)

    @property
    def services(self) -> List[str]:
        return list(self._services)

    def rule(self, service: str) -> ServiceRule:
        return self._state(service).rule

    def pending(self, service: str) -> int:
        """Number of requests waiting for a slot on this service."""
        state = self._state(service)
        return sum(1 for _, _, waiter in state.waiters if not waiter.done())

    async def submit(
        self,
        service: str,
        request_id: Optional[str],
        operation: Operation,
        priority: Optional[int] = None,
    ) -> Any:
        """
        Run operation under the rate budget of service.

        Args:
            service: Name of a configured service
            request_id: Unique id for this request (generated if None)
            operation: No-argument coroutine function
            priority: Overrides the rule priority for this request

        Returns:
            Whatever the operation returns (other than RetryAfter)

        Raises:
            ConfigurationError: Unknown service or duplicate in-flight id
            Exception: Anything the operation raises, unchanged
        """
        state = self._state(service)
        request_id = request_id or uuid4().hex
        if request_id in self._in_flight:
            raise ConfigurationError(
                f"Request id '{request_id}' is already in flight", context={"service": service}
            )

        request = QueuedRequest(
            request_id=request_id,
            service=service,
            operation=operation,
            priority=state.rule.priority if priority is None else priority,
            sequence=next(self._sequence),
        )

        self._in_flight.add(request_id)
        try:
            while True:
                await self._admit(state, request)
                request.attempts += 1
                result = await request.operation()
                if isinstance(result, RetryAfter):
                    logger.warning(
                        "%s throttled request %s (attempt %d), retrying in %.2fs",
                        service, request_id, request.attempts, result.seconds,
                    )
                    await asyncio.sleep(max(0.0, result.seconds))
                    continue
                return result
        finally:
            self._in_flight.discard(request_id)

    async def aclose(self) -> None:
        """Cancel drain tasks and fail any waiting requests."""
        for state in self._services.values():
            if state.drainer is not None and not state.drainer.done():
                state.drainer.cancel()
            for _, _, waiter in state.waiters:
                if not waiter.done():
                    waiter.cancel()
            state.waiters.clear()
            state.drainer = None

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def _state(self, service: str) -> _ServiceState:
        try:
            return self._services[service]
        except KeyError:
            raise ConfigurationError(
                f"Unknown service '{service}'", context={"known_services": list(self._services)}
            ) from None

    async def _admit(self, state: _ServiceState, request: QueuedRequest) -> None:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        heapq.heappush(state.waiters, (request.priority, request.sequence, waiter))
        logger.debug(
            "queued %s on %s (priority=%d, waiting=%d)",
            request.request_id, state.name, request.priority, len(state.waiters),
        )
        if state.drainer is None or state.drainer.done():
            state.drainer = loop.create_task(self._drain(state))
        # cancelling the caller cancels the waiter, which the drainer skips
        await waiter

    async def _drain(self, state: _ServiceState) -> None:
        loop = asyncio.get_running_loop()
        while state.waiters:
            if state.waiters[0][2].done():
                heapq.heappop(state.waiters)
                continue
            delay = state.delay_until_slot(loop.time())
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            _, _, waiter = heapq.heappop(state.waiters)
            state.admitted.append(loop.time())
            waiter.set_result(None)
        state.drainer = None
