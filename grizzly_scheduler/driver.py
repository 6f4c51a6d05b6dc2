"""Agent side execution of a load function.

`AgentDriver` samples its part of a test case's load function once per interval, and fires one `user_start` event for
each user that should be started, and one `user_stop` event for each user that should be stopped. Listeners are
called with keyword argument `user_name`, in a gevent pool, so a slow listener never delays the next tick.

```python
from grizzly_scheduler.driver import AgentDriver
from grizzly_scheduler.function import LoadFunction

driver = AgentDriver('TOrder', LoadFunction([(0, 0), (10, 5)]))
driver.events.user_start.add_listener(lambda user_name, **_kwargs: runner.spawn(user_name))
driver.events.user_stop.add_listener(lambda user_name, **_kwargs: runner.kill(user_name))

driver.start()
...
driver.stop()
driver.join()
```
"""
from __future__ import annotations

import logging
from enum import Enum
from time import perf_counter as time
from typing import TYPE_CHECKING, Any, Optional, Union

import gevent
from gevent.event import Event
from gevent.pool import Pool
from locust.event import EventHook

from .exceptions import InvalidLoadFunction
from .function import LoadFunction, sample_monotone, validate

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterable

    from .types import TestUserConfiguration

logger = logging.getLogger(__name__)


class DriverState(Enum):
    IDLE = 0
    RUNNING = 1
    STOPPED = 2


class UserEventHook(EventHook):
    """Each listener is called on its own, a failing listener is logged and does not prevent the following ones."""

    _handlers: list[Callable[..., Any]]

    def __init__(self) -> None:
        self._handlers = []

    def fire(self, *, reverse: bool = False, **kwargs: Any) -> None:
        handlers = reversed(self._handlers) if reverse else self._handlers

        for handler in handlers:
            try:
                handler(**kwargs)
            except Exception:
                logger.exception('listener for %s failed', kwargs.get('user_name'))


class AgentDriverEvents:
    user_start: UserEventHook
    user_stop: UserEventHook

    def __init__(self) -> None:
        self.user_start = UserEventHook()
        self.user_stop = UserEventHook()


class AgentDriver:
    user_name: str
    users: LoadFunction
    interval: float
    events: AgentDriverEvents
    pool: Pool
    last_total: int
    started: int
    stopped: int

    _state: DriverState
    _stop_event: Event
    _greenlet: Optional[gevent.Greenlet]

    def __init__(
        self,
        user_name: str,
        users: LoadFunction,
        *,
        on_user_start: Optional[Callable[..., Any]] = None,
        on_user_stop: Optional[Callable[..., Any]] = None,
        pool: Optional[Pool] = None,
        interval: float = 1.0,
    ) -> None:
        validate(users)

        if users[0].time != 0:
            message = 'load function does not start at time 0'
            raise InvalidLoadFunction(message, users)

        if interval <= 0.0:
            message = f'interval must be a positive number of seconds, got {interval}'
            raise ValueError(message)

        self.user_name = user_name
        self.users = users
        self.interval = interval
        self.events = AgentDriverEvents()
        self.pool = pool if pool is not None else Pool()
        self.last_total = 0
        self.started = 0
        self.stopped = 0

        self._state = DriverState.IDLE
        self._stop_event = Event()
        self._greenlet = None

        if on_user_start is not None:
            self.events.user_start.add_listener(on_user_start)

        if on_user_stop is not None:
            self.events.user_stop.add_listener(on_user_stop)

    @classmethod
    def from_configuration(cls, configuration: TestUserConfiguration, **kwargs: Any) -> AgentDriver:
        """Driver for the test case of one user slot.

        `number_of_users` is the agent's whole share of the test case, and is the same for every slot of that test case
        on the agent. Create one driver per test case and agent, e.g. with `for_user_list`, not one per slot.
        """
        return cls(configuration.user_name, configuration.number_of_users, **kwargs)

    @classmethod
    def for_user_list(cls, user_list: Iterable[TestUserConfiguration], **kwargs: Any) -> list[AgentDriver]:
        """One driver per test case in an agent's user list, in the order the test cases first appear."""
        drivers: dict[str, AgentDriver] = {}

        for configuration in user_list:
            if configuration.user_name not in drivers:
                drivers[configuration.user_name] = cls.from_configuration(configuration, **kwargs)

        return list(drivers.values())

    @property
    def state(self) -> DriverState:
        return self._state

    def tick(self, elapsed: Union[int, float]) -> int:
        """Sample the load function `elapsed` seconds into the test and fire events for the difference."""
        if self._state == DriverState.IDLE:
            message = f'driver for {self.user_name} has not been started'
            raise RuntimeError(message)

        if self._state == DriverState.STOPPED:
            return 0

        total = sample_monotone(self.users, elapsed, self.last_total)
        delta = total - self.last_total

        if delta == 0:
            return 0

        event = self.events.user_start if delta > 0 else self.events.user_stop

        for _ in range(abs(delta)):
            self.pool.spawn(event.fire, user_name=self.user_name)

        if delta > 0:
            self.started += delta
        else:
            self.stopped -= delta

        logger.debug('%s: %d -> %d users after %.1f seconds', self.user_name, self.last_total, total, elapsed)

        self.last_total = total

        return delta

    def start(self) -> None:
        if self._state != DriverState.IDLE:
            message = f'driver for {self.user_name} has already been started'
            raise RuntimeError(message)

        self._state = DriverState.RUNNING
        self.last_total = 0
        self._greenlet = gevent.spawn(self._run)

        logger.debug('started driver for %s, ticking every %.1f seconds', self.user_name, self.interval)

    def stop(self) -> None:
        if self._state == DriverState.STOPPED:
            return

        self._state = DriverState.STOPPED
        self._stop_event.set()

        logger.debug('stopped driver for %s, started %d and stopped %d users', self.user_name, self.started, self.stopped)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the scheduling loop, and all fired events, to finish."""
        if self._greenlet is not None:
            self._greenlet.join(timeout=timeout)

            if not self._greenlet.dead:
                return False

        return self.pool.join(timeout=timeout)

    def _run(self) -> None:
        started_at = time()
        ticks = 0

        while self._state == DriverState.RUNNING:
            # late wake ups catches up on all missed ticks, instead of drifting
            expected = int((time() - started_at) // self.interval)

            while ticks <= expected and self._state == DriverState.RUNNING:
                self.tick(ticks * self.interval)
                ticks += 1

            next_tick_at = started_at + ticks * self.interval
            self._stop_event.wait(timeout=max(0.0, next_tick_at - time()))
