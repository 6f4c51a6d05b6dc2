"""Unit tests of grizzly_scheduler.driver."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import gevent
import pytest
from gevent.pool import Pool

from grizzly_scheduler.driver import AgentDriver, DriverState, UserEventHook
from grizzly_scheduler.exceptions import InvalidLoadFunction
from grizzly_scheduler.function import LoadFunction
from grizzly_scheduler.types import TestUserConfiguration

if TYPE_CHECKING:  # pragma: no cover
    from _pytest.logging import LogCaptureFixture

    from tests.fixtures import MockerFixture


class TestAgentDriver:
    def test___init__(self) -> None:
        users = LoadFunction([(0, 0), (10, 5)])
        driver = AgentDriver('TOrder', users)

        assert driver.user_name == 'TOrder'
        assert driver.users is users
        assert driver.interval == 1.0
        assert driver.state == DriverState.IDLE
        assert driver.last_total == 0
        assert driver.started == 0
        assert driver.stopped == 0
        assert isinstance(driver.pool, Pool)
        assert len(driver.events.user_start._handlers) == 0
        assert len(driver.events.user_stop._handlers) == 0

        def on_user_start(**_kwargs: Any) -> None:
            pass

        def on_user_stop(**_kwargs: Any) -> None:
            pass

        pool = Pool(10)
        driver = AgentDriver('TOrder', users, on_user_start=on_user_start, on_user_stop=on_user_stop, pool=pool, interval=0.5)

        assert driver.pool is pool
        assert driver.interval == 0.5
        assert driver.events.user_start._handlers == [on_user_start]
        assert driver.events.user_stop._handlers == [on_user_stop]

        with pytest.raises(InvalidLoadFunction, match='does not specify any time/value pairs'):
            AgentDriver('TOrder', LoadFunction())

        with pytest.raises(InvalidLoadFunction, match='load function does not start at time 0'):
            AgentDriver('TOrder', LoadFunction([(10, 5)]))

        with pytest.raises(ValueError, match='interval must be a positive number of seconds, got 0.0'):
            AgentDriver('TOrder', users, interval=0.0)

    def test_from_configuration(self) -> None:
        users = LoadFunction([(0, 2)])
        configuration = TestUserConfiguration(user_name='TBrowse', number_of_users=users, measurement_period=60, agent_index=3)

        driver = AgentDriver.from_configuration(configuration, interval=2.0)

        assert driver.user_name == 'TBrowse'
        assert driver.users is users
        assert driver.interval == 2.0

    def test_for_user_list(self) -> None:
        browse = LoadFunction([(0, 2)])
        order = LoadFunction([(0, 0), (10, 1)])
        user_list = [
            TestUserConfiguration(user_name='TBrowse', number_of_users=browse, measurement_period=60, agent_index=0, instance=0),
            TestUserConfiguration(user_name='TOrder', number_of_users=order, measurement_period=60, agent_index=1, instance=0),
            TestUserConfiguration(user_name='TBrowse', number_of_users=browse, measurement_period=60, agent_index=2, instance=1),
        ]

        drivers = AgentDriver.for_user_list(user_list, interval=0.5)

        assert [driver.user_name for driver in drivers] == ['TBrowse', 'TOrder']
        assert drivers[0].users is browse
        assert drivers[1].users is order
        assert all(driver.interval == 0.5 for driver in drivers)
        assert AgentDriver.for_user_list([]) == []

    def test_tick(self, mocker: MockerFixture) -> None:
        spawn_mock = mocker.patch('grizzly_scheduler.driver.gevent.spawn')
        started: list[str] = []
        stopped: list[str] = []

        driver = AgentDriver(
            'TOrder',
            LoadFunction([(0, 0), (4, 4), (8, 0)]),
            on_user_start=lambda user_name, **_kwargs: started.append(user_name),
            on_user_stop=lambda user_name, **_kwargs: stopped.append(user_name),
        )

        with pytest.raises(RuntimeError, match='driver for TOrder has not been started'):
            driver.tick(0)

        driver.start()

        spawn_mock.assert_called_once_with(driver._run)
        assert driver.state == DriverState.RUNNING

        assert [driver.tick(elapsed) for elapsed in range(10)] == [0, 1, 1, 1, 1, -1, -1, -1, -1, 0]
        assert driver.join(timeout=1.0)

        assert started == ['TOrder'] * 4
        assert stopped == ['TOrder'] * 4
        assert driver.started == 4
        assert driver.stopped == 4
        assert driver.started - driver.stopped == driver.last_total == 0

        with pytest.raises(RuntimeError, match='driver for TOrder has already been started'):
            driver.start()

        driver.stop()

        assert driver.state == DriverState.STOPPED
        assert driver.tick(10) == 0

        driver.stop()
        assert driver.state == DriverState.STOPPED

    def test_tick_fractional(self, mocker: MockerFixture) -> None:
        mocker.patch('grizzly_scheduler.driver.gevent.spawn')

        driver = AgentDriver('TOrder', LoadFunction([(0, 0), (10, 3), (20, 0)]))
        driver.start()

        deltas = [driver.tick(elapsed / 2) for elapsed in range(41)]

        assert sum(delta for delta in deltas if delta > 0) == 3
        assert sum(delta for delta in deltas if delta < 0) == -3
        assert deltas[:7] == [0, 0, 0, 0, 0, 0, 0]
        assert deltas[7] == 1
        assert driver.started - driver.stopped == driver.last_total == 0

        driver.stop()
        assert driver.join(timeout=1.0)

    def test_listener_failure(self, mocker: MockerFixture, caplog: LogCaptureFixture) -> None:
        mocker.patch('grizzly_scheduler.driver.gevent.spawn')

        def on_user_start(**_kwargs: Any) -> None:
            message = 'failed to start user'
            raise RuntimeError(message)

        started: list[str] = []

        driver = AgentDriver('TOrder', LoadFunction([(0, 1)]), on_user_start=on_user_start)
        driver.events.user_start.add_listener(lambda user_name, **_kwargs: started.append(user_name))
        driver.start()

        with caplog.at_level(logging.ERROR):
            assert driver.tick(0) == 1
            assert driver.join(timeout=1.0)

        assert 'listener for TOrder failed' in caplog.text
        assert 'failed to start user' in caplog.text
        assert 'Uncaught exception in event handler' not in caplog.text
        assert started == ['TOrder']
        assert driver.started == 1

    def test_stop_idle(self) -> None:
        driver = AgentDriver('TOrder', LoadFunction([(0, 1)]))

        driver.stop()

        assert driver.state == DriverState.STOPPED
        assert driver.tick(0) == 0
        assert driver.join(timeout=1.0)

    @pytest.mark.timeout(10)
    def test_run(self) -> None:
        started: list[str] = []
        stopped: list[str] = []

        driver = AgentDriver(
            'TOrder',
            LoadFunction([(0, 0), (1, 5)]),
            on_user_start=lambda user_name, **_kwargs: started.append(user_name),
            on_user_stop=lambda user_name, **_kwargs: stopped.append(user_name),
            interval=0.05,
        )

        driver.start()
        gevent.sleep(1.5)
        driver.stop()

        assert driver.join(timeout=5.0)
        assert driver.state == DriverState.STOPPED
        assert started == ['TOrder'] * 5
        assert stopped == []
        assert driver.last_total == 5


class TestUserEventHook:
    def test_fire(self, caplog: LogCaptureFixture) -> None:
        calls: list[tuple[str, str]] = []

        def failing(**_kwargs: Any) -> None:
            message = 'listener failed'
            raise RuntimeError(message)

        hook = UserEventHook()
        hook.add_listener(lambda user_name, **_kwargs: calls.append(('first', user_name)))
        hook.add_listener(failing)
        hook.add_listener(lambda user_name, **_kwargs: calls.append(('last', user_name)))

        with caplog.at_level(logging.ERROR):
            hook.fire(user_name='TOrder')

        assert calls == [('first', 'TOrder'), ('last', 'TOrder')]
        assert len(caplog.records) == 1
        assert caplog.records[0].getMessage() == 'listener for TOrder failed'
        assert caplog.records[0].exc_info is not None

        calls.clear()
        caplog.clear()

        with caplog.at_level(logging.ERROR):
            hook.fire(reverse=True, user_name='TBrowse')

        assert calls == [('last', 'TBrowse'), ('first', 'TBrowse')]
        assert len(caplog.records) == 1
