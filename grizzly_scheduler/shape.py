"""Realize a load function with a locust runner.

```python
from grizzly_scheduler.shape import create_shape_class

OrderShape = create_shape_class('OrderShape', '0/0 1m/10 5m/10 6m/0', time_limit=360)
```

A locustfile that contains `OrderShape` will have locust follow the function, the same way an agent driver does.
"""
from __future__ import annotations

import logging
from typing import ClassVar, Optional, Union

from locust import LoadTestShape

from .exceptions import InvalidLoadFunction
from .function import LoadFunction, complete_if_necessary, sample_monotone, validate
from .parser import parse_load_function

logger = logging.getLogger(__name__)


class LoadFunctionShape(LoadTestShape):
    """Number of users over time follows `load_function`, until `time_limit` (seconds) has passed, if set."""

    abstract = True

    load_function: ClassVar[Optional[LoadFunction]] = None
    time_limit: ClassVar[Optional[int]] = None

    _last_user_count: int

    def __init__(self, load_function: Optional[LoadFunction] = None, time_limit: Optional[int] = None) -> None:
        super().__init__()

        load_function = load_function if load_function is not None else self.__class__.load_function

        if load_function is None:
            message = f'{self.__class__.__name__} does not have a load function'
            raise InvalidLoadFunction(message)

        self.load_function = complete_if_necessary(validate(load_function))  # type: ignore[misc]

        if time_limit is not None:
            self.time_limit = time_limit  # type: ignore[misc]

        self._last_user_count = 0

    def tick(self) -> Optional[tuple[int, float]]:
        assert self.load_function is not None

        run_time = int(self.get_run_time())

        if self.time_limit is not None and run_time > self.time_limit:
            logger.debug('%s reached time limit of %d seconds', self.__class__.__name__, self.time_limit)
            return None

        user_count = sample_monotone(self.load_function, run_time, self._last_user_count)
        spawn_rate = max(1, abs(user_count - self._last_user_count))

        self._last_user_count = user_count

        return user_count, float(spawn_rate)


def create_shape_class(name: str, load_function: Union[str, LoadFunction], time_limit: Optional[int] = None) -> type[LoadFunctionShape]:
    if isinstance(load_function, str):
        load_function = LoadFunction(parse_load_function(load_function))

    return type(name, (LoadFunctionShape,), {
        'abstract': False,
        'load_function': complete_if_necessary(validate(load_function)),
        'time_limit': time_limit,
        '__module__': __name__,
    })
