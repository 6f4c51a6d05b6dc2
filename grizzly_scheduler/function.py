"""Load functions and the algebra used to build, scale, complete and sample them.

A load function is a sequence of `time/value` breakpoints, where time is seconds since the start of the test. Times are
non-decreasing, and two consecutive breakpoints with the same time describes an instantaneous jump. Between two
breakpoints with different times the value is interpolated linearly, after the last breakpoint the last value is held.

```python
from grizzly_scheduler.function import LoadFunction, sample_monotone

users = LoadFunction([(0, 0), (10, 5), (10, 8)])

users.value_at(4)  # 2.0
users.value_at(10)  # 8.0
sample_monotone(users, 3, last_value=0)  # 1
```
"""
from __future__ import annotations

import logging
from bisect import bisect_right
from fractions import Fraction
from math import ceil, floor
from typing import Any, Iterable, Iterator, NamedTuple, Optional, Sequence, Union, overload

from .exceptions import AllocationError, InvalidLoadFunction
from .types import RampSpec

logger = logging.getLogger(__name__)

PER_MILLE = 1000

DEFAULT_INITIAL_VALUE = 1


class TimeValuePair(NamedTuple):
    time: int
    value: int


PairLike = Union[TimeValuePair, Sequence[int]]


def _to_pair(pair: PairLike) -> TimeValuePair:
    if isinstance(pair, TimeValuePair):
        return pair

    try:
        time, value = pair
    except (TypeError, ValueError) as e:
        message = 'time/value pair must have exactly two items'
        raise InvalidLoadFunction(message, pair) from e

    if isinstance(time, bool) or isinstance(value, bool) or not isinstance(time, int) or not isinstance(value, int):
        message = 'time and value must be integers'
        raise InvalidLoadFunction(message, pair)

    return TimeValuePair(time, value)


def _check(pairs: Sequence[TimeValuePair], *, allow_empty: bool) -> None:
    if len(pairs) < 1:
        if allow_empty:
            return

        message = 'load function does not specify any time/value pairs'
        raise InvalidLoadFunction(message, [])

    last_time = 0
    for time, value in pairs:
        if time < 0 or value < 0:
            message = 'either time or value is negative'
            raise InvalidLoadFunction(message, [tuple(pair) for pair in pairs])

        if time < last_time:
            message = 'time/value pairs must be sorted in ascending order'
            raise InvalidLoadFunction(message, [tuple(pair) for pair in pairs])

        last_time = time


class LoadFunction(Sequence[TimeValuePair]):
    """Immutable sequence of `TimeValuePair`, checked when created. An empty load function is allowed, but is not valid."""

    __slots__ = ('_pairs', '_times')

    _pairs: tuple[TimeValuePair, ...]
    _times: list[int]

    def __init__(self, pairs: Iterable[PairLike] = ()) -> None:
        converted = tuple(_to_pair(pair) for pair in pairs)
        _check(converted, allow_empty=True)

        self._pairs = converted
        self._times = [pair.time for pair in converted]

    @classmethod
    def constant(cls, value: int) -> LoadFunction:
        return cls([TimeValuePair(0, value)])

    @overload
    def __getitem__(self, index: int) -> TimeValuePair: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[TimeValuePair, ...]: ...

    def __getitem__(self, index: Union[int, slice]) -> Union[TimeValuePair, tuple[TimeValuePair, ...]]:
        return self._pairs[index]

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self) -> Iterator[TimeValuePair]:
        return iter(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LoadFunction):
            return self._pairs == other._pairs

        if isinstance(other, (list, tuple)):
            try:
                return self._pairs == tuple(tuple(pair) for pair in other)
            except TypeError:
                return False

        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __repr__(self) -> str:
        pairs = ', '.join(f'({time}, {value})' for time, value in self._pairs)
        return f'{self.__class__.__name__}([{pairs}])'

    def __str__(self) -> str:
        from .parser import format_load_function

        return format_load_function(self)

    @property
    def is_simple(self) -> bool:
        """Load function only has the trivial pair `(0, value)`, i.e. it is a constant."""
        return len(self._pairs) == 1 and self._pairs[0].time == 0

    @property
    def is_complex(self) -> bool:
        return not self.is_simple

    @property
    def peak(self) -> int:
        return max((pair.value for pair in self._pairs), default=0)

    @property
    def end(self) -> int:
        """Time of the last breakpoint."""
        if len(self._pairs) < 1:
            return 0

        return self._pairs[-1].time

    def exact_value_at(self, time: Union[int, float, Fraction]) -> Fraction:
        if len(self._pairs) < 1:
            message = 'cannot evaluate a load function without time/value pairs'
            raise InvalidLoadFunction(message, [])

        if time < 0:
            message = f'time must not be negative, got {time}'
            raise ValueError(message)

        if self._pairs[0].time != 0:
            message = 'load function does not start at time 0'
            raise InvalidLoadFunction(message, self)

        time = Fraction(time)

        # last breakpoint at, or before, time; with vertical steps the last of them wins
        index = bisect_right(self._times, time) - 1
        current = self._pairs[index]

        if index == len(self._pairs) - 1:
            return Fraction(current.value)

        following = self._pairs[index + 1]

        return current.value + (following.value - current.value) * (time - current.time) / (following.time - current.time)

    def value_at(self, time: Union[int, float, Fraction]) -> float:
        return float(self.exact_value_at(time))


def validate(function: Union[LoadFunction, Iterable[PairLike]]) -> LoadFunction:
    """Check that the load function specifies at least one pair, has no negative time or value, and ascending times.

    Returns the validated function as a `LoadFunction`.
    """
    if not isinstance(function, LoadFunction):
        pairs = tuple(_to_pair(pair) for pair in function)
        _check(pairs, allow_empty=False)

        return LoadFunction(pairs)

    _check(function[:], allow_empty=False)

    return function


def complete_if_necessary(function: Union[LoadFunction, Iterable[PairLike]]) -> LoadFunction:
    """A load function that is specified from a later offset implicitly has one active unit from the start."""
    if not isinstance(function, LoadFunction):
        function = LoadFunction(function)

    if len(function) > 0 and function[0].time != 0:
        return LoadFunction([TimeValuePair(0, DEFAULT_INITIAL_VALUE), *function])

    return function


def sample_monotone(function: LoadFunction, time: Union[int, float, Fraction], last_value: int) -> int:
    """Sample the function and round the value in the direction it is moving from `last_value`.

    Growth is rounded down and shrinkage is rounded up, so repeated sampling of a curve never oscillates around the
    real value, and once a value has been rounded down further growth continues from the rounded value.
    """
    value = function.exact_value_at(time)

    if value > last_value:
        return floor(value)

    if value < last_value:
        return ceil(value)

    return last_value


def build_ramp(spec: RampSpec) -> LoadFunction:
    """Synthesize a load function that grows from the initial value to the target value.

    `period` (total duration of the ramp) and `steady_period` (seconds per step) are mutually exclusive ways of
    specifying how fast the value should grow. The value grows in steps of `step_size` (default 1), and unless the
    step size is 1 each step is a vertical jump, so the result is a staircase.
    """
    if spec.target_value < 0:
        message = 'ramp-up target value is not specified'
        raise InvalidLoadFunction(message, spec)

    if spec.period >= 0 and spec.steady_period >= 0:
        message = 'both ramp-up period and ramp-up steady period are specified, but they are mutually exclusive'
        raise AllocationError(message)

    target_value = spec.target_value
    step_size = spec.step_size if spec.step_size > 0 else 1
    initial_value = spec.initial_value if spec.initial_value >= 0 else step_size

    steps = -(-(target_value - initial_value) // step_size) if initial_value < target_value else 0

    if steps == 0 or (spec.period <= 0 and spec.steady_period <= 0):
        return LoadFunction.constant(target_value)

    period = spec.period if spec.period > 0 else spec.steady_period * steps

    logger.debug('ramp from %d to %d in %d steps of %d during %d seconds', initial_value, target_value, steps, step_size, period)

    if step_size == 1:
        return LoadFunction([(0, initial_value), (period, target_value)])

    pairs: list[TimeValuePair] = [TimeValuePair(0, initial_value)]
    last_value = initial_value

    for elapsed in range(1, period + 1):
        value = min(target_value, initial_value + (elapsed * steps // period) * step_size)

        if value > last_value:
            pairs.extend((TimeValuePair(elapsed, last_value), TimeValuePair(elapsed, value)))
            last_value = value

    return LoadFunction(pairs)


def _group_by_time(function: LoadFunction) -> dict[int, list[int]]:
    grouped: dict[int, list[int]] = {}

    for time, value in function:
        grouped.setdefault(time, []).append(value)

    return grouped


def scale(base: LoadFunction, factor: LoadFunction) -> LoadFunction:
    """Multiply the values of `base` with the per mille values of `factor`.

    The breakpoint timelines of both functions are merged, and each resulting value is rounded half up on its own.
    If any of the functions is empty, `base` is returned as is.
    """
    if len(base) < 1 or len(factor) < 1:
        return base

    base_by_time = _group_by_time(base)
    factor_by_time = _group_by_time(factor)

    pairs: list[TimeValuePair] = []
    base_value: Optional[int] = None
    factor_value = PER_MILLE

    for time in sorted(base_by_time.keys() | factor_by_time.keys()):
        base_values = base_by_time.get(time, [])
        factor_values = factor_by_time.get(time, [])

        for index in range(max(len(base_values), len(factor_values))):
            if index < len(base_values):
                base_value = base_values[index]

            if index < len(factor_values):
                factor_value = factor_values[index]

            # nothing to scale before base has started
            if base_value is None:
                continue

            pairs.append(TimeValuePair(time, (base_value * factor_value + PER_MILLE // 2) // PER_MILLE))

    return LoadFunction(pairs)


def as_load_function(value: Any) -> LoadFunction:
    """Convert an int, or a sequence of pairs, to a `LoadFunction`."""
    if isinstance(value, LoadFunction):
        return value

    if isinstance(value, int) and not isinstance(value, bool):
        return LoadFunction.constant(value)

    return LoadFunction(value)
