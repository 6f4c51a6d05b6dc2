"""Textual representation of load functions.

A load function is written as `<duration>/<value>` pairs, separated by any number of spaces, commas or semicolons.
Duration is either a number of seconds, a compound of hours, minutes and seconds, e.g. `1h10m10s`, `30m` or `15s`, or
`HH:MM:SS` / `MM:SS`. A duration or value prefixed with `+` or `-` is relative to the previous pair.

```plain
0/1 30m/2, 1h/4; 1h10m/0
+10m/+2 1:30:00/-2
```

Integer values are used for number of users and arrival rates, decimal values for load factors, which are stored per
mille (`1.5` is stored as `1500`).
"""
from __future__ import annotations

import logging
import re
from abc import ABCMeta, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable, Optional

from .exceptions import ParseError
from .function import PER_MILLE, PairLike, TimeValuePair

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

logger = logging.getLogger(__name__)

SEPARATOR_PATTERN = re.compile(r'[\s,;]+')
SLASH_PATTERN = re.compile(r'\s*/\s*')
SECONDS_PATTERN = re.compile(r'[0-9]+')
DURATION_PATTERN = re.compile(r'(?:(?P<hours>[0-9]+)h)?(?:(?P<minutes>[0-9]+)m)?(?:(?P<seconds>[0-9]+)s)?')
DIGIT_PATTERN = re.compile(r'(?:(?P<hours>[0-9]+):)?(?P<minutes>[0-5]?[0-9]):(?P<seconds>[0-5]?[0-9])')


def parse_duration(text: str) -> int:
    """Convert `1h10m10s`, `1:10:10`, or a plain number of seconds, to seconds."""
    text = text.strip()

    if SECONDS_PATTERN.fullmatch(text):
        return int(text)

    match = DURATION_PATTERN.fullmatch(text) or DIGIT_PATTERN.fullmatch(text)

    if len(text) < 1 or match is None:
        message = f'"{text}" is not a valid duration'
        raise ParseError(message, text)

    hours, minutes, seconds = (int(match.group(name) or 0) for name in ('hours', 'minutes', 'seconds'))

    return hours * 3600 + minutes * 60 + seconds


def format_duration(seconds: int) -> str:
    """Compact seconds to the largest units, e.g. `4210` is formatted as `1h10m10s`."""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts: list[str] = []

    if hours > 0:
        parts.append(f'{hours}h')

    if minutes > 0:
        parts.append(f'{minutes}m')

    if seconds > 0 or len(parts) < 1:
        parts.append(f'{seconds}s')

    return ''.join(parts)


class LoadFunctionParser(metaclass=ABCMeta):
    """Parse load function text to pairs, in the order they were written. Sorting and validation is left to the caller."""

    @abstractmethod
    def parse_value(self, text: str) -> int:  # pragma: no cover
        message = f'{self.__class__.__name__} has not implemented parse_value'
        raise NotImplementedError(message)

    @staticmethod
    def _resolve(text: str, parse: Callable[[str], int], previous: Optional[int]) -> int:
        """`+5` and `-5` are added to the previous duration or value, anything else is absolute."""
        if text[0] not in '+-':
            return parse(text)

        if previous is None:
            message = f'"{text}" is relative, but there is no previous pair'
            raise ParseError(message, text)

        amount = parse(text[1:])

        return previous + amount if text[0] == '+' else previous - amount

    def parse(self, text: str) -> list[TimeValuePair]:
        normalized = SLASH_PATTERN.sub('/', text.strip())
        pairs: list[TimeValuePair] = []

        for token in SEPARATOR_PATTERN.split(normalized):
            if len(token) < 1:
                continue

            parts = token.split('/')

            if len(parts) != 2 or any(len(part) < 1 for part in parts):
                message = f'"{token}" is not a duration/value pair'
                raise ParseError(message, text)

            duration, value = parts
            previous = pairs[-1] if len(pairs) > 0 else None

            try:
                pairs.append(TimeValuePair(
                    self._resolve(duration, parse_duration, previous.time if previous is not None else None),
                    self._resolve(value, self.parse_value, previous.value if previous is not None else None),
                ))
            except ParseError as e:
                raise ParseError(e.message or '', text) from e

        if len(pairs) < 1:
            message = 'no duration/value pairs specified'
            raise ParseError(message, text)

        logger.debug('parsed %d pairs from "%s"', len(pairs), text)

        return pairs


class IntValueLoadFunctionParser(LoadFunctionParser):
    VALUE_PATTERN = re.compile(r'[0-9]+')

    def parse_value(self, text: str) -> int:
        if self.VALUE_PATTERN.fullmatch(text) is None:
            message = f'"{text}" is not a valid integer value'
            raise ParseError(message, text)

        return int(text)


class DoubleValueLoadFunctionParser(LoadFunctionParser):
    """Decimal values are stored as per mille integers, rounded half up."""

    VALUE_PATTERN = re.compile(r'(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)')

    def parse_value(self, text: str) -> int:
        if self.VALUE_PATTERN.fullmatch(text) is None:
            message = f'"{text}" is not a valid decimal value'
            raise ParseError(message, text)

        try:
            value = (Decimal(text) * PER_MILLE).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            message = f'"{text}" is not a valid decimal value'
            raise ParseError(message, text) from e

        return int(value)


def parse_load_function(text: str, *, decimal: bool = False) -> list[TimeValuePair]:
    parser: LoadFunctionParser = DoubleValueLoadFunctionParser() if decimal else IntValueLoadFunctionParser()

    return parser.parse(text)


def format_load_function(function: Iterable[PairLike]) -> str:
    """Format pairs as `duration/value`, space separated and in the given order."""
    return ' '.join(f'{format_duration(time)}/{value}' for time, value in function)
