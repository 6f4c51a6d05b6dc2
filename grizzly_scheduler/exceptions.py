"""Custom grizzly_scheduler exceptions.

All of them are raised while a deployment is being built, before any virtual user has been
started, and none of them are recovered from internally.
"""
from __future__ import annotations

from typing import Any, Optional


class SchedulerError(Exception):
    message: Optional[str] = None

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or ''


class InvalidLoadFunction(SchedulerError):  # noqa: N818
    function: Any

    def __init__(self, message: str, function: Any = None) -> None:
        super().__init__(message)
        self.function = function

    def __str__(self) -> str:
        if self.function is None:
            return super().__str__()

        return f'{self.message}: {self.function!r}'


class ParseError(SchedulerError):
    value: Optional[str]

    def __init__(self, message: str, value: Optional[str] = None) -> None:
        super().__init__(message)
        self.value = value

    def __str__(self) -> str:
        if self.value is None:
            return super().__str__()

        return f'{self.message} in "{self.value}"'


class AllocationError(SchedulerError):
    pass


class ConfigurationError(SchedulerError):
    pass


__all__ = [
    'AllocationError',
    'ConfigurationError',
    'InvalidLoadFunction',
    'ParseError',
    'SchedulerError',
]
