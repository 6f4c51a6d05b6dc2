"""Fixtures used in tests."""
from __future__ import annotations

from contextlib import suppress
from os import environ
from shutil import rmtree
from textwrap import dedent
from typing import TYPE_CHECKING, Literal, Optional, Type

from pytest_mock.plugin import MockerFixture

from grizzly_scheduler.configuration import CONFIGURATION_FILE_VARIABLE

if TYPE_CHECKING:  # pragma: no cover
    from pathlib import Path
    from types import TracebackType

    from _pytest.tmpdir import TempPathFactory
    from typing_extensions import Self


__all__ = [
    'ConfigurationFileFixture',
    'MockerFixture',
]


class ConfigurationFileFixture:
    """Write configuration files to a temporary directory, and point the configuration environment variable at them."""

    root: Path
    _tmp_path_factory: TempPathFactory

    def __init__(self, tmp_path_factory: TempPathFactory) -> None:
        self._tmp_path_factory = tmp_path_factory

    def __enter__(self) -> Self:
        self.root = self._tmp_path_factory.mktemp('configuration')

        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> Literal[True]:
        with suppress(KeyError):
            del environ[CONFIGURATION_FILE_VARIABLE]

        rmtree(self.root)

        return True

    def write(self, content: str, name: str = 'load-profile.yaml', *, set_environment: bool = False) -> Path:
        file = self.root / name
        file.write_text(dedent(content))

        if set_environment:
            environ[CONFIGURATION_FILE_VARIABLE] = str(file)

        return file
