"""Configuration of pytest."""
from __future__ import annotations

from typing import TYPE_CHECKING, Generator

import pytest

from .fixtures import ConfigurationFileFixture

if TYPE_CHECKING:  # pragma: no cover
    from _pytest.tmpdir import TempPathFactory


def _configuration_file_fixture(tmp_path_factory: TempPathFactory) -> Generator[ConfigurationFileFixture, None, None]:
    with ConfigurationFileFixture(tmp_path_factory) as fixture:
        yield fixture


configuration_file_fixture = pytest.fixture()(_configuration_file_fixture)
