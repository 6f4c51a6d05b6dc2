"""Any import from a grizzly_scheduler module should initialize version (grizzly_scheduler and locust) variables."""
from importlib.metadata import PackageNotFoundError, version

from .__version__ import __version__

try:
    __locust_version__ = version('locust')
except PackageNotFoundError:  # pragma: no coverage
    __locust_version__ = '<unknown>'

__all__ = ['__version__']
