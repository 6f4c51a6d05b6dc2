"""Load profiles, and the agent controllers to distribute them on, from a YAML configuration file.

The file is rendered with Jinja2 before it is loaded, with the process environment available as `environ`. If the
file contains more than one document, the `configuration` sections are merged and later documents overrides values
in earlier documents.

```yaml
configuration:
  loadtests:
    active: TOrder TBrowse
    default:
      measurementPeriod: 10m
      rampUpPeriod: 1m
    TOrder:
      users: 10
      loadFactor: 0/1.0 5m/1.5
    TBrowse:
      users: 0/0 1m/20 10m/20 11m/0
      clientPerformanceTest: false
  agentcontrollers:
    ac001:
      weight: 2
      agents: 4
    ac002:
      agents: 2
      clientPerformanceTests: true
```

Properties of a test case:

| Property                | Description                                                                                  | Default      |
| ----------------------- | -------------------------------------------------------------------------------------------- | ------------ |
| `users`                 | number of concurrent users, integer or load function                                         | required     |
| `arrivalRate`           | arrivals per hour, integer or load function                                                  | -            |
| `loadFactor`            | decimal multiplier, or load function of multipliers, applied to `users` and `arrivalRate`    | -            |
| `measurementPeriod`     | timespan                                                                                     | required     |
| `rampUpPeriod`          | timespan over which the target value is reached                                              | -            |
| `rampUpSteadyPeriod`    | timespan between each ramp-up step, cannot be combined with `rampUpPeriod`                   | -            |
| `rampUpStepSize`        | number of users, or arrivals, added in each step                                             | `1`          |
| `rampUpInitialValue`    | value to start ramp-up from                                                                  | step size    |
| `initialDelay`          | timespan                                                                                     | `0`          |
| `warmUpPeriod`          | timespan                                                                                     | `0`          |
| `shutdownPeriod`        | timespan                                                                                     | `0`          |
| `clientPerformanceTest` | only run on agent controllers with `clientPerformanceTests: true`                            | `false`      |

Ramp-up properties are only used if the target (`arrivalRate`, if specified, otherwise `users`) is a constant.
Timespans are either a number of seconds or a timespan string, e.g. `1h30m`.
"""
from __future__ import annotations

import logging
import re
from copy import deepcopy
from decimal import ROUND_HALF_UP, Decimal
from os import environ
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence, Union

import yaml
from jinja2 import Environment
from locust.util.timespan import parse_timespan

from .deployment import TestDeployer
from .exceptions import AllocationError, ConfigurationError, InvalidLoadFunction, ParseError
from .function import PER_MILLE, LoadFunction, build_ramp, complete_if_necessary, scale, validate
from .parser import SEPARATOR_PATTERN, parse_load_function
from .types import UNSPECIFIED, AgentControllerSpec, RampSpec, TestCaseLoadProfile

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

    from .deployment import TestDeployment

logger = logging.getLogger(__name__)

CONFIGURATION_FILE_VARIABLE = 'GRIZZLY_SCHEDULER_CONFIGURATION_FILE'

INTEGER_PATTERN = re.compile(r'[0-9]+')
DECIMAL_PATTERN = re.compile(r'[0-9]+(?:\.[0-9]*)?|\.[0-9]+')


def merge_dicts(merged: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two dicts recursively, where `source` values takes precedence over `merged` values."""
    merged = deepcopy(merged)
    source = deepcopy(source)

    for key in source:
        if key in merged and isinstance(merged[key], dict) and isinstance(source[key], Mapping):
            merged[key] = merge_dicts(merged[key], source[key])
        else:
            merged[key] = source[key]

    return merged


def load_configuration_file(path: Optional[Union[str, Path]] = None) -> dict[str, Any]:
    """Load configuration from `path`, or from the file in environment variable `GRIZZLY_SCHEDULER_CONFIGURATION_FILE`."""
    configuration_file = str(path) if path is not None else environ.get(CONFIGURATION_FILE_VARIABLE, None)
    configuration: dict[str, Any] = {}

    if configuration_file is None:
        return configuration

    file = Path(configuration_file)
    if file.suffix not in ['.yml', '.yaml']:
        message = f'configuration file {configuration_file} must have file extension yml or yaml'
        raise ConfigurationError(message)

    try:
        environment = Environment(autoescape=False)
        yaml_template = environment.from_string(file.read_text())
        yaml_content = yaml_template.render(environ=dict(environ))
    except FileNotFoundError as e:
        message = f'{configuration_file} does not exist'
        raise ConfigurationError(message) from e

    try:
        yaml_configurations = list(yaml.load_all(yaml_content, Loader=yaml.SafeLoader))
    except yaml.YAMLError as e:
        message = f'{configuration_file} is not valid YAML'
        raise ConfigurationError(message) from e

    for yaml_configuration in yaml_configurations:
        if yaml_configuration is None:
            continue

        if not isinstance(yaml_configuration, dict) or not isinstance(yaml_configuration.get('configuration', None), dict):
            message = f'{configuration_file} contains a document without a configuration section'
            raise ConfigurationError(message)

        configuration = merge_dicts(configuration, yaml_configuration['configuration'])

    logger.debug('loaded configuration from %s', configuration_file)

    return configuration


def _property_error(user_name: str, key: str, value: Any, cause: Optional[Exception] = None) -> ConfigurationError:
    message = f'test case {user_name}: invalid value "{value}" for {key}'
    if cause is not None:
        message = f'{message}, {cause}'

    return ConfigurationError(message)


def _load_function(user_name: str, key: str, value: Any, *, decimal: bool = False) -> LoadFunction:
    try:
        if isinstance(value, bool):
            raise _property_error(user_name, key, value)

        if isinstance(value, (int, float)) or (isinstance(value, str) and (DECIMAL_PATTERN if decimal else INTEGER_PATTERN).fullmatch(value.strip())):
            if decimal:
                constant = int((Decimal(str(value).strip()) * PER_MILLE).quantize(Decimal(1), rounding=ROUND_HALF_UP))
            elif isinstance(value, float):
                raise _property_error(user_name, key, value)
            else:
                constant = int(value)

            return validate(LoadFunction.constant(constant))

        if not isinstance(value, str):
            raise _property_error(user_name, key, value)

        return validate(complete_if_necessary(parse_load_function(value, decimal=decimal)))
    except (InvalidLoadFunction, ParseError) as e:
        raise _property_error(user_name, key, value, e) from e


def _timespan(user_name: str, key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise _property_error(user_name, key, value)

    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str) and INTEGER_PATTERN.fullmatch(value.strip()):
        seconds = int(value)
    elif isinstance(value, str):
        try:
            seconds = parse_timespan(value)
        except ValueError as e:
            raise _property_error(user_name, key, value, e) from e
    else:
        raise _property_error(user_name, key, value)

    if seconds < 0:
        raise _property_error(user_name, key, value)

    return seconds


def _integer(user_name: str, key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    if isinstance(value, str) and INTEGER_PATTERN.fullmatch(value.strip()):
        return int(value)

    raise _property_error(user_name, key, value)


def _boolean(user_name: str, key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value

    if isinstance(value, str) and value.strip().lower() in ['true', 'false']:
        return value.strip().lower() == 'true'

    raise _property_error(user_name, key, value)


def _optional(user_name: str, properties: Mapping[str, Any], key: str, convert: Callable[[str, str, Any], int]) -> int:
    value = properties.get(key, None)
    if value is None:
        return UNSPECIFIED

    return convert(user_name, key, value)


def _active_test_cases(loadtests: Mapping[str, Any]) -> list[str]:
    active = loadtests.get('active', None)

    if active is None:
        return [name for name in loadtests if name not in ['active', 'default']]

    if isinstance(active, str):
        return [name for name in SEPARATOR_PATTERN.split(active.strip()) if len(name) > 0]

    if isinstance(active, list):
        return [str(name) for name in active]

    message = f'invalid value "{active}" for loadtests.active'
    raise ConfigurationError(message)


def resolve_test_case(user_name: str, properties: Mapping[str, Any]) -> tuple[TestCaseLoadProfile, int]:
    """Create the load profile of a test case, and return it together with its ramp-up period in seconds."""
    if properties.get('users', None) is None:
        message = f'test case {user_name}: users is not specified'
        raise ConfigurationError(message)

    if properties.get('measurementPeriod', None) is None:
        message = f'test case {user_name}: measurementPeriod is not specified'
        raise ConfigurationError(message)

    measurement_period = _timespan(user_name, 'measurementPeriod', properties['measurementPeriod'])
    if measurement_period < 1:
        message = f'test case {user_name}: measurementPeriod must be greater than 0'
        raise ConfigurationError(message)

    users = _load_function(user_name, 'users', properties['users'])
    arrival_rate: Optional[LoadFunction] = None

    if properties.get('arrivalRate', None) is not None:
        arrival_rate = _load_function(user_name, 'arrivalRate', properties['arrivalRate'])

        if users.is_complex:
            message = f'test case {user_name}: arrivalRate cannot be combined with a load function for users'
            raise ConfigurationError(message)

    if properties.get('loadFactor', None) is not None:
        load_factor = _load_function(user_name, 'loadFactor', properties['loadFactor'], decimal=True)
        users = scale(users, load_factor)
        if arrival_rate is not None:
            arrival_rate = scale(arrival_rate, load_factor)

    ramp_up_period = 0
    target = arrival_rate if arrival_rate is not None else users

    if target.is_simple:
        ramp = RampSpec(
            initial_value=_optional(user_name, properties, 'rampUpInitialValue', _integer),
            target_value=target[0].value,
            period=_optional(user_name, properties, 'rampUpPeriod', _timespan),
            step_size=_optional(user_name, properties, 'rampUpStepSize', _integer),
            steady_period=_optional(user_name, properties, 'rampUpSteadyPeriod', _timespan),
        )

        try:
            target = build_ramp(ramp)
        except (AllocationError, InvalidLoadFunction) as e:
            message = f'test case {user_name}: {e}'
            raise ConfigurationError(message) from e

        ramp_up_period = target.end

        if arrival_rate is not None:
            arrival_rate = target
        else:
            users = target
    elif any(properties.get(key, None) is not None for key in ['rampUpPeriod', 'rampUpSteadyPeriod', 'rampUpStepSize', 'rampUpInitialValue']):
        logger.debug('test case %s: ramp-up properties are ignored, target is already a load function', user_name)

    try:
        profile = TestCaseLoadProfile(
            user_name=user_name,
            number_of_users=users,
            measurement_period=measurement_period,
            is_cp_test=_boolean(user_name, 'clientPerformanceTest', properties.get('clientPerformanceTest', False)),
            arrival_rate=arrival_rate,
            initial_delay=_timespan(user_name, 'initialDelay', properties.get('initialDelay', 0)),
            warm_up_period=_timespan(user_name, 'warmUpPeriod', properties.get('warmUpPeriod', 0)),
            shutdown_period=_timespan(user_name, 'shutdownPeriod', properties.get('shutdownPeriod', 0)),
        )
    except InvalidLoadFunction as e:
        message = f'test case {user_name}: {e}'
        raise ConfigurationError(message) from e

    return profile, ramp_up_period


def resolve_agent_controller(name: str, properties: Optional[Mapping[str, Any]]) -> AgentControllerSpec:
    if properties is None:
        properties = {}

    if not isinstance(properties, Mapping):
        message = f'agent controller {name}: invalid value "{properties}"'
        raise ConfigurationError(message)

    values: dict[str, Any] = {'name': name}

    for key, attribute in [('weight', 'weight'), ('agents', 'agent_count')]:
        value = properties.get(key, None)
        if value is None:
            continue

        if isinstance(value, bool) or not isinstance(value, int):
            message = f'agent controller {name}: invalid value "{value}" for {key}'
            raise ConfigurationError(message)

        values[attribute] = value

    runs_cp_tests = properties.get('clientPerformanceTests', False)
    if not isinstance(runs_cp_tests, bool):
        message = f'agent controller {name}: invalid value "{runs_cp_tests}" for clientPerformanceTests'
        raise ConfigurationError(message)

    values['runs_cp_tests'] = runs_cp_tests

    try:
        return AgentControllerSpec(**values)
    except AllocationError as e:
        raise ConfigurationError(str(e)) from e


class LoadProfileConfiguration:
    _test_cases: dict[str, TestCaseLoadProfile]
    _ramp_up_periods: dict[str, int]
    _agent_controllers: dict[str, AgentControllerSpec]

    def __init__(
        self,
        test_cases: Sequence[TestCaseLoadProfile],
        agent_controllers: Mapping[str, AgentControllerSpec],
        ramp_up_periods: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._test_cases = {test_case.user_name: test_case for test_case in test_cases}
        self._agent_controllers = dict(agent_controllers)
        self._ramp_up_periods = dict(ramp_up_periods or {})

    @classmethod
    def from_dict(cls, configuration: Mapping[str, Any]) -> LoadProfileConfiguration:
        loadtests = configuration.get('loadtests', None) or {}
        if not isinstance(loadtests, Mapping):
            message = 'loadtests must be a mapping of test cases'
            raise ConfigurationError(message)

        defaults = loadtests.get('default', None) or {}
        test_cases: list[TestCaseLoadProfile] = []
        ramp_up_periods: dict[str, int] = {}

        for user_name in _active_test_cases(loadtests):
            properties = loadtests.get(user_name, None) or {}
            if not isinstance(properties, Mapping) or not isinstance(defaults, Mapping):
                message = f'test case {user_name}: properties must be a mapping'
                raise ConfigurationError(message)

            profile, ramp_up_period = resolve_test_case(user_name, merge_dicts(dict(defaults), properties))
            test_cases.append(profile)
            ramp_up_periods[user_name] = ramp_up_period

            logger.debug('test case %s: users %s, measurement period %d seconds', user_name, profile.number_of_users, profile.measurement_period)

        agent_controllers = configuration.get('agentcontrollers', None) or {}
        if not isinstance(agent_controllers, Mapping):
            message = 'agentcontrollers must be a mapping of agent controllers'
            raise ConfigurationError(message)

        return cls(
            test_cases,
            {str(name): resolve_agent_controller(str(name), properties) for name, properties in agent_controllers.items()},
            ramp_up_periods,
        )

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]] = None) -> LoadProfileConfiguration:
        return cls.from_dict(load_configuration_file(path))

    @property
    def test_cases(self) -> tuple[TestCaseLoadProfile, ...]:
        return tuple(self._test_cases.values())

    def get_test_case(self, user_name: str) -> TestCaseLoadProfile:
        try:
            return self._test_cases[user_name]
        except KeyError as e:
            message = f'test case {user_name} is not configured'
            raise KeyError(message) from e

    @property
    def agent_controllers(self) -> Mapping[str, AgentControllerSpec]:
        return MappingProxyType(self._agent_controllers)

    @property
    def total_ramp_up_period(self) -> int:
        """Time from the first test case starts until the last test case has reached its target."""
        if len(self._test_cases) < 1:
            return 0

        first_start = min(test_case.initial_delay for test_case in self._test_cases.values())
        last_ramped = max(
            test_case.initial_delay + self._ramp_up_periods.get(user_name, 0)
            for user_name, test_case in self._test_cases.items()
        )

        return max(0, last_ramped - first_start)

    def create_deployment(self) -> TestDeployment:
        return TestDeployer(self._agent_controllers).create_deployment(self.test_cases)
