"""grizzly_scheduler types."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .exceptions import AllocationError

if TYPE_CHECKING:  # pragma: no cover
    from .function import LoadFunction

UNSPECIFIED = -1
"""Sentinel for ramp parameters, and time periods, that has not been specified."""


@dataclass(frozen=True)
class RampSpec:
    """Parameters used to synthesize a load function, each of them can be `UNSPECIFIED`."""

    initial_value: int = UNSPECIFIED
    target_value: int = UNSPECIFIED
    period: int = UNSPECIFIED
    step_size: int = UNSPECIFIED
    steady_period: int = UNSPECIFIED


@dataclass(frozen=True)
class TestCaseLoadProfile:
    """Resolved load profile of one test case, `number_of_users` has already been validated and scaled."""

    __test__ = False

    user_name: str
    number_of_users: LoadFunction
    measurement_period: int
    is_cp_test: bool = False
    arrival_rate: Optional[LoadFunction] = None
    initial_delay: int = 0
    warm_up_period: int = 0
    shutdown_period: int = 0

    def __post_init__(self) -> None:
        from .function import validate

        validate(self.number_of_users)

        if self.arrival_rate is not None:
            validate(self.arrival_rate)


@dataclass(frozen=True)
class AgentControllerSpec:
    name: str
    weight: int = 1
    agent_count: int = 1
    runs_cp_tests: bool = False

    def __post_init__(self) -> None:
        if self.weight < 0:
            message = f'agent controller "{self.name}" has a negative weight'
            raise AllocationError(message)

        if self.agent_count < 0:
            message = f'agent controller "{self.name}" has a negative agent count'
            raise AllocationError(message)

    @property
    def agent_ids(self) -> tuple[str, ...]:
        return tuple(f'{self.name}-{index}' for index in range(self.agent_count))


@dataclass(frozen=True)
class TestUserConfiguration:
    """One user slot on an agent.

    All slots of a test case on the same agent share the agent's part of the load function in
    `number_of_users`, it is not the load of a single slot. Drive it once per agent and test case,
    see `AgentDriver.for_user_list`.

    `agent_index` is unique within the deployment and spread over the agent controllers, so
    consecutive indices ends up on different machines whenever possible.
    """

    __test__ = False

    user_name: str
    number_of_users: LoadFunction
    measurement_period: int
    agent_index: int
    agent_id: str = ''
    instance: int = 0
    absolute_user_number: int = 0
    total_user_count: int = 0
    arrival_rate: Optional[LoadFunction] = field(default=None, repr=False)
    initial_delay: int = 0
    warm_up_period: int = 0
    shutdown_period: int = 0
