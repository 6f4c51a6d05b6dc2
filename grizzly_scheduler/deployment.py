"""Distribution of test cases over a weighted fleet of agent controllers and their agents.

The number of users of each test case is sampled every second, rounded in the direction the curve is moving, and the
change is applied one user at a time:

* a new user goes to the agent controller with the lowest load relative to its weight, and within the agent
  controller to the agent with the fewest users
* a stopped user is taken from the agent controller with the highest load relative to its weight, and within the
  agent controller from the agent with the most users

Each agent gets its own exact load function per test case, and the sum of them equals the rounded global number of
users at every whole second.

Test cases that are client performance tests are only distributed to agent controllers that runs client performance
tests, and the other way around.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from itertools import chain, zip_longest
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping, Optional, Sequence, TypeVar, Union

from .exceptions import AllocationError
from .function import LoadFunction, TimeValuePair, sample_monotone
from .types import AgentControllerSpec, TestCaseLoadProfile, TestUserConfiguration

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')

_SENTINEL = object()


def round_robin(iterables: Iterable[Iterable[T]]) -> Iterator[T]:
    """Take one item at a time from each iterable, skipping the ones that have been exhausted."""
    for items in zip_longest(*iterables, fillvalue=_SENTINEL):
        for item in items:
            if item is not _SENTINEL:
                yield item  # type: ignore[misc]


@dataclass
class _AgentEntry:
    agent_id: str
    index: int
    user_count: int = field(init=False, default=0)
    users: dict[str, int] = field(init=False, default_factory=dict)
    shares: dict[str, list[TimeValuePair]] = field(init=False, default_factory=dict)

    def users_of(self, user_name: str) -> int:
        return self.users.get(user_name, 0)

    def change(self, user_name: str, delta: int, time: int) -> None:
        old = self.users_of(user_name)
        new = old + delta

        self.users[user_name] = new
        self.user_count += delta

        pairs = self.shares.setdefault(user_name, [])

        if len(pairs) < 1:
            if time > 0:
                pairs.extend((TimeValuePair(0, 0), TimeValuePair(time, 0)))
            pairs.append(TimeValuePair(time, new))
        elif pairs[-1].time == time:
            pairs[-1] = TimeValuePair(time, new)
        else:
            pairs.extend((TimeValuePair(time, old), TimeValuePair(time, new)))


@dataclass
class _ControllerEntry:
    spec: AgentControllerSpec
    order: int
    agents: list[_AgentEntry]
    user_count: int = field(init=False, default=0)
    users: dict[str, int] = field(init=False, default_factory=dict)

    @classmethod
    def create(cls, spec: AgentControllerSpec, order: int) -> _ControllerEntry:
        return cls(spec=spec, order=order, agents=[_AgentEntry(agent_id, index) for index, agent_id in enumerate(spec.agent_ids)])

    @property
    def eligible(self) -> bool:
        return self.spec.weight > 0 and self.spec.agent_count > 0

    def users_of(self, user_name: str) -> int:
        return self.users.get(user_name, 0)

    def load_key(self, user_name: str) -> tuple[Fraction, int, int, int]:
        return (Fraction(self.user_count, self.spec.weight), -self.spec.weight, self.users_of(user_name), self.order)

    def change(self, agent: _AgentEntry, user_name: str, delta: int, time: int) -> None:
        agent.change(user_name, delta, time)
        self.users[user_name] = self.users_of(user_name) + delta
        self.user_count += delta


def _add_user(controllers: Sequence[_ControllerEntry], user_name: str, time: int) -> None:
    controller = min(controllers, key=lambda c: c.load_key(user_name))
    agent = min(controller.agents, key=lambda a: (a.user_count, a.users_of(user_name), a.index))
    controller.change(agent, user_name, 1, time)


def _remove_user(controllers: Sequence[_ControllerEntry], user_name: str, time: int) -> None:
    candidates = [controller for controller in controllers if controller.users_of(user_name) > 0]

    if len(candidates) < 1:  # pragma: no cover
        message = f'no agent is running a user of "{user_name}"'
        raise AllocationError(message)

    controller = max(candidates, key=lambda c: c.load_key(user_name))
    agent = max(
        (agent for agent in controller.agents if agent.users_of(user_name) > 0),
        key=lambda a: (a.user_count, a.users_of(user_name), a.index),
    )
    controller.change(agent, user_name, -1, time)


@dataclass
class _UserSlot:
    profile: TestCaseLoadProfile
    share: LoadFunction
    agent_id: str
    instance: int
    agent_index: int = -1


class TestDeployment:
    """Read-only result of `TestDeployer.create_deployment`, the list of user slots per agent."""

    __test__ = False

    _agent_ids_per_controller: Mapping[str, tuple[str, ...]]
    _user_lists: Mapping[str, tuple[TestUserConfiguration, ...]]

    def __init__(
        self,
        agent_ids_per_controller: Mapping[str, Sequence[str]],
        user_lists: Mapping[str, Sequence[TestUserConfiguration]],
    ) -> None:
        self._agent_ids_per_controller = MappingProxyType({name: tuple(agent_ids) for name, agent_ids in agent_ids_per_controller.items()})
        self._user_lists = MappingProxyType({
            agent_id: tuple(user_lists.get(agent_id, ()))
            for agent_id in chain.from_iterable(self._agent_ids_per_controller.values())
        })

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(agents={len(self._user_lists)}, users={self.total_user_count})'

    @property
    def total_user_count(self) -> int:
        return sum(len(user_list) for user_list in self._user_lists.values())

    def get_agent_ids(self) -> tuple[str, ...]:
        return tuple(self._user_lists.keys())

    def get_user_list(self, agent_id: str) -> tuple[TestUserConfiguration, ...]:
        try:
            return self._user_lists[agent_id]
        except KeyError as e:
            message = f'agent "{agent_id}" is not part of the deployment'
            raise KeyError(message) from e

    def get_all_user_lists(self) -> tuple[tuple[TestUserConfiguration, ...], ...]:
        return tuple(self._user_lists.values())

    def get_agents_user_list(self, controller: Union[str, AgentControllerSpec]) -> Mapping[str, tuple[TestUserConfiguration, ...]]:
        name = controller.name if isinstance(controller, AgentControllerSpec) else controller

        try:
            agent_ids = self._agent_ids_per_controller[name]
        except KeyError as e:
            message = f'agent controller "{name}" is not part of the deployment'
            raise KeyError(message) from e

        return MappingProxyType({agent_id: self._user_lists[agent_id] for agent_id in agent_ids})


class TestDeployer:
    __test__ = False

    agent_controllers: tuple[AgentControllerSpec, ...]

    def __init__(self, agent_controllers: Optional[Union[Mapping[str, AgentControllerSpec], Iterable[AgentControllerSpec]]]) -> None:
        if agent_controllers is None:
            agent_controllers = ()
        elif isinstance(agent_controllers, Mapping):
            agent_controllers = agent_controllers.values()

        self.agent_controllers = tuple(sorted(agent_controllers, key=lambda spec: spec.name))

        if len(self.agent_controllers) < 1:
            message = 'no agent controllers available'
            raise AllocationError(message)

        names = [spec.name for spec in self.agent_controllers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if len(duplicates) > 0:
            message = f'agent controllers {", ".join(duplicates)} are specified more than once'
            raise AllocationError(message)

    def create_deployment(self, test_cases: Sequence[TestCaseLoadProfile]) -> TestDeployment:
        names = [test_case.user_name for test_case in test_cases]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if len(duplicates) > 0:
            message = f'test cases {", ".join(duplicates)} are specified more than once'
            raise AllocationError(message)

        controllers = [_ControllerEntry.create(spec, order) for order, spec in enumerate(self.agent_controllers)]
        slots_per_controller: dict[str, list[list[_UserSlot]]] = {}

        for is_cp_test in (False, True):
            partition = [test_case for test_case in test_cases if test_case.is_cp_test == is_cp_test]
            if len(partition) < 1:
                continue

            partition_controllers = [controller for controller in controllers if controller.spec.runs_cp_tests == is_cp_test]
            self._distribute(partition, partition_controllers, is_cp_test=is_cp_test)

        instances: dict[str, int] = {}
        for controller in controllers:
            slots_per_controller[controller.spec.name] = [self._create_slots(agent, test_cases, instances) for agent in controller.agents]

        self._assign_agent_indices(slots_per_controller)

        return self._create_deployment(controllers, slots_per_controller)

    def _distribute(self, test_cases: Sequence[TestCaseLoadProfile], controllers: Sequence[_ControllerEntry], *, is_cp_test: bool) -> None:
        kind = 'client performance' if is_cp_test else 'load'

        if len(controllers) < 1:
            message = f'no agent controller runs {kind} tests'
            raise AllocationError(message)

        total_weight = sum(controller.spec.weight for controller in controllers)
        total_agents = sum(controller.spec.agent_count for controller in controllers)

        if total_weight < 1:
            message = f'total weight of agent controllers that runs {kind} tests is 0'
            raise AllocationError(message)

        if total_agents < 1:
            message = f'total number of agents of agent controllers that runs {kind} tests is 0'
            raise AllocationError(message)

        eligible = [controller for controller in controllers if controller.eligible]

        if len(eligible) < 1:
            message = f'no agent controller that runs {kind} tests has both weight and agents'
            raise AllocationError(message)

        logger.debug(
            'distributing %d %s test cases on %d agent controllers, total weight %d, total agents %d',
            len(test_cases), kind, len(eligible), total_weight, total_agents,
        )

        end = max(test_case.number_of_users.end for test_case in test_cases)
        global_values = {test_case.user_name: 0 for test_case in test_cases}

        for time in range(end + 1):
            for test_case in test_cases:
                user_name = test_case.user_name
                last_value = global_values[user_name]
                value = sample_monotone(test_case.number_of_users, time, last_value)
                delta = value - last_value

                change: Callable[[Sequence[_ControllerEntry], str, int], None] = _add_user if delta > 0 else _remove_user

                for _ in range(abs(delta)):
                    change(eligible, user_name, time)

                global_values[user_name] = value

        for controller in eligible:
            logger.debug(
                'agent controller %s: %s',
                controller.spec.name,
                ', '.join(f'{user_name}={count}' for user_name, count in controller.users.items()),
            )

    def _create_slots(self, agent: _AgentEntry, test_cases: Sequence[TestCaseLoadProfile], instances: dict[str, int]) -> list[_UserSlot]:
        slots: list[_UserSlot] = []

        for test_case in test_cases:
            pairs = agent.shares.get(test_case.user_name, None)
            if pairs is None:
                continue

            share = LoadFunction(pairs)
            offset = instances.get(test_case.user_name, 0)

            for instance in range(offset, offset + share.peak):
                slots.append(_UserSlot(profile=test_case, share=share, agent_id=agent.agent_id, instance=instance))

            instances[test_case.user_name] = offset + share.peak

        return slots

    def _assign_agent_indices(self, slots_per_controller: Mapping[str, Sequence[Sequence[_UserSlot]]]) -> None:
        # one slot per agent and round within each controller, then one slot per controller and round
        queues = [round_robin(slots_per_agent) for _, slots_per_agent in sorted(slots_per_controller.items())]

        for agent_index, slot in enumerate(round_robin(queues)):
            slot.agent_index = agent_index

    def _create_deployment(
        self,
        controllers: Sequence[_ControllerEntry],
        slots_per_controller: Mapping[str, Sequence[Sequence[_UserSlot]]],
    ) -> TestDeployment:
        total_user_count = sum(len(slots) for slots_per_agent in slots_per_controller.values() for slots in slots_per_agent)
        agent_ids_per_controller: dict[str, tuple[str, ...]] = {}
        user_lists: dict[str, tuple[TestUserConfiguration, ...]] = {}
        absolute_user_number = 0

        for controller in controllers:
            agent_ids_per_controller[controller.spec.name] = controller.spec.agent_ids

            for agent, slots in zip(controller.agents, slots_per_controller[controller.spec.name]):
                user_list: list[TestUserConfiguration] = []

                for slot in slots:
                    profile = slot.profile
                    user_list.append(TestUserConfiguration(
                        user_name=profile.user_name,
                        number_of_users=slot.share,
                        measurement_period=profile.measurement_period,
                        agent_index=slot.agent_index,
                        agent_id=slot.agent_id,
                        instance=slot.instance,
                        absolute_user_number=absolute_user_number,
                        total_user_count=total_user_count,
                        arrival_rate=profile.arrival_rate,
                        initial_delay=profile.initial_delay,
                        warm_up_period=profile.warm_up_period,
                        shutdown_period=profile.shutdown_period,
                    ))
                    absolute_user_number += 1

                user_lists[agent.agent_id] = tuple(user_list)

                if len(user_list) > 0:
                    logger.debug('agent %s: %s', agent.agent_id, ', '.join(f'{user.user_name}#{user.instance}' for user in user_list))

        logger.info('deployed %d user slots on %d agents', total_user_count, len(user_lists))

        return TestDeployment(agent_ids_per_controller, user_lists)
