"""Helpers used in tests."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Union

from grizzly_scheduler.function import LoadFunction, as_load_function, sample_monotone
from grizzly_scheduler.types import TestCaseLoadProfile

if TYPE_CHECKING:  # pragma: no cover
    from grizzly_scheduler.deployment import TestDeployment


def create_test_case(user_name: str, users: Union[int, list[tuple[int, int]], LoadFunction], **kwargs: Any) -> TestCaseLoadProfile:
    kwargs.setdefault('measurement_period', 600)

    return TestCaseLoadProfile(user_name=user_name, number_of_users=as_load_function(users), **kwargs)


def global_values(function: LoadFunction) -> list[int]:
    """Movement aware rounded value of `function` at every whole second until its end."""
    values: list[int] = []
    last_value = 0

    for time in range(function.end + 1):
        last_value = sample_monotone(function, time, last_value)
        values.append(last_value)

    return values


def agent_values(deployment: TestDeployment, user_name: str, end: int) -> dict[str, list[int]]:
    """Value, at every whole second until `end`, of each agents share of `user_name`."""
    values: dict[str, list[int]] = {}

    for agent_id in deployment.get_agent_ids():
        users = [user for user in deployment.get_user_list(agent_id) if user.user_name == user_name]
        if len(users) < 1:
            continue

        share = users[0].number_of_users
        values[agent_id] = [int(share.exact_value_at(time)) for time in range(end + 1)]

    return values
