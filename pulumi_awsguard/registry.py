# Copyright 2016-2025, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from collections.abc import Sequence
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Union

from .errors import ConfigurationError
from .policy import EnforcementLevel, Policy, to_enforcement_level

logger = logging.getLogger(__name__)

PolicyConfig = Mapping[str, Union[EnforcementLevel, str, Mapping[str, Any]]]
"""
Per-policy configuration, keyed by policy name. A value is either an enforcement level or a dict of
settings that may include an "enforcementLevel" entry. The key "all" sets the enforcement level of
every policy.
"""

ALL_POLICIES = "all"


class PolicyGroup:
    """
    A named group of related policies, e.g. "security".
    """

    def __init__(self, name: str, policies: List[Policy]) -> None:
        if not name or not isinstance(name, str):
            raise TypeError("Expected name to be a non-empty string")
        if not isinstance(policies, list):
            raise TypeError("Expected policies to be a list of policies")
        for policy in policies:
            if not isinstance(policy, Policy):
                raise TypeError("Expected each policy in policies to be a Policy")
        self.name = name
        self.policies = policies


class RegisteredPolicy(NamedTuple):
    """
    A policy as configured for a run: its resolved enforcement level and settings.
    """
    policy: Policy
    group: str
    enforcement_level: EnforcementLevel
    config: Dict[str, Any]

    @property
    def name(self) -> str:
        return self.policy.name


class _NormalizedConfigValue(NamedTuple):
    enforcement_level: Optional[EnforcementLevel]
    properties: Optional[Dict[str, Any]]


def _normalize_config(config: PolicyConfig) -> Dict[str, _NormalizedConfigValue]:
    result = {}

    for key in config:
        val = config[key]

        # If the value is an enforcement level, we're done.
        if isinstance(val, (EnforcementLevel, str)):
            result[key] = _NormalizedConfigValue(to_enforcement_level(val), None)
            continue

        # Otherwise, it's an object that may have an enforcement level and additional
        # properties.
        enforcement_level, properties = None, None
        for k in val:
            if k == "enforcementLevel":
                enforcement_level = to_enforcement_level(val["enforcementLevel"])
            else:
                if properties is None:
                    properties = {}
                properties[k] = val[k]
        result[key] = _NormalizedConfigValue(enforcement_level, properties)

    return result


class PolicyRegistry(Sequence):
    """
    PolicyRegistry is the ordered set of policies for one validation run, composed from one or more
    groups. Every setting is resolved and validated when the registry is built, so a bad
    configuration fails before anything is validated. Disabled policies stay in the registry.
    """

    def __init__(self,
                 groups: List[PolicyGroup],
                 enforcement_level: Optional[EnforcementLevel] = None,
                 config: Optional[PolicyConfig] = None) -> None:
        """
        :param List[PolicyGroup] groups: The groups to compose, in order.
        :param Optional[EnforcementLevel] enforcement_level: The level used for policies that don't
               specify one. Defaults to advisory.
        :param Optional[PolicyConfig] config: Per-policy enforcement levels and settings.
        """
        if not isinstance(groups, list):
            raise TypeError("Expected groups to be a list of policy groups")
        for group in groups:
            if not isinstance(group, PolicyGroup):
                raise TypeError("Expected each group in groups to be a PolicyGroup")
        if enforcement_level is not None and not isinstance(enforcement_level, EnforcementLevel):
            raise TypeError("Expected enforcement_level to be an EnforcementLevel")
        if config is not None:
            if not isinstance(config, Mapping):
                raise TypeError("Expected config to be a dict")
            for k, v in config.items():
                if not isinstance(k, str):
                    raise TypeError("Expected config key to be a string")
                if not isinstance(v, (EnforcementLevel, str, Mapping)):
                    raise TypeError(f"Expected config['{k}'] to be an EnforcementLevel or dict")

        normalized = _normalize_config(config) if config is not None else {}
        default_level = enforcement_level if enforcement_level is not None else EnforcementLevel.ADVISORY
        all_level: Optional[EnforcementLevel] = None
        if ALL_POLICIES in normalized:
            if normalized[ALL_POLICIES].properties:
                raise ConfigurationError('"all" only accepts an enforcement level')
            all_level = normalized[ALL_POLICIES].enforcement_level

        entries: List[RegisteredPolicy] = []
        owners: Dict[str, str] = {}
        for group in groups:
            for policy in group.policies:
                if policy.name in owners:
                    raise ConfigurationError(f"duplicate policy name '{policy.name}' "
                                             f"(groups '{owners[policy.name]}' and '{group.name}')")
                owners[policy.name] = group.name

                value = normalized.get(policy.name, _NormalizedConfigValue(None, None))
                if value.enforcement_level is not None:
                    level = value.enforcement_level
                elif all_level is not None:
                    level = all_level
                elif policy.enforcement_level is not None:
                    level = policy.enforcement_level
                else:
                    level = default_level

                entry = RegisteredPolicy(policy, group.name, level, policy.resolve_config(value.properties))
                logger.debug("registered policy %s (%s) at %s", policy.name, group.name, level.value)
                entries.append(entry)

        unknown = [k for k in normalized if k != ALL_POLICIES and k not in owners]
        if unknown:
            raise ConfigurationError("configuration given for unknown policies: " + ", ".join(sorted(unknown)))

        self.__groups = groups
        self.__enforcement_level = enforcement_level
        self.__entries = entries
        self.__by_name = {e.name: e for e in entries}

    @property
    def groups(self) -> List[PolicyGroup]:
        return self.__groups

    @property
    def enforcement_level(self) -> Optional[EnforcementLevel]:
        return self.__enforcement_level

    def __getitem__(self, index):
        return self.__entries[index]

    def __len__(self):
        return len(self.__entries)

    def __iter__(self) -> Iterator[RegisteredPolicy]:
        return iter(self.__entries)

    def get(self, name: str) -> Optional[RegisteredPolicy]:
        return self.__by_name.get(name)

    def reconfigure(self, config: Optional[PolicyConfig]) -> 'PolicyRegistry':
        """
        Returns a new registry over the same groups with `config` applied instead.
        """
        return PolicyRegistry(self.__groups, self.__enforcement_level, config)
