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

from typing import List, Optional

from .elasticsearch import elasticsearch_group
from .policy import EnforcementLevel
from .registry import PolicyGroup
from .security import SecurityPolicySettings, security_group


def default_groups(enforcement_level: Optional[EnforcementLevel] = None,
                   settings: Optional[SecurityPolicySettings] = None) -> List[PolicyGroup]:
    """
    Returns every AWSGuard policy group: security, then elasticsearch.

    :param Optional[EnforcementLevel] enforcement_level: The level given to every policy. Policies
           without one fall back to the registry's level.
    :param Optional[SecurityPolicySettings] settings: Thresholds for the security policies.
    """
    return [
        security_group(enforcement_level, settings),
        elasticsearch_group(enforcement_level),
    ]
