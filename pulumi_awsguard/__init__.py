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

"""
AWSGuard: compliance policies for AWS infrastructure managed with Pulumi.
"""

from .errors import (
    ConfigurationError,
    ExternalServiceError,
    TransientProviderError,
)

from .resource import (
    ResourceGraph,
    ResourceSnapshot,
    TypedResource,
    UnknownValueError,
    filter_resources,
)

from .enrichment import (
    EnrichmentClient,
    Page,
    Provider,
    correlate,
)

from .policy import (
    EnforcementLevel,
    Policy,
    PolicyConfigSchema,
    ReportViolation,
    ResourceValidation,
    ResourceValidationArgs,
    ResourceValidationPolicy,
    StackValidation,
    StackValidationArgs,
    StackValidationPolicy,
)

from .registry import (
    PolicyConfig,
    PolicyGroup,
    PolicyRegistry,
    RegisteredPolicy,
)

from .engine import (
    Diagnostic,
    EngineOptions,
    PolicyEngine,
    PolicyResult,
    PolicyState,
    RunOutcome,
    Unevaluated,
    ValidationRun,
    Violation,
    resolve_outcome,
)

from .security import SecurityPolicySettings, security_group
from .elasticsearch import elasticsearch_group
from .groups import default_groups

from .server import PolicyPack
