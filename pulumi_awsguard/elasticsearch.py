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

from .policy import (
    EnforcementLevel,
    Policy,
    ReportViolation,
    ResourceValidationArgs,
    ResourceValidationPolicy,
)
from .registry import PolicyGroup

ELASTICSEARCH_DOMAIN_TYPE = "aws:elasticsearch/domain:Domain"


def get_policies(enforcement_level: Optional[EnforcementLevel] = None) -> List[Policy]:
    """
    Returns all Elasticsearch policies.
    """
    return [
        elasticsearch_encrypted_at_rest(enforcement_level),
        elasticsearch_in_vpc_only(enforcement_level),
    ]


def elasticsearch_group(enforcement_level: Optional[EnforcementLevel] = None) -> PolicyGroup:
    return PolicyGroup("elasticsearch", get_policies(enforcement_level))


def elasticsearch_encrypted_at_rest(enforcement_level: Optional[EnforcementLevel] = None) -> ResourceValidationPolicy:
    def validate(args: ResourceValidationArgs, report_violation: ReportViolation):
        domain = args.resource
        encrypt_at_rest = domain.encrypt_at_rest
        if not encrypt_at_rest or not encrypt_at_rest.get("enabled"):
            label = domain.domain_name or domain.name or domain.urn
            if label:
                report_violation(f"Elasticsearch domain {label} must be encrypted at rest.")
            else:
                report_violation("Elasticsearch domain must be encrypted at rest.")

    return ResourceValidationPolicy(
        name="elasticsearch-encrypted-at-rest",
        description="Checks that AWS Elasticsearch domains are encrypted at rest.",
        enforcement_level=enforcement_level,
        validate=validate,
        resource_type=ELASTICSEARCH_DOMAIN_TYPE,
    )


def elasticsearch_in_vpc_only(enforcement_level: Optional[EnforcementLevel] = None) -> ResourceValidationPolicy:
    def validate(args: ResourceValidationArgs, report_violation: ReportViolation):
        # An empty vpcOptions still places the domain in a VPC.
        if args.resource.vpc_options is None:
            report_violation("must run within a VPC.")

    return ResourceValidationPolicy(
        name="elasticsearch-in-vpc-only",
        description="Checks that AWS Elasticsearch domains are running within a VPC.",
        enforcement_level=enforcement_level,
        validate=validate,
        resource_type=ELASTICSEARCH_DOMAIN_TYPE,
    )
