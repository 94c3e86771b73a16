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

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .aws import ACM_CERTIFICATE, IAM_ACCESS_KEYS, IAM_MFA_DEVICES
from .enrichment import correlate
from .errors import ConfigurationError
from .policy import (
    EnforcementLevel,
    Policy,
    PolicyConfigSchema,
    ReportViolation,
    ResourceValidationArgs,
    ResourceValidationPolicy,
    StackValidationArgs,
    StackValidationPolicy,
)
from .registry import PolicyGroup
from .resource import TypedResource, UnknownValueError

ACM_CERTIFICATE_TYPE = "aws:acm/certificate:Certificate"
KMS_KEY_TYPE = "aws:kms/key:Key"
IAM_ACCESS_KEY_TYPE = "aws:iam/accessKey:AccessKey"
IAM_USER_LOGIN_PROFILE_TYPE = "aws:iam/userLoginProfile:UserLoginProfile"

_SECONDS_IN_DAY = 24 * 60 * 60

# Day-count settings must fall within [1, 2 years].
_MIN_DAYS = 1
_MAX_DAYS = 2 * 365


class SecurityPolicySettings(NamedTuple):
    """
    Settings for the security policies that can be configured individually. Settings that aren't
    given fall back to the defaults below.
    """

    acm_check_certificate_expiration_max_days: Optional[int] = None
    """
    For the acm-certificate-expiration policy: the fewest days a certificate may have left before
    it expires. Defaults to 14.
    """

    iam_access_keys_rotated_max_days: Optional[int] = None
    """
    For the access-keys-rotated policy: the oldest, in days, an IAM access key can be before it
    must be rotated. Defaults to 90.
    """


def get_policies(enforcement_level: Optional[EnforcementLevel] = None,
                 settings: Optional[SecurityPolicySettings] = None) -> List[Policy]:
    """
    Returns all security policies.
    """
    settings = settings if settings is not None else SecurityPolicySettings()
    return [
        acm_certificate_expiration(enforcement_level,
                                   _value_or_default(settings.acm_check_certificate_expiration_max_days, 14)),
        cmk_backing_key_rotation_enabled(enforcement_level),
        access_keys_rotated(enforcement_level,
                            _value_or_default(settings.iam_access_keys_rotated_max_days, 90)),
        mfa_enabled_for_iam_console_access(enforcement_level),
    ]


def security_group(enforcement_level: Optional[EnforcementLevel] = None,
                   settings: Optional[SecurityPolicySettings] = None) -> PolicyGroup:
    return PolicyGroup("security", get_policies(enforcement_level, settings))


def acm_certificate_expiration(enforcement_level: Optional[EnforcementLevel] = None,
                               max_days_until_expiration: int = 14) -> StackValidationPolicy:
    schema = PolicyConfigSchema({
        "maxDaysUntilExpiration": _days_setting("maxDaysUntilExpiration", max_days_until_expiration),
    })

    async def validate(args: StackValidationArgs, report_violation: ReportViolation):
        max_days = args.get_config()["maxDaysUntilExpiration"]
        now = _now()
        for cert in args.resources:
            if cert.id is None:
                continue
            # The certificate's expiration date isn't in the stack, so ask ACM for it.
            description = await args.enrichment.describe(ACM_CERTIFICATE, cert.id)
            not_after = description.get("NotAfter") if description else None
            if not_after is None:
                continue
            days_until_expiry = _days_between(_to_datetime(not_after), now)
            if days_until_expiry < max_days:
                report_violation(f"certificate expires in {days_until_expiry} days "
                                 f"(max allowed {max_days} days)", cert.id)

    return StackValidationPolicy(
        name="acm-certificate-expiration",
        description="Checks whether an ACM certificate has expired. Certificates provided by ACM are " +
                    "automatically renewed. ACM does not automatically renew certificates that you import.",
        enforcement_level=enforcement_level,
        validate=validate,
        config_schema=schema,
        resource_type=ACM_CERTIFICATE_TYPE,
    )


def cmk_backing_key_rotation_enabled(enforcement_level: Optional[EnforcementLevel] = None) -> ResourceValidationPolicy:
    def validate(args: ResourceValidationArgs, report_violation: ReportViolation):
        if not args.resource.enable_key_rotation:
            report_violation("CMK does not have the key rotation setting enabled")

    return ResourceValidationPolicy(
        name="cmk-backing-key-rotation-enabled",
        description="Checks that key rotation is enabled for each customer master key (CMK). Does not " +
                    "apply to CMKs that have imported key material.",
        enforcement_level=enforcement_level,
        validate=validate,
        resource_type=KMS_KEY_TYPE,
    )


def access_keys_rotated(enforcement_level: Optional[EnforcementLevel] = None,
                        max_key_age: int = 90) -> StackValidationPolicy:
    schema = PolicyConfigSchema({
        "maxKeyAge": _days_setting("maxKeyAge", max_key_age),
    })

    async def validate(args: StackValidationArgs, report_violation: ReportViolation):
        max_age = args.get_config()["maxKeyAge"]

        # Skip any access keys that haven't yet been provisioned or whose status is inactive.
        by_user: Dict[str, List[TypedResource]] = {}
        for key in args.resources:
            if key.id is None:
                continue
            try:
                status, user = key.status, key.user
            except UnknownValueError:
                # Checked on the update that creates it.
                continue
            if status != "Active" or not user:
                continue
            by_user.setdefault(user, []).append(key)

        now = _now()
        for user, keys in by_user.items():
            # The key's creation date isn't in the stack; it's listed with the user's other keys.
            metadata = await args.enrichment.fetch_all(IAM_ACCESS_KEYS, user)
            for key, access_key in correlate(metadata, keys, "AccessKeyId"):
                created = access_key.get("CreateDate")
                if created is None:
                    continue
                days_since_created = _days_between(now, _to_datetime(created))
                if days_since_created > max_age:
                    report_violation(f"access key must be rotated within {max_age} days "
                                     f"(key is {days_since_created} days old)", key.id)

    return StackValidationPolicy(
        name="access-keys-rotated",
        description="Checks whether an access key have been rotated within maxKeyAge days.",
        enforcement_level=enforcement_level,
        validate=validate,
        config_schema=schema,
        resource_type=IAM_ACCESS_KEY_TYPE,
    )


def mfa_enabled_for_iam_console_access(enforcement_level: Optional[EnforcementLevel] = None) -> ResourceValidationPolicy:
    async def validate(args: ResourceValidationArgs, report_violation: ReportViolation):
        user = args.resource.user
        if not user:
            return
        # Only the first page is needed to know whether there is at least one device.
        page = await args.enrichment.fetch_page(IAM_MFA_DEVICES, user)
        if not page.items:
            report_violation(f"no MFA device enabled for IAM User '{user}'")

    return ResourceValidationPolicy(
        name="mfa-enabled-for-iam-console-access",
        description="Checks whether multi-factor Authentication (MFA) is enabled for an IAM user that " +
                    "use a console password.",
        enforcement_level=enforcement_level,
        validate=validate,
        resource_type=IAM_USER_LOGIN_PROFILE_TYPE,
    )


def _days_setting(name: str, default: Any) -> Dict[str, Any]:
    if (isinstance(default, bool) or not isinstance(default, int) or
            not _MIN_DAYS <= default <= _MAX_DAYS):
        raise ConfigurationError(f"invalid {name} {default!r}; must be a whole number of days "
                                 f"within [{_MIN_DAYS}, {_MAX_DAYS}]")
    return {"type": "integer", "minimum": _MIN_DAYS, "maximum": _MAX_DAYS, "default": default}


def _value_or_default(value: Optional[int], default: int) -> int:
    return value if value is not None else default


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_datetime(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _days_between(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / _SECONDS_IN_DAY)
