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

from abc import ABC
from enum import Enum
from inspect import isawaitable
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union, cast

from .enrichment import EnrichmentClient
from .errors import ConfigurationError
from .resource import PropertyMap, TypedResource


class EnforcementLevel(Enum):
    """
    Indicates the impact of a policy violation.
    """

    ADVISORY = "advisory"
    MANDATORY = "mandatory"
    DISABLED = "disabled"


def to_enforcement_level(value: Union[EnforcementLevel, str]) -> EnforcementLevel:
    """
    Accepts an `EnforcementLevel` or its string value (e.g. "mandatory").
    """
    if isinstance(value, EnforcementLevel):
        return value
    if isinstance(value, str):
        try:
            return EnforcementLevel(value.lower())
        except ValueError:
            pass
    raise ConfigurationError(f"invalid enforcement level {value!r}; expected one of " +
                             ", ".join(level.value for level in EnforcementLevel))


_JSON_TYPES: Dict[str, Callable[[Any], bool]] = {
    "integer": lambda v: (isinstance(v, int) and not isinstance(v, bool)) or
                         (isinstance(v, float) and v.is_integer()),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "string": lambda v: isinstance(v, str),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


class PolicyConfigSchema:
    """
    Represents the configuration schema for a policy: every setting the policy understands, with its
    type, default, and valid range, written as JSON schema properties.
    """

    properties: Dict[str, Dict[str, Any]]
    """
    The policy's configuration properties.
    """

    required: Optional[List[str]]
    """
    The configuration properties that are required.
    """

    def __init__(self,
                 properties: Dict[str, Dict[str, Any]],
                 required: Optional[List[str]] = None) -> None:
        """
        :param Dict[str, Dict[str, Any]] properties: The policy's configuration properties.
        :param Optional[List[str]] required: The configuration properties that are required.
        """
        if not isinstance(properties, dict):
            raise TypeError("Expected properties to be a dict")
        if "enforcementLevel" in properties:
            raise TypeError("enforcementLevel cannot be explicitly specified in properties")
        for k, v in properties.items():
            if not isinstance(k, str):
                raise TypeError("Expected properties key to be a string")
            if not isinstance(v, dict):
                raise TypeError(f"Expected properties['{k}'] to be a dict")
            if "type" in v and v["type"] not in _JSON_TYPES:
                raise TypeError(f"Unsupported type {v['type']!r} for properties['{k}']")
            if "default" in v:
                try:
                    _check_setting(k, v, v["default"])
                except ConfigurationError as e:
                    raise TypeError(f"Invalid default for properties['{k}']: {e}") from e
        if required is not None:
            if not isinstance(required, list):
                raise TypeError("Expected required to be a list of strings")
            for r in required:
                if not isinstance(r, str):
                    raise TypeError("Expected required to be a list of strings")
                if r == "enforcementLevel":
                    raise TypeError('"enforcementLevel" cannot be specified in required')
        self.properties = properties
        self.required = required

    def resolve(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Merges `overrides` over the declared defaults and validates the result. Settings that are
        neither overridden nor defaulted are left out. Raises `ConfigurationError` for unknown
        settings, values of the wrong type or outside their range, and missing required settings.
        """
        overrides = overrides if overrides is not None else {}
        for k in overrides:
            if k not in self.properties:
                raise ConfigurationError(f"unknown setting '{k}'")

        config: Dict[str, Any] = {}
        for k, field in self.properties.items():
            if k in overrides:
                config[k] = _check_setting(k, field, overrides[k])
            elif "default" in field:
                config[k] = _check_setting(k, field, field["default"])

        for r in self.required or []:
            if r not in config:
                raise ConfigurationError(f"missing required setting '{r}'")
        return config


def _check_setting(key: str, field: Dict[str, Any], value: Any) -> Any:
    expected = field.get("type")
    if expected is not None and not _JSON_TYPES[expected](value):
        raise ConfigurationError(f"setting '{key}' must be of type {expected}, got {value!r}")
    if expected == "integer":
        value = int(value)
    if "enum" in field and value not in field["enum"]:
        raise ConfigurationError(f"setting '{key}' must be one of {field['enum']!r}, got {value!r}")
    if "const" in field and value != field["const"]:
        raise ConfigurationError(f"setting '{key}' must be {field['const']!r}, got {value!r}")
    minimum, maximum = field.get("minimum"), field.get("maximum")
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        bounds = f"[{minimum if minimum is not None else '-inf'}, {maximum if maximum is not None else 'inf'}]"
        raise ConfigurationError(f"setting '{key}' must be within {bounds}, got {value!r}")
    return value


class Policy(ABC):
    """
    A named compliance rule plus the metadata used to report it when it's violated.
    """

    name: str
    """
    An ID for the policy. Must be unique within the current policy set.
    """

    description: str
    """
    A brief description of the policy rule. e.g., "S3 buckets should have default encryption
    enabled."
    """

    enforcement_level: Optional[EnforcementLevel]
    """
    Indicates what to do on policy violation, e.g., block deployment but allow override with
    proper permissions.
    """

    config_schema: Optional[PolicyConfigSchema]
    """
    This policy's configuration schema.
    """

    resource_type: Optional[str]
    """
    The type token of the resources the policy applies to. None means every resource.
    """

    def __init__(self,
                 name: str,
                 description: str,
                 enforcement_level: Optional[EnforcementLevel] = None,
                 config_schema: Optional[PolicyConfigSchema] = None,
                 resource_type: Optional[str] = None) -> None:
        """
        :param str name: An ID for the policy. Must be unique within the current policy set.
        :param str description: A brief description of the policy rule.
        :param Optional[EnforcementLevel] enforcement_level: Indicates what to do on policy violation.
        :param Optional[PolicyConfigSchema] config_schema: This policy's configuration schema.
        :param Optional[str] resource_type: The type token of the resources to validate.
        """
        if not name:
            raise TypeError("Missing name argument")
        if not isinstance(name, str):
            raise TypeError("Expected name to be a string")
        if name == "all":
            raise TypeError(
                'Invalid policy name "all"; "all" is a reserved name')
        if not description:
            raise TypeError("Missing description argument")
        if not isinstance(description, str):
            raise TypeError("Expected description to be a string")
        if enforcement_level is not None and not isinstance(enforcement_level, EnforcementLevel):
            raise TypeError(
                "Expected enforcement_level to be an EnforcementLevel")
        if config_schema is not None and not isinstance(config_schema, PolicyConfigSchema):
            raise TypeError(
                "Expected config_schema to be a PolicyConfigSchema")
        if resource_type is not None and (not resource_type or not isinstance(resource_type, str)):
            raise TypeError("Expected resource_type to be a non-empty string")
        self.name = name
        self.description = description
        self.enforcement_level = enforcement_level
        self.config_schema = config_schema
        self.resource_type = resource_type

    def resolve_config(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Returns the policy's settings with `overrides` applied, raising `ConfigurationError` naming
        this policy if they aren't valid.
        """
        if self.config_schema is None:
            if overrides:
                raise ConfigurationError(f"policy '{self.name}' does not accept settings, got "
                                         + ", ".join(sorted(overrides)))
            return {}
        try:
            return self.config_schema.resolve(overrides)
        except ConfigurationError as e:
            raise ConfigurationError(f"policy '{self.name}': {e}") from e


ReportViolation = Callable[..., None]
"""
ReportViolation is the callback signature used to report policy violations: `(message,
resource_id=None)`. The first param is the violation message and the second is an optional ID of
the resource to associate with the violation.
"""


class ResourceValidationArgs:
    """
    ResourceValidationArgs is the argument bag passed to a resource validation.
    """

    resource: TypedResource
    """
    The resource being validated.
    """

    enrichment: EnrichmentClient
    """
    Client for looking up data about the resource that isn't in the stack.
    """

    __config: Mapping[str, Any]
    """
    Private field holding the configuration for this policy.
    """

    def get_config(self) -> Mapping[str, Any]:
        """
        Returns configuration for the policy.
        """
        return self.__config

    @property
    def resource_type(self) -> str:
        return self.resource.resource_type

    @property
    def props(self) -> PropertyMap:
        return self.resource.props

    @property
    def urn(self) -> Optional[str]:
        return self.resource.urn

    @property
    def name(self) -> Optional[str]:
        return self.resource.name

    def __init__(self,
                 resource: TypedResource,
                 enrichment: EnrichmentClient,
                 config: Optional[Mapping[str, Any]] = None) -> None:
        self.resource = resource
        self.enrichment = enrichment
        self.__config = config if config is not None else {}


ResourceValidation = Callable[[ResourceValidationArgs, ReportViolation], Optional[Awaitable]]
"""
ResourceValidation is the callback signature for a `ResourceValidationPolicy`. It is called once
for every resource of the policy's type and is passed `args` describing the resource and a
`ReportViolation` callback, which can be called multiple times. The `resource_id` argument of
`ReportViolation` is ignored when validating resources: the resource being validated is always
used.
"""


class ResourceValidationPolicy(Policy):
    """
    ResourceValidationPolicy is a policy that validates resources one at a time.
    """

    __validate: Optional[Union[ResourceValidation, List[ResourceValidation]]]
    """
    Private field holding the validation callback(s).
    """

    def validate(self, args: ResourceValidationArgs, report_violation: ReportViolation) -> Optional[Awaitable]:
        if not self.__validate:
            raise NotImplementedError(f'`validate` must be overridden by policy "{self.name}"'
                                      + ' since `validate` was not specified')

        validations = (self.__validate if isinstance(self.__validate, list)
                       else [self.__validate])

        awaitable_results: List[Awaitable] = []
        for validation in validations:
            result = validation(args, report_violation)
            if result is not None and isawaitable(result):
                awaitable_results.append(cast(Awaitable, result))

        async def await_all():
            for result in awaitable_results:
                await result

        if awaitable_results:
            return await_all()

        return None

    def __init__(self,
                 name: str,
                 description: str,
                 validate: Optional[Union[ResourceValidation, List[ResourceValidation]]] = None,
                 enforcement_level: Optional[EnforcementLevel] = None,
                 config_schema: Optional[PolicyConfigSchema] = None,
                 resource_type: Optional[str] = None) -> None:
        """
        :param str name: An ID for the policy. Must be unique within the current policy set.
        :param str description: A brief description of the policy rule.
        :param Optional[Union[ResourceValidation, List[ResourceValidation]]] validate: A callback
               function that validates a resource, or several, which are called in order.
        :param Optional[EnforcementLevel] enforcement_level: Indicates what to do on policy violation.
        :param Optional[PolicyConfigSchema] config_schema: This policy's configuration schema.
        :param Optional[str] resource_type: Only resources with this type token are validated.
        """
        super().__init__(name, description, enforcement_level, config_schema, resource_type)

        # If this instance isn't a subclass, then validate must be specified.
        not_subclassed = type(self) is ResourceValidationPolicy # pylint: disable=unidiomatic-typecheck
        if not_subclassed and not validate:
            raise TypeError("Missing validate argument")

        if validate:
            if not callable(validate) and not isinstance(validate, list):
                raise TypeError("Expected validate to be callable or a list of callables")
            if isinstance(validate, list) and any(not callable(v) for v in validate):
                raise TypeError("Expected validate to be callable or a list of callables")

        self.__validate = validate # type: ignore


class StackValidationArgs:
    """
    StackValidationArgs is the argument bag passed to a stack validation.
    """

    resources: List[TypedResource]
    """
    The resources in the stack, narrowed to the policy's resource type when it has one.
    """

    enrichment: EnrichmentClient
    """
    Client for looking up data about the resources that isn't in the stack.
    """

    __config: Mapping[str, Any]
    """
    Private field holding the configuration for this policy.
    """

    def get_config(self) -> Mapping[str, Any]:
        """
        Returns configuration for the policy.
        """
        return self.__config

    def __init__(self,
                 resources: List[TypedResource],
                 enrichment: EnrichmentClient,
                 config: Optional[Mapping[str, Any]] = None) -> None:
        self.resources = resources
        self.enrichment = enrichment
        self.__config = config if config is not None else {}


StackValidation = Callable[[StackValidationArgs, ReportViolation], Optional[Awaitable]]
"""
StackValidation is the callback signature for a `StackValidationPolicy`. A stack validation is passed
`args` with the stack's resources and a `report_violation` callback that can be called multiple
times. `report_violation` must be passed a message about the violation, and an optional ID of the
resource in violation. Not specifying an ID indicates the overall stack is in violation.
"""


class StackValidationPolicy(Policy):
    """
    StackValidationPolicy is a policy that validates the stack's resources all at once.
    """

    __validate: Optional[StackValidation]
    """
    Private field holding the validation callback.
    """

    def validate(self, args: StackValidationArgs, report_violation: ReportViolation) -> Optional[Awaitable]:
        if not self.__validate:
            raise NotImplementedError(f'`validate` must be overridden by policy "{self.name}"'
                                      + ' since `validate` was not specified')

        result = self.__validate(args, report_violation)
        if result is not None and isawaitable(result):
            return cast(Awaitable, result)

        return None

    def __init__(self,
                 name: str,
                 description: str,
                 validate: Optional[StackValidation] = None,
                 enforcement_level: Optional[EnforcementLevel] = None,
                 config_schema: Optional[PolicyConfigSchema] = None,
                 resource_type: Optional[str] = None) -> None:
        """
        :param str name: An ID for the policy. Must be unique within the current policy set.
        :param str description: A brief description of the policy rule.
        :param Optional[StackValidation] validate: A callback function that validates the stack.
        :param Optional[EnforcementLevel] enforcement_level: Indicates what to do on policy violation.
        :param Optional[PolicyConfigSchema] config_schema: This policy's configuration schema.
        :param Optional[str] resource_type: When set, `args.resources` only holds resources with
               this type token.
        """
        super().__init__(name, description, enforcement_level, config_schema, resource_type)

        # If this instance isn't a subclass, then validate must be specified.
        not_subclassed = type(self) is StackValidationPolicy # pylint: disable=unidiomatic-typecheck
        if not_subclassed and not validate:
            raise TypeError("Missing validate argument")

        if validate:
            if not callable(validate):
                raise TypeError("Expected validate to be callable")

        self.__validate = validate # type: ignore
