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
import os
import re
import sys
import time
from concurrent import futures
from inspect import signature
from typing import Any, Dict, List, Optional

import grpc
from google.protobuf import empty_pb2, json_format, struct_pb2
import pulumi.runtime
from pulumi.runtime import proto
from pulumi.runtime.proto import analyzer_pb2_grpc

from .aws import AwsProvider
from .deserialize import deserialize_properties
from .engine import EngineOptions, PolicyEngine, PolicyState, ValidationRun
from .enrichment import Provider
from .policy import EnforcementLevel, ResourceValidationPolicy, StackValidationPolicy
from .registry import PolicyConfig, PolicyGroup, PolicyRegistry, _normalize_config
from .resource import ResourceGraph, ResourceSnapshot
from .version import VERSION

logger = logging.getLogger(__name__)

_ONE_DAY_IN_SECONDS = 60 * 60 * 24

_POLICY_PACK_NAME_RE = re.compile("^[a-zA-Z0-9-_.]{1,100}$")

# _MAX_RPC_MESSAGE_SIZE raises the gRPC Max Message size from `4194304` (4mb) to `419430400` (400mb)
_MAX_RPC_MESSAGE_SIZE = 1024 * 1024 * 400
_GRPC_CHANNEL_OPTIONS = [("grpc.max_receive_message_length", _MAX_RPC_MESSAGE_SIZE)]


class PolicyPack:
    """
    A policy pack serves one or more policy groups to the Pulumi engine as an analyzer plugin.
    """

    def __init__(self,
                 name: str,
                 groups: List[PolicyGroup],
                 enforcement_level: Optional[EnforcementLevel] = None,
                 initial_config: Optional[PolicyConfig] = None,
                 provider: Optional[Provider] = None,
                 options: Optional[EngineOptions] = None) -> None:
        """
        :param str name: The name of the policy pack.
        :param List[PolicyGroup] groups: The policy groups in the pack.
        :param Optional[EnforcementLevel] enforcement_level: Indicates what to do on policy
               violation, e.g., block deployment but allow override with
               proper permissions. This is the default used for all policies in the policy pack.
               Individual policies can override.
        :param Optional[PolicyConfig] initial_config: Initial configuration for the policy pack.
        :param Optional[Provider] provider: Where policies look up data that isn't in the stack.
               Defaults to AWS, using the standard boto3 credential chain.
        :param Optional[EngineOptions] options: Engine limits. Defaults to `EngineOptions.from_env()`.
        """
        if not name:
            raise TypeError("Missing name argument")
        if not isinstance(name, str):
            raise TypeError("Expected name to be a string")
        if _POLICY_PACK_NAME_RE.match(name) is None:
            raise TypeError(f"Invalid policy pack name {name}. Policy pack names may only contain " +
                            "alphanumerics, hyphens, underscores, or periods.")
        if not groups:
            raise TypeError("Missing groups argument")
        if provider is not None and not isinstance(provider, Provider):
            raise TypeError("Expected provider to be a Provider")

        # Builds and validates the configuration, so a bad pack fails before the server starts.
        registry = PolicyRegistry(groups, enforcement_level, initial_config)

        if provider is None:
            provider = AwsProvider()

        # Python policy packs should specify a version in PulumiPolicy.yaml; the CLI will use the
        # version specified there. We always return "0.0.1" from here which will only be used if
        # there isn't a version in PulumiPolicy.yaml.
        version = "0.0.1"

        servicer = _PolicyAnalyzerServicer(
            name,
            version,
            registry,
            provider,
            options if options is not None else EngineOptions.from_env(),
            initial_config)
        server = grpc.server(
            futures.ThreadPoolExecutor(max_workers=4),  # pylint: disable=consider-using-with
            options=_GRPC_CHANNEL_OPTIONS
        )
        analyzer_pb2_grpc.add_AnalyzerServicer_to_server(
            servicer, server)
        port = server.add_insecure_port(address="127.0.0.1:0")
        server.start()
        logger.info("policy pack %s serving %d policies on port %d", name, len(registry), port)
        sys.stdout.buffer.write(f"{port}\n".encode())
        sys.stdout.flush()
        try:
            while True:
                time.sleep(_ONE_DAY_IN_SECONDS)
        except KeyboardInterrupt:
            server.stop(0)


class _PolicyAnalyzerServicer(proto.AnalyzerServicer):
    __policy_pack_name: str
    __policy_pack_version: str
    __base_registry: PolicyRegistry
    __registry: PolicyRegistry
    __provider: Optional[Provider]
    __options: Optional[EngineOptions]
    __initial_config: Optional[PolicyConfig]

    def Analyze(self, request, _context):
        self._configure_runtime_settings()

        graph = ResourceGraph([self._to_snapshot(request)])
        run = self._engine().run_sync(graph, ResourceValidationPolicy)
        return proto.AnalyzeResponse(diagnostics=self._to_diagnostics(run))

    def AnalyzeStack(self, request, _context):
        self._configure_runtime_settings()

        graph = ResourceGraph([self._to_snapshot(r) for r in request.resources])
        run = self._engine().run_sync(graph, StackValidationPolicy)
        return proto.AnalyzeResponse(diagnostics=self._to_diagnostics(run))

    def GetAnalyzerInfo(self, _request, _context):
        default_level = (self.__base_registry.enforcement_level
                         if self.__base_registry.enforcement_level is not None else EnforcementLevel.ADVISORY)

        policies: List[proto.PolicyInfo] = []
        for entry in self.__base_registry:
            policy = entry.policy
            enforcement_level = (policy.enforcement_level if policy.enforcement_level is not None
                                 else default_level)

            schema = {}
            if policy.config_schema is not None:
                if policy.config_schema.properties:
                    properties = struct_pb2.Struct()
                    for k, v in policy.config_schema.properties.items():
                        # pylint: disable=unsupported-assignment-operation
                        properties[k] = v
                    schema["properties"] = properties
                if policy.config_schema.required:
                    schema["required"] = policy.config_schema.required

            policies.append(proto.PolicyInfo(
                name=policy.name,
                description=policy.description,
                enforcementLevel=self._map_enforcement_level(enforcement_level),
                configSchema=proto.PolicyConfigSchema(**schema) if schema else None,
            ))

        initial_config = {}
        if self.__initial_config is not None:
            normalized_config = _normalize_config(self.__initial_config)
            for key, val in normalized_config.items():
                config = {}
                if val.enforcement_level is not None:
                    config["enforcementLevel"] = self._map_enforcement_level(val.enforcement_level)
                if val.properties:
                    properties = struct_pb2.Struct()
                    for k, v in val.properties.items():
                        # pylint: disable=unsupported-assignment-operation
                        properties[k] = v
                    config["properties"] = properties
                if config:
                    initial_config[key] = proto.PolicyConfig(**config)

        return proto.AnalyzerInfo(
            name=self.__policy_pack_name,
            version=self.__policy_pack_version,
            supportsConfig=True,
            policies=policies,
            initialConfig=initial_config,
        )

    def GetPluginInfo(self, _request, _context):
        return proto.PluginInfo(version=VERSION)

    def Configure(self, request, _context):
        config: Dict[str, Dict[str, Any]] = {}
        for k in request.policyConfig:
            v = request.policyConfig[k]
            values = json_format.MessageToDict(v.properties)
            values["enforcementLevel"] = self._convert_enforcement_level(v.enforcementLevel)
            config[k] = values
        self.__registry = self.__base_registry.reconfigure(config)
        return empty_pb2.Empty()

    def __init__(self,
                 name: str,
                 version: str,
                 registry: PolicyRegistry,
                 provider: Optional[Provider] = None,
                 options: Optional[EngineOptions] = None,
                 initial_config: Optional[PolicyConfig] = None) -> None:
        assert name and isinstance(name, str)
        assert version and isinstance(version, str)
        assert isinstance(registry, PolicyRegistry)
        self.__policy_pack_name = name
        self.__policy_pack_version = version
        self.__base_registry = registry
        self.__registry = registry
        self.__provider = provider
        self.__options = options
        self.__initial_config = initial_config

    def _engine(self) -> PolicyEngine:
        return PolicyEngine(self.__registry, self.__provider, self.__options)

    def _to_snapshot(self, request) -> ResourceSnapshot:
        props = deserialize_properties(json_format.MessageToDict(request.properties))
        resource_id = props.get("id")
        return ResourceSnapshot(
            request.type,
            resource_id if isinstance(resource_id, str) else None,
            props,
            request.urn,
            request.name)

    def _to_diagnostics(self, run: ValidationRun) -> List[proto.AnalyzeDiagnostic]:
        diagnostics: List[proto.AnalyzeDiagnostic] = []
        for result in run.results:
            for violation in result.violations:
                violation_message = result.description
                if violation.message:
                    violation_message += f"\n{violation.message}"
                diagnostics.append(self._diagnostic(result.name, result.description, violation_message,
                                                    result.enforcement_level, violation.urn))

            for unevaluated in result.unevaluated:
                diagnostics.append(self._diagnostic(result.name, result.description,
                                                    self._with_pack(unevaluated.message),
                                                    EnforcementLevel.ADVISORY, unevaluated.urn))

            if result.state == PolicyState.ERRORED:
                diagnostics.append(self._diagnostic(result.name, result.description,
                                                    self._with_pack(result.message or ""),
                                                    EnforcementLevel.MANDATORY))
            elif result.state == PolicyState.SKIPPED and result.message and not result.unevaluated:
                diagnostics.append(self._diagnostic(result.name, result.description,
                                                    self._with_pack(result.message),
                                                    EnforcementLevel.ADVISORY))
        return diagnostics

    def _with_pack(self, message: str) -> str:
        return f"{message} (policy pack '{self.__policy_pack_name}@v{self.__policy_pack_version}')"

    def _diagnostic(self,
                    policy_name: str,
                    description: str,
                    message: str,
                    enforcement_level: EnforcementLevel,
                    urn: Optional[str] = None) -> proto.AnalyzeDiagnostic:
        return proto.AnalyzeDiagnostic(
            policyName=policy_name,
            policyPackName=self.__policy_pack_name,
            policyPackVersion=self.__policy_pack_version,
            message=message,
            urn=urn if urn else "",
            description=description,
            enforcementLevel=self._map_enforcement_level(enforcement_level),
        )

    def _map_enforcement_level(self, enforcement_level: EnforcementLevel) -> proto.EnforcementLevel.ValueType:
        if enforcement_level == EnforcementLevel.ADVISORY:
            return proto.ADVISORY
        if enforcement_level == EnforcementLevel.MANDATORY:
            return proto.MANDATORY
        if enforcement_level == EnforcementLevel.DISABLED:
            return proto.DISABLED
        raise AssertionError(
            f"unknown enforcement level: {enforcement_level}")

    def _convert_enforcement_level(self, enforcement_level: int) -> EnforcementLevel:
        if enforcement_level == proto.ADVISORY:  # type: ignore
            return EnforcementLevel.ADVISORY
        if enforcement_level == proto.MANDATORY:  # type: ignore
            return EnforcementLevel.MANDATORY
        if enforcement_level == proto.REMEDIATE:  # type: ignore
            # Nothing here remediates, so a remediation request blocks like a mandatory policy.
            return EnforcementLevel.MANDATORY
        if enforcement_level == proto.DISABLED:  # type: ignore
            return EnforcementLevel.DISABLED
        raise AssertionError(
            f"unknown enforcement level: {enforcement_level}")

    def _configure_runtime_settings(self):
        # If any config variables are present, parse and set them, so subsequent accesses are fast.
        config_env = pulumi.runtime.get_config_env()
        for k, v in config_env.items():
            pulumi.runtime.set_config(k, v)

        # Configure the runtime so that the user program hooks up to Pulumi as appropriate.
        if (
            "PULUMI_PROJECT" in os.environ
            and "PULUMI_STACK" in os.environ
            and "PULUMI_DRY_RUN" in os.environ
        ):
            settings_args = {
                "project": os.environ["PULUMI_PROJECT"],
                "stack": os.environ["PULUMI_STACK"],
                "dry_run": os.environ["PULUMI_DRY_RUN"] == "true",
            }
            # Older versions of the Pulumi SDK don't support the organization arg,
            # so only set it if it's supported.
            settings_signature = signature(pulumi.runtime.Settings)
            if "organization" in settings_signature.parameters:
                # PULUMI_ORGANIZATION might not be set for filestate backends
                settings_args["organization"] = os.environ.get("PULUMI_ORGANIZATION", "organization")

            settings = pulumi.runtime.Settings(**settings_args)
            pulumi.runtime.configure(settings)
