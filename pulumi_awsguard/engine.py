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

import asyncio
import logging
import os
from enum import Enum
from inspect import isawaitable
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

from .enrichment import EnrichmentClient, Provider
from .errors import ConfigurationError, ExternalServiceError
from .policy import (
    EnforcementLevel,
    ReportViolation,
    ResourceValidationArgs,
    ResourceValidationPolicy,
    StackValidationArgs,
    StackValidationPolicy,
)
from .registry import PolicyRegistry, RegisteredPolicy
from .resource import ResourceGraph, TypedResource, UnknownValueError, filter_resources

logger = logging.getLogger(__name__)

# How long abandoned policies are given to unwind after being cancelled at the deadline.
_CANCEL_GRACE_SECONDS = 1.0


class EngineOptions(NamedTuple):
    """
    Limits that keep a validation run well-behaved against the provider.
    """

    max_concurrency: int = 4
    """
    The most policies that run at the same time.
    """

    timeout: Optional[float] = None
    """
    The deadline, in seconds, for the whole run. None means no deadline. Policies still running at
    the deadline are cancelled and given one more second to unwind before the run returns; a
    body that ignores cancellation is cancelled again when `run_sync` closes its event loop.
    """

    max_pages: int = 100
    """
    The most pages a single paginated listing may span.
    """

    max_attempts: int = 5
    """
    The most times a single provider request is attempted.
    """

    backoff: float = 0.5
    """
    The initial delay, in seconds, between attempts of a provider request.
    """

    max_backoff: float = 8.0
    """
    The upper bound on the delay between attempts.
    """

    def validated(self) -> 'EngineOptions':
        if self.max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.max_pages < 1:
            raise ConfigurationError(f"max_pages must be at least 1, got {self.max_pages}")
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff < 0 or self.max_backoff < 0:
            raise ConfigurationError("backoff and max_backoff must not be negative")
        return self

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> 'EngineOptions':
        """
        Reads options from `AWSGUARD_*` environment variables, using defaults for the ones not set.
        """
        env = environ if environ is not None else os.environ
        values: Dict[str, Any] = {}
        for field, var, parse in [("max_concurrency", "AWSGUARD_MAX_CONCURRENCY", int),
                                  ("timeout", "AWSGUARD_TIMEOUT", float),
                                  ("max_pages", "AWSGUARD_MAX_PAGES", int),
                                  ("max_attempts", "AWSGUARD_MAX_ATTEMPTS", int),
                                  ("backoff", "AWSGUARD_BACKOFF", float),
                                  ("max_backoff", "AWSGUARD_MAX_BACKOFF", float)]:
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[field] = parse(raw)
            except ValueError as e:
                raise ConfigurationError(f"invalid value {raw!r} for {var}") from e
        return EngineOptions(**values).validated()


class PolicyState(Enum):
    """
    Where a policy is in a validation run.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"
    SKIPPED = "skipped"


class RunOutcome(Enum):
    """
    The overall result of a validation run.
    """

    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed-with-warnings"
    FAILED = "failed"


class Violation(NamedTuple):
    """
    A reported compliance gap. `resource_id` is None for findings about the stack as a whole, or
    for resources that haven't been provisioned yet.
    """
    policy_name: str
    resource_id: Optional[str]
    message: str
    urn: Optional[str] = None


class Diagnostic(NamedTuple):
    """
    Why a policy could not be evaluated. Distinct from a `Violation`.
    """
    policy_name: str
    message: str


class Unevaluated(NamedTuple):
    """
    A resource a resource policy couldn't check because a value it read isn't known during preview.
    """
    policy_name: str
    resource_id: Optional[str]
    message: str
    urn: Optional[str] = None


class PolicyResult:
    """
    The terminal state of one policy in a run and the violations it reported, in report order.
    """

    def __init__(self, entry: RegisteredPolicy) -> None:
        self.entry = entry
        self.state = PolicyState.PENDING
        self.violations: List[Violation] = []
        self.unevaluated: List[Unevaluated] = []
        self.message: Optional[str] = None

    @property
    def name(self) -> str:
        return self.entry.policy.name

    @property
    def description(self) -> str:
        return self.entry.policy.description

    @property
    def enforcement_level(self) -> EnforcementLevel:
        return self.entry.enforcement_level

    def __repr__(self):
        return f"PolicyResult(name={self.name!r}, state={self.state.value}, violations={len(self.violations)})"


def resolve_outcome(results: List[PolicyResult]) -> RunOutcome:
    """
    A run fails if a mandatory policy reported a violation or any policy errored. Otherwise it
    passes with warnings if an advisory policy reported a violation.
    """
    warned = False
    for result in results:
        if result.state == PolicyState.ERRORED:
            return RunOutcome.FAILED
        if result.violations:
            if result.enforcement_level == EnforcementLevel.MANDATORY:
                return RunOutcome.FAILED
            if result.enforcement_level == EnforcementLevel.ADVISORY:
                warned = True
    return RunOutcome.PASSED_WITH_WARNINGS if warned else RunOutcome.PASSED


class ValidationRun:
    """
    The result of validating a stack: every policy's terminal state in registry order, the
    violations, the diagnostics of policies that couldn't be evaluated, and the overall outcome.
    """

    def __init__(self, results: List[PolicyResult]) -> None:
        self.results = results
        self.outcome = resolve_outcome(results)

    @property
    def violations(self) -> List[Violation]:
        return [v for r in self.results for v in r.violations]

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [Diagnostic(r.name, r.message or "") for r in self.results if r.state == PolicyState.ERRORED]

    @property
    def unevaluated(self) -> List[Unevaluated]:
        return [u for r in self.results for u in r.unevaluated]

    def get(self, name: str) -> Optional[PolicyResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None


class _ViolationSink:
    """
    Collects the violations of a single policy. Each policy has its own sink, so appends never race
    and report order is kept.
    """

    def __init__(self, result: PolicyResult, graph: ResourceGraph) -> None:
        self.__policy_name = result.name
        self.__graph = graph
        self.__violations = result.violations
        self.__unevaluated = result.unevaluated
        self.closed = False

    def report(self, message: str, resource_id: Optional[str] = None) -> None:
        _check_report_args(message, resource_id)
        snapshot = self.__graph.get(resource_id)
        self._append(Violation(self.__policy_name, resource_id, message or "",
                               snapshot.urn if snapshot is not None else None))

    def for_resource(self, resource: TypedResource) -> ReportViolation:
        def report_violation(message: str, resource_id: Optional[str] = None) -> None:
            # pylint: disable=unused-argument
            _check_report_args(message, resource_id)
            self._append(Violation(self.__policy_name, resource.id, message or "", resource.urn))
        return report_violation

    def skip(self, resource: TypedResource, error: UnknownValueError) -> None:
        if not self.closed:
            self.__unevaluated.append(Unevaluated(
                self.__policy_name, resource.id,
                f"can't run policy '{self.__policy_name}' during preview: {error.message}", resource.urn))

    def _append(self, violation: Violation) -> None:
        if not self.closed:
            self.__violations.append(violation)


def _cancel_leftover_tasks(loop: asyncio.AbstractEventLoop) -> None:
    leftover = [task for task in asyncio.all_tasks(loop) if not task.done()]
    if not leftover:
        return
    for task in leftover:
        task.cancel()
    loop.run_until_complete(asyncio.wait(leftover, timeout=_CANCEL_GRACE_SECONDS))
    for task in leftover:
        if not task.done():
            logger.warning("abandoning a policy task that ignored cancellation twice")


def _check_report_args(message: Any, resource_id: Any) -> None:
    if message and not isinstance(message, str):
        raise TypeError("Expected message to be a string")
    if resource_id is not None and not isinstance(resource_id, str):
        raise TypeError("Expected resource_id to be a string")


class PolicyEngine:
    """
    PolicyEngine validates stacks against a policy registry. Policies run concurrently, up to
    `max_concurrency` at a time; a policy that fails or runs past the deadline is recorded as
    errored without affecting the others.
    """

    def __init__(self,
                 registry: PolicyRegistry,
                 provider: Optional[Provider] = None,
                 options: Optional[EngineOptions] = None) -> None:
        """
        :param PolicyRegistry registry: The policies to run.
        :param Optional[Provider] provider: Where policies fetch data that isn't in the stack.
        :param Optional[EngineOptions] options: Concurrency, deadline, and retry limits.
        """
        if not isinstance(registry, PolicyRegistry):
            raise TypeError("Expected registry to be a PolicyRegistry")
        if options is not None and not isinstance(options, EngineOptions):
            raise TypeError("Expected options to be EngineOptions")
        self.__registry = registry
        self.__options = (options if options is not None else EngineOptions()).validated()
        self.__enrichment = EnrichmentClient(provider,
                                             max_pages=self.__options.max_pages,
                                             max_attempts=self.__options.max_attempts,
                                             backoff=self.__options.backoff,
                                             max_backoff=self.__options.max_backoff)

    @property
    def registry(self) -> PolicyRegistry:
        return self.__registry

    @property
    def options(self) -> EngineOptions:
        return self.__options

    def run_sync(self, graph: ResourceGraph, policy_type: Optional[type] = None) -> ValidationRun:
        """
        Runs `run` to completion on a new event loop.
        """
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self.run(graph, policy_type))
        finally:
            try:
                _cancel_leftover_tasks(loop)
            finally:
                loop.close()

    async def run(self, graph: ResourceGraph, policy_type: Optional[type] = None) -> ValidationRun:
        """
        Validates `graph` against every policy in the registry.

        :param ResourceGraph graph: The stack's resources.
        :param Optional[type] policy_type: When set, only policies of this class are run, e.g.
               `ResourceValidationPolicy`. The others are left out of the results.
        """
        if not isinstance(graph, ResourceGraph):
            raise TypeError("Expected graph to be a ResourceGraph")

        results = [PolicyResult(entry) for entry in self.__registry
                   if policy_type is None or isinstance(entry.policy, policy_type)]
        semaphore = asyncio.Semaphore(self.__options.max_concurrency)
        tasks: Dict[asyncio.Future, Tuple[PolicyResult, _ViolationSink]] = {}
        for result in results:
            if result.enforcement_level == EnforcementLevel.DISABLED:
                result.state = PolicyState.SKIPPED
                logger.debug("skipping disabled policy %s", result.name)
                continue
            sink = _ViolationSink(result, graph)
            tasks[asyncio.ensure_future(self._dispatch(result, sink, graph, semaphore))] = (result, sink)

        if tasks:
            _, pending = await asyncio.wait(list(tasks), timeout=self.__options.timeout)
            if pending:
                for task in pending:
                    tasks[task][1].closed = True
                    task.cancel()
                await asyncio.wait(pending, timeout=_CANCEL_GRACE_SECONDS)
                for task in pending:
                    if not task.done():
                        logger.warning("policy %s ignored cancellation", tasks[task][0].name)
                    result = tasks[task][0]
                    result.state = PolicyState.ERRORED
                    result.message = (f"policy '{result.name}' did not complete within "
                                      f"{self.__options.timeout} seconds")
                    logger.warning("policy %s timed out", result.name)

        run = ValidationRun(results)
        logger.info("validated %d resource(s) against %d policies: %s",
                    len(graph), len(results), run.outcome.value)
        return run

    async def _dispatch(self,
                        result: PolicyResult,
                        sink: _ViolationSink,
                        graph: ResourceGraph,
                        semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            result.state = PolicyState.RUNNING
            logger.debug("running policy %s", result.name)
            try:
                evaluated = await self._validate(result.entry, sink, graph)
            except UnknownValueError as e:
                result.state = PolicyState.SKIPPED
                result.message = f"can't run policy '{result.name}' during preview: {e.message}"
                logger.debug(result.message)
            except ExternalServiceError as e:
                result.state = PolicyState.ERRORED
                result.message = f"can't run policy '{result.name}': {e.message}"
                logger.warning(result.message)
            except Exception as e:  # pylint: disable=broad-except
                result.state = PolicyState.ERRORED
                result.message = f"policy '{result.name}' failed: {type(e).__name__}: {e}"
                logger.warning(result.message, exc_info=True)
            else:
                if not evaluated:
                    result.state = PolicyState.SKIPPED
                    result.message = result.unevaluated[0].message
                    logger.debug(result.message)
                    return
                result.state = PolicyState.COMPLETED
                logger.debug("policy %s completed with %d violation(s)", result.name, len(result.violations))

    async def _validate(self, entry: RegisteredPolicy, sink: _ViolationSink, graph: ResourceGraph) -> bool:
        """
        Runs the policy's body and returns False if it couldn't check any of the resources it applies
        to because of values that aren't known during preview.
        """
        policy = entry.policy
        resources = (filter_resources(graph, policy.resource_type) if policy.resource_type is not None
                     else [TypedResource(r) for r in graph])

        if isinstance(policy, ResourceValidationPolicy):
            # An unknown value only stops the check of the resource it belongs to.
            skipped = 0
            for resource in resources:
                args = ResourceValidationArgs(resource, self.__enrichment, dict(entry.config))
                try:
                    result = policy.validate(args, sink.for_resource(resource))
                    if isawaitable(result):
                        await result
                except UnknownValueError as e:
                    sink.skip(resource, e)
                    skipped += 1
            return not resources or skipped < len(resources)
        if isinstance(policy, StackValidationPolicy):
            args = StackValidationArgs(resources, self.__enrichment, dict(entry.config))
            result = policy.validate(args, sink.report)
            if isawaitable(result):
                await result
            return True
        raise TypeError(f"Unsupported policy type {type(policy).__name__}")
