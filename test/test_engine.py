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
import unittest

from pulumi_awsguard import (
    ConfigurationError,
    EnforcementLevel,
    EngineOptions,
    ExternalServiceError,
    PolicyConfigSchema,
    PolicyEngine,
    PolicyGroup,
    PolicyRegistry,
    PolicyState,
    ResourceGraph,
    ResourceValidationPolicy,
    RunOutcome,
    StackValidationPolicy,
    Violation,
)
from pulumi_awsguard.resource import UNKNOWN_BOOLEAN_VALUE

from fakes import FAST_OPTIONS, FakeProvider, validate

KEY = "aws:kms/key:Key"
BUCKET = "aws:s3/bucket:Bucket"

RECORDS = [
    {"type": KEY, "id": "k1", "urn": "urn:k1", "properties": {"enableKeyRotation": False}},
    {"type": BUCKET, "id": "b1", "urn": "urn:b1", "properties": {}},
    {"type": KEY, "id": "k2", "urn": "urn:k2", "properties": {"enableKeyRotation": True}},
]


def rotation_policy(name="rotation", enforcement_level=None):
    def check(args, report_violation):
        if not args.resource.enable_key_rotation:
            report_violation("rotation disabled")
    return ResourceValidationPolicy(name, "desc", check, enforcement_level, resource_type=KEY)


def failing_policy(name="failing", error=None):
    def check(args, report_violation):
        raise error if error is not None else RuntimeError("boom")
    return StackValidationPolicy(name, "desc", check)


class OutcomeTests(unittest.TestCase):
    def test_passed(self):
        run = validate([rotation_policy(enforcement_level=EnforcementLevel.MANDATORY)],
                       [{"type": KEY, "id": "k", "properties": {"enableKeyRotation": True}}])
        self.assertEqual(RunOutcome.PASSED, run.outcome)
        self.assertEqual([], run.violations)

    def test_advisory_violations_never_fail(self):
        run = validate([rotation_policy("a", EnforcementLevel.ADVISORY),
                        rotation_policy("b", EnforcementLevel.ADVISORY)], RECORDS)
        self.assertEqual(RunOutcome.PASSED_WITH_WARNINGS, run.outcome)
        self.assertEqual(2, len(run.violations))

    def test_mandatory_violation_fails(self):
        run = validate([rotation_policy("a", EnforcementLevel.ADVISORY),
                        rotation_policy("b", EnforcementLevel.MANDATORY)], RECORDS)
        self.assertEqual(RunOutcome.FAILED, run.outcome)

    def test_errored_policy_fails(self):
        run = validate([failing_policy()], RECORDS, enforcement_level=EnforcementLevel.ADVISORY)
        self.assertEqual(RunOutcome.FAILED, run.outcome)
        self.assertEqual(PolicyState.ERRORED, run.get("failing").state)

    def test_disabled_policies_are_skipped(self):
        calls = []
        def check(args, report_violation):
            calls.append(args)
            report_violation("never")
        policy = StackValidationPolicy("off", "desc", check, EnforcementLevel.DISABLED)
        run = validate([policy], RECORDS)
        self.assertEqual(PolicyState.SKIPPED, run.get("off").state)
        self.assertEqual([], calls)
        self.assertEqual(RunOutcome.PASSED, run.outcome)


class DispatchTests(unittest.TestCase):
    def test_resource_policies_run_once_per_matching_resource(self):
        seen = []
        def check(args, report_violation):
            seen.append(args.resource.id)
        run = validate([ResourceValidationPolicy("p", "desc", check, resource_type=KEY)], RECORDS)
        self.assertEqual(["k1", "k2"], seen)
        self.assertEqual(PolicyState.COMPLETED, run.get("p").state)

    def test_stack_policies_receive_the_filtered_set(self):
        seen = []
        def check(args, report_violation):
            seen.append([r.id for r in args.resources])
        validate([StackValidationPolicy("typed", "desc", check, resource_type=BUCKET),
                  StackValidationPolicy("untyped", "desc", check)], RECORDS)
        self.assertEqual([["b1"], ["k1", "b1", "k2"]], seen)

    def test_absent_type_completes_without_violations(self):
        def check(args, report_violation):
            report_violation("should not run")
        run = validate([ResourceValidationPolicy("p", "desc", check, resource_type="aws:ec2/instance:Instance")],
                       RECORDS)
        self.assertEqual(PolicyState.COMPLETED, run.get("p").state)
        self.assertEqual([], run.violations)

    def test_resource_violations_are_attached_to_the_resource(self):
        def check(args, report_violation):
            report_violation("bad", "some-other-id")
        run = validate([ResourceValidationPolicy("p", "desc", check, resource_type=KEY)], RECORDS)
        self.assertEqual([Violation("p", "k1", "bad", "urn:k1"), Violation("p", "k2", "bad", "urn:k2")],
                         run.violations)

    def test_stack_violations_look_up_urns(self):
        def check(args, report_violation):
            report_violation("about b1", "b1")
            report_violation("about the stack")
            report_violation("about something unknown", "x1")
        run = validate([StackValidationPolicy("p", "desc", check)], RECORDS)
        self.assertEqual([
            Violation("p", "b1", "about b1", "urn:b1"),
            Violation("p", None, "about the stack", None),
            Violation("p", "x1", "about something unknown", None),
        ], run.violations)

    def test_settings_are_passed_as_a_copy(self):
        seen = []
        def check(args, report_violation):
            seen.append(dict(args.get_config()))
            args.get_config()["maxAge"] = 0
        policy = ResourceValidationPolicy("p", "desc", check, config_schema=PolicyConfigSchema(
            {"maxAge": {"type": "integer", "default": 90}}), resource_type=KEY)
        validate([policy], RECORDS, config={"p": {"maxAge": 30}})
        self.assertEqual([{"maxAge": 30}, {"maxAge": 30}], seen)

    def test_policy_type_filter(self):
        run = validate([rotation_policy(), failing_policy()], RECORDS)
        self.assertEqual(["rotation", "failing"], [r.name for r in run.results])

        registry = PolicyRegistry([PolicyGroup("g", [rotation_policy(), failing_policy()])])
        engine = PolicyEngine(registry, None, FAST_OPTIONS)
        graph = ResourceGraph.from_records(RECORDS)
        self.assertEqual(["rotation"], [r.name for r in engine.run_sync(graph, ResourceValidationPolicy).results])
        self.assertEqual(["failing"], [r.name for r in engine.run_sync(graph, StackValidationPolicy).results])

    def test_init_raises(self):
        registry = PolicyRegistry([PolicyGroup("g", [rotation_policy()])])
        self.assertRaises(TypeError, lambda: PolicyEngine(None))
        self.assertRaises(TypeError, lambda: PolicyEngine(registry, object()))
        self.assertRaises(TypeError, lambda: PolicyEngine(registry, None, {"max_concurrency": 1}))
        self.assertRaises(ConfigurationError, lambda: PolicyEngine(registry, None, EngineOptions(max_concurrency=0)))
        self.assertRaises(TypeError, lambda: PolicyEngine(registry).run_sync(RECORDS))


class IsolationTests(unittest.TestCase):
    def test_failures_are_isolated(self):
        run = validate([rotation_policy("before"), failing_policy(), rotation_policy("after")], RECORDS)
        self.assertEqual(PolicyState.COMPLETED, run.get("before").state)
        self.assertEqual(PolicyState.ERRORED, run.get("failing").state)
        self.assertEqual(PolicyState.COMPLETED, run.get("after").state)
        self.assertEqual(["before", "after"], [v.policy_name for v in run.violations])
        self.assertEqual(1, len(run.diagnostics))
        self.assertEqual("failing", run.diagnostics[0].policy_name)
        self.assertIn("RuntimeError: boom", run.diagnostics[0].message)

    def test_violations_before_a_failure_are_kept(self):
        def check(args, report_violation):
            report_violation("first")
            raise ValueError("then failed")
        run = validate([StackValidationPolicy("p", "desc", check)], RECORDS)
        self.assertEqual(PolicyState.ERRORED, run.get("p").state)
        self.assertEqual(["first"], [v.message for v in run.violations])

    def test_external_service_errors(self):
        run = validate([failing_policy(error=ExternalServiceError("throttled", "acm:certificate", "arn"))], RECORDS)
        result = run.get("failing")
        self.assertEqual(PolicyState.ERRORED, result.state)
        self.assertEqual("can't run policy 'failing': throttled", result.message)

    def test_unknown_values_skip_the_policy(self):
        run = validate([rotation_policy(enforcement_level=EnforcementLevel.MANDATORY)],
                       [{"type": KEY, "id": "k", "properties": {"enableKeyRotation": UNKNOWN_BOOLEAN_VALUE}}])
        result = run.get("rotation")
        self.assertEqual(PolicyState.SKIPPED, result.state)
        self.assertIn("during preview", result.message)
        self.assertIn(".enableKeyRotation", result.message)
        self.assertEqual(RunOutcome.PASSED, run.outcome)
        self.assertEqual([], run.diagnostics)

    def test_unknown_values_only_skip_their_resource(self):
        run = validate([rotation_policy(enforcement_level=EnforcementLevel.MANDATORY)], [
            {"type": KEY, "id": "pending", "urn": "urn:pending",
             "properties": {"enableKeyRotation": UNKNOWN_BOOLEAN_VALUE}},
            {"type": KEY, "id": "off", "urn": "urn:off", "properties": {"enableKeyRotation": False}},
        ])
        result = run.get("rotation")
        self.assertEqual(PolicyState.COMPLETED, result.state)
        self.assertEqual(["off"], [v.resource_id for v in run.violations])
        self.assertEqual(RunOutcome.FAILED, run.outcome)
        self.assertEqual(1, len(run.unevaluated))
        unevaluated = run.unevaluated[0]
        self.assertEqual(("rotation", "pending", "urn:pending"),
                         (unevaluated.policy_name, unevaluated.resource_id, unevaluated.urn))
        self.assertIn(".enableKeyRotation", unevaluated.message)

    def test_invalid_reports_error_the_policy(self):
        def check(args, report_violation):
            report_violation(42)
        run = validate([StackValidationPolicy("p", "desc", check)], RECORDS)
        self.assertEqual(PolicyState.ERRORED, run.get("p").state)


class ConcurrencyTests(unittest.TestCase):
    def test_results_follow_registry_order(self):
        def sleeper(name, delay):
            async def check(args, report_violation):
                await asyncio.sleep(delay)
                report_violation(name)
            return StackValidationPolicy(name, "desc", check)

        run = validate([sleeper("slow", 0.05), sleeper("medium", 0.02), sleeper("fast", 0)], RECORDS)
        self.assertEqual(["slow", "medium", "fast"], [r.name for r in run.results])
        self.assertEqual(["slow", "medium", "fast"], [v.message for v in run.violations])

    def test_runs_are_deterministic(self):
        async def check(args, report_violation):
            for r in args.resources:
                await asyncio.sleep(0)
                report_violation(f"saw {r.id}", r.id)
        policies = [StackValidationPolicy(f"p{i}", "desc", check) for i in range(5)]
        first = validate(policies, RECORDS)
        second = validate(policies, RECORDS)
        self.assertEqual(first.violations, second.violations)
        self.assertEqual(first.outcome, second.outcome)

    def test_concurrency_is_bounded(self):
        active = []
        peak = []

        async def check(args, report_violation):
            active.append(1)
            peak.append(len(active))
            await asyncio.sleep(0.01)
            active.pop()

        policies = [StackValidationPolicy(f"p{i}", "desc", check) for i in range(6)]
        options = EngineOptions(max_concurrency=2, backoff=0, max_backoff=0)
        run = validate(policies, RECORDS, options=options)
        self.assertEqual(2, max(peak))
        self.assertTrue(all(r.state == PolicyState.COMPLETED for r in run.results))

    def test_deadline_abandons_slow_policies(self):
        async def slow(args, report_violation):
            report_violation("started")
            await asyncio.sleep(30)
            report_violation("finished")

        async def fast(args, report_violation):
            report_violation("fast")

        options = EngineOptions(timeout=0.2, backoff=0, max_backoff=0)
        run = validate([StackValidationPolicy("slow", "desc", slow), StackValidationPolicy("fast", "desc", fast)],
                       RECORDS, options=options)
        self.assertEqual(PolicyState.ERRORED, run.get("slow").state)
        self.assertIn("did not complete within 0.2 seconds", run.get("slow").message)
        self.assertEqual(PolicyState.COMPLETED, run.get("fast").state)
        self.assertEqual(RunOutcome.FAILED, run.outcome)
        self.assertEqual(["started", "fast"], [v.message for v in run.violations])

    def test_bodies_that_ignore_cancellation_are_cancelled_again(self):
        events = []

        async def stubborn(args, report_violation):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                events.append("cancelled")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                events.append("cancelled again")
                raise
            report_violation("late")

        options = EngineOptions(timeout=0.1, backoff=0, max_backoff=0)
        run = validate([StackValidationPolicy("stubborn", "desc", stubborn)], RECORDS, options=options)
        self.assertEqual(PolicyState.ERRORED, run.get("stubborn").state)
        self.assertEqual([], run.violations)
        self.assertEqual(["cancelled", "cancelled again"], events)

    def test_retries_are_isolated_to_the_policy(self):
        async def lookup(args, report_violation):
            for r in args.resources:
                await args.enrichment.describe("acm:certificate", r.id)

        provider = FakeProvider(failures={("acm:certificate", "k1"): 10})
        options = EngineOptions(max_attempts=2, backoff=0, max_backoff=0)
        run = validate([StackValidationPolicy("lookup", "desc", lookup, resource_type=KEY), rotation_policy()],
                       RECORDS, provider=provider, options=options)
        self.assertEqual(PolicyState.ERRORED, run.get("lookup").state)
        self.assertIn("failed after 2 attempt(s)", run.get("lookup").message)
        self.assertEqual(PolicyState.COMPLETED, run.get("rotation").state)


class EngineOptionsTests(unittest.TestCase):
    def test_defaults(self):
        options = EngineOptions.from_env({})
        self.assertEqual(EngineOptions(), options)
        self.assertEqual(4, options.max_concurrency)
        self.assertIsNone(options.timeout)

    def test_from_env(self):
        options = EngineOptions.from_env({
            "AWSGUARD_MAX_CONCURRENCY": "8",
            "AWSGUARD_TIMEOUT": "30",
            "AWSGUARD_MAX_PAGES": "",
            "AWSGUARD_MAX_ATTEMPTS": "3",
        })
        self.assertEqual(8, options.max_concurrency)
        self.assertEqual(30.0, options.timeout)
        self.assertEqual(100, options.max_pages)
        self.assertEqual(3, options.max_attempts)

    def test_invalid_options_raise(self):
        self.assertRaises(ConfigurationError, lambda: EngineOptions.from_env({"AWSGUARD_MAX_CONCURRENCY": "many"}))
        self.assertRaises(ConfigurationError, lambda: EngineOptions.from_env({"AWSGUARD_TIMEOUT": "-1"}))
        self.assertRaises(ConfigurationError, lambda: EngineOptions(max_pages=0).validated())
        self.assertRaises(ConfigurationError, lambda: EngineOptions(max_attempts=0).validated())
        self.assertRaises(ConfigurationError, lambda: EngineOptions(backoff=-1).validated())
