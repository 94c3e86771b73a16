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

import unittest

from pulumi_awsguard import (
    EnrichmentClient,
    ExternalServiceError,
    Page,
    Provider,
    ResourceGraph,
    TransientProviderError,
    correlate,
)

from fakes import EndlessProvider, FakeProvider, run

KEYS = "iam:access-keys"
CERT = "acm:certificate"


def client(provider, **kwargs):
    kwargs.setdefault("backoff", 0)
    kwargs.setdefault("max_backoff", 0)
    return EnrichmentClient(provider, **kwargs)


class FetchTests(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider(listings={
            (KEYS, "alice"): [[1, 2], [3], [4, 5]],
            (KEYS, "bob"): [[]],
        })

    def test_fetch_page_follows_cursors(self):
        c = client(self.provider)
        first = run(c.fetch_page(KEYS, "alice"))
        self.assertEqual(Page([1, 2], "1"), first)
        second = run(c.fetch_page(KEYS, "alice", first.next_cursor))
        self.assertEqual(Page([3], "2"), second)
        last = run(c.fetch_page(KEYS, "alice", second.next_cursor))
        self.assertEqual(Page([4, 5], None), last)

    def test_refetching_a_cursor_returns_the_same_page(self):
        c = client(self.provider)
        self.assertEqual(run(c.fetch_page(KEYS, "alice", "1")), run(c.fetch_page(KEYS, "alice", "1")))

    def test_fetch_all_concatenates_every_page(self):
        self.assertEqual([1, 2, 3, 4, 5], run(client(self.provider).fetch_all(KEYS, "alice")))
        self.assertEqual([], run(client(self.provider).fetch_all(KEYS, "bob")))

    def test_fetch_all_is_bounded(self):
        with self.assertRaises(ExternalServiceError) as cm:
            run(client(EndlessProvider(), max_pages=3).fetch_all(KEYS, "alice"))
        self.assertEqual(KEYS, cm.exception.kind)
        self.assertEqual("alice", cm.exception.key)
        self.assertIn("did not finish within 3 pages", cm.exception.message)

    def test_fetch_all_within_the_bound(self):
        self.assertEqual([1, 2, 3, 4, 5], run(client(self.provider, max_pages=3).fetch_all(KEYS, "alice")))
        with self.assertRaises(ExternalServiceError):
            run(client(self.provider, max_pages=2).fetch_all(KEYS, "alice"))

    def test_describe(self):
        provider = FakeProvider(records={(CERT, "arn:cert"): {"NotAfter": "2030-01-01T00:00:00Z"}})
        c = client(provider)
        self.assertEqual({"NotAfter": "2030-01-01T00:00:00Z"}, run(c.describe(CERT, "arn:cert")))
        self.assertIsNone(run(c.describe(CERT, "arn:missing")))

    def test_without_a_provider(self):
        c = client(None)
        with self.assertRaises(ExternalServiceError):
            run(c.describe(CERT, "arn:cert"))
        with self.assertRaises(ExternalServiceError):
            run(c.fetch_all(KEYS, "alice"))

    def test_init_raises(self):
        self.assertRaises(TypeError, lambda: EnrichmentClient(object()))
        self.assertRaises(ValueError, lambda: EnrichmentClient(None, max_pages=0))
        self.assertRaises(ValueError, lambda: EnrichmentClient(None, max_attempts=0))


class RetryTests(unittest.TestCase):
    def test_transient_failures_are_retried(self):
        provider = FakeProvider(listings={(KEYS, "alice"): [[1]]}, failures={(KEYS, "alice"): 2})
        self.assertEqual([1], run(client(provider, max_attempts=3).fetch_all(KEYS, "alice")))
        self.assertEqual(3, len(provider.calls))

    def test_exhausted_retries_raise_external_service_error(self):
        provider = FakeProvider(records={(CERT, "arn:cert"): {}}, failures={(CERT, "arn:cert"): 5})
        with self.assertRaises(ExternalServiceError) as cm:
            run(client(provider, max_attempts=3).describe(CERT, "arn:cert"))
        self.assertIsInstance(cm.exception.__cause__, TransientProviderError)
        self.assertIn("failed after 3 attempt(s)", cm.exception.message)
        self.assertEqual(3, len(provider.calls))

    def test_permanent_failures_are_not_retried(self):
        class Rejecting(Provider):
            def __init__(self):
                self.calls = 0

            async def describe(self, kind, resource_id):
                self.calls += 1
                raise ExternalServiceError("access denied")

            async def list_page(self, kind, query_key, cursor=None):
                raise AssertionError("not called")

        provider = Rejecting()
        with self.assertRaises(ExternalServiceError) as cm:
            run(client(provider).describe(CERT, "arn:cert"))
        self.assertEqual(1, provider.calls)
        self.assertEqual(CERT, cm.exception.kind)
        self.assertEqual("arn:cert", cm.exception.key)


class CorrelateTests(unittest.TestCase):
    def setUp(self):
        self.resources = ResourceGraph.from_records([
            {"type": "aws:iam/accessKey:AccessKey", "id": "AKIA1", "properties": {"user": "alice"}},
            {"type": "aws:iam/accessKey:AccessKey", "id": "AKIA2", "properties": {"user": "alice"}},
            {"type": "aws:iam/accessKey:AccessKey", "properties": {"user": "alice"}},
        ]).of_type("aws:iam/accessKey:AccessKey")

    def test_pairs_items_with_resources(self):
        items = [{"AccessKeyId": "AKIA2", "n": 2}, {"AccessKeyId": "AKIA1", "n": 1}]
        pairs = correlate(items, self.resources, "AccessKeyId")
        self.assertEqual([("AKIA2", 2), ("AKIA1", 1)], [(r.id, item["n"]) for r, item in pairs])

    def test_uncorrelated_items_are_dropped(self):
        items = [{"AccessKeyId": "AKIA9"}, {"Other": "AKIA1"}, {"AccessKeyId": "AKIA1"}]
        pairs = correlate(items, self.resources, "AccessKeyId")
        self.assertEqual(["AKIA1"], [r.id for r, _ in pairs])

    def test_first_item_per_key_wins(self):
        items = [{"AccessKeyId": "AKIA1", "n": 1}, {"AccessKeyId": "AKIA1", "n": 2}]
        pairs = correlate(items, self.resources, "AccessKeyId")
        self.assertEqual([1], [item["n"] for _, item in pairs])

    def test_custom_keys(self):
        items = ["alice", "bob"]
        pairs = correlate(items, self.resources, lambda item: item, lambda r: r.user)
        self.assertEqual(1, len(pairs))
        self.assertEqual("AKIA1", pairs[0][0].id)
