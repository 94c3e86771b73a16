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
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, NamedTuple, Optional, Tuple, TypeVar, Union

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ExternalServiceError, TransientProviderError
from .resource import TypedResource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Page(NamedTuple):
    """
    One page of a paginated provider listing. `next_cursor` is None on the last page.
    """
    items: List[Any]
    next_cursor: Optional[str]


class Provider(ABC):
    """
    Provider is the boundary to a cloud provider's API. Implementations must not have side
    effects: asking for the same page twice returns the same page.

    Retryable failures should be raised as `TransientProviderError`; failures that won't go away
    on their own as `ExternalServiceError`.
    """

    @abstractmethod
    async def describe(self, kind: str, resource_id: str) -> Optional[Mapping[str, Any]]:
        """
        Looks up a single record of the given kind, returning None if it doesn't exist.
        """

    @abstractmethod
    async def list_page(self, kind: str, query_key: str, cursor: Optional[str] = None) -> Page:
        """
        Fetches the page of records of the given kind for `query_key` that starts at `cursor`.
        """


class EnrichmentClient:
    """
    EnrichmentClient fetches data that isn't part of the stack snapshot from a `Provider`,
    retrying transient failures with exponential backoff and bounding paginated listings.
    """

    def __init__(self,
                 provider: Optional[Provider],
                 max_pages: int = 100,
                 max_attempts: int = 5,
                 backoff: float = 0.5,
                 max_backoff: float = 8.0) -> None:
        """
        :param Optional[Provider] provider: The provider to fetch from. When None, every lookup
               fails with `ExternalServiceError`.
        :param int max_pages: The most pages a single listing may span.
        :param int max_attempts: The most times a single request is attempted.
        :param float backoff: The initial delay, in seconds, between attempts. Doubles every retry.
        :param float max_backoff: The upper bound on the delay between attempts.
        """
        if provider is not None and not isinstance(provider, Provider):
            raise TypeError("Expected provider to be a Provider")
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.__provider = provider
        self.__max_pages = max_pages
        self.__max_attempts = max_attempts
        self.__backoff = backoff
        self.__max_backoff = max_backoff

    @property
    def max_pages(self) -> int:
        return self.__max_pages

    async def describe(self, kind: str, resource_id: str) -> Optional[Mapping[str, Any]]:
        """
        Looks up a single record, e.g. the ACM certificate with a given ARN.
        """
        provider = self._require_provider(kind, resource_id)
        return await self._call(kind, resource_id, lambda: provider.describe(kind, resource_id))

    async def fetch_page(self, kind: str, query_key: str, cursor: Optional[str] = None) -> Page:
        """
        Fetches one page of a listing. Fetching with the same cursor again returns the same page.
        """
        provider = self._require_provider(kind, query_key)
        result = await self._call(kind, query_key, lambda: provider.list_page(kind, query_key, cursor))
        items, next_cursor = result
        page = Page(list(items) if items is not None else [], next_cursor or None)
        logger.debug("fetched %d %s item(s) for %s", len(page.items), kind, query_key)
        return page

    async def fetch_all(self, kind: str, query_key: str) -> List[Any]:
        """
        Follows the listing's cursors until the provider reports there is nothing more, and returns
        every item in order. Raises `ExternalServiceError` if the listing doesn't finish within
        `max_pages` pages.
        """
        items: List[Any] = []
        cursor: Optional[str] = None
        for _ in range(self.__max_pages):
            page = await self.fetch_page(kind, query_key, cursor)
            items.extend(page.items)
            if page.next_cursor is None:
                return items
            cursor = page.next_cursor
        raise ExternalServiceError(
            f"listing {kind} for '{query_key}' did not finish within {self.__max_pages} pages",
            kind, query_key)

    def _require_provider(self, kind: str, key: str) -> Provider:
        if self.__provider is None:
            raise ExternalServiceError(f"no provider is configured to look up {kind} for '{key}'", kind, key)
        return self.__provider

    async def _call(self, kind: str, key: str, request: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.__max_attempts),
            wait=wait_exponential(multiplier=self.__backoff, max=self.__max_backoff),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await request()
        except TransientProviderError as e:
            raise ExternalServiceError(
                f"looking up {kind} for '{key}' failed after {self.__max_attempts} attempt(s): {e}",
                kind, key) from e
        except ExternalServiceError as e:
            if e.kind is None:
                e.kind, e.key = kind, key
            raise
        raise AssertionError("unreachable: retrying stopped without a result")


def correlate(items: Iterable[Any],
              resources: Iterable[TypedResource],
              item_key: Union[str, Callable[[Any], Any]],
              resource_key: Optional[Callable[[TypedResource], Any]] = None) -> List[Tuple[TypedResource, Any]]:
    """
    Pairs fetched items with the resources they describe. An item belongs to a resource when the
    item's identity (`item_key`, a field name or a function) equals the resource's identity
    (`resource_key`, the resource ID by default). Items that don't match any resource are dropped,
    and only the first of several items with the same identity is kept.
    """
    get_item_key = item_key if callable(item_key) else (lambda item: item.get(item_key))
    get_resource_key = resource_key if resource_key is not None else (lambda r: r.id)

    by_key = {}
    for r in resources:
        key = get_resource_key(r)
        if key is not None and key not in by_key:
            by_key[key] = r

    pairs: List[Tuple[TypedResource, Any]] = []
    seen = set()
    for item in items:
        key = get_item_key(item)
        if key is None or key in seen or key not in by_key:
            continue
        seen.add(key)
        pairs.append((by_key[key], item))
    return pairs
