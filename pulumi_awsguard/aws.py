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
import functools
import threading
from typing import Any, Dict, Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .enrichment import Page, Provider
from .errors import ExternalServiceError, TransientProviderError

ACM_CERTIFICATE = "acm:certificate"
"""
`describe` kind: the ACM certificate with the given ARN, as returned by `DescribeCertificate`.
"""

IAM_ACCESS_KEYS = "iam:access-keys"
"""
`list_page` kind: the access key metadata of the given IAM user, as returned by `ListAccessKeys`.
"""

IAM_MFA_DEVICES = "iam:mfa-devices"
"""
`list_page` kind: the MFA devices of the given IAM user, as returned by `ListMFADevices`.
"""

_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalFailure",
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
}

_NOT_FOUND_CODES = {"ResourceNotFoundException", "NoSuchEntity"}

# Retries are done by the enrichment client, so botocore makes a single attempt per call.
_BOTO_CONFIG = BotoConfig(retries={"mode": "standard", "total_max_attempts": 1})

# (service, operation, items key, query parameter) for each listing kind.
_LISTINGS = {
    IAM_ACCESS_KEYS: ("iam", "list_access_keys", "AccessKeyMetadata", "UserName"),
    IAM_MFA_DEVICES: ("iam", "list_mfa_devices", "MFADevices", "UserName"),
}


class AwsProvider(Provider):
    """
    AwsProvider looks up ACM and IAM data with boto3. Calls are blocking, so they are run on the
    event loop's default executor.
    """

    def __init__(self, session: Optional[boto3.session.Session] = None, region_name: Optional[str] = None) -> None:
        """
        :param Optional[boto3.session.Session] session: The session to create clients from. Defaults
               to a new session using the standard credential chain.
        :param Optional[str] region_name: The region for regional services such as ACM.
        """
        self.__session = session
        self.__region_name = region_name
        self.__clients: Dict[str, Any] = {}
        self.__lock = threading.Lock()

    async def describe(self, kind: str, resource_id: str) -> Optional[Mapping[str, Any]]:
        if kind != ACM_CERTIFICATE:
            raise ExternalServiceError(f"unsupported lookup {kind}", kind, resource_id)
        resp = await self._call("acm", "describe_certificate", missing_ok=True, CertificateArn=resource_id)
        if resp is None:
            return None
        return resp.get("Certificate")

    async def list_page(self, kind: str, query_key: str, cursor: Optional[str] = None) -> Page:
        if kind not in _LISTINGS:
            raise ExternalServiceError(f"unsupported listing {kind}", kind, query_key)
        service, operation, items_key, param = _LISTINGS[kind]
        params = {param: query_key}
        if cursor:
            params["Marker"] = cursor
        resp = await self._call(service, operation, **params)
        next_cursor = resp.get("Marker") if resp.get("IsTruncated") else None
        return Page(list(resp.get(items_key, [])), next_cursor)

    def _client(self, service: str) -> Any:
        # Sessions aren't thread-safe, but the clients they create are.
        with self.__lock:
            if service not in self.__clients:
                session = self.__session if self.__session is not None else boto3.session.Session()
                self.__clients[service] = session.client(service, region_name=self.__region_name,
                                                         config=_BOTO_CONFIG)
            return self.__clients[service]

    async def _call(self, service: str, operation: str, missing_ok: bool = False, **params: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            client = await loop.run_in_executor(None, self._client, service)
            return await loop.run_in_executor(None, functools.partial(getattr(client, operation), **params))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _THROTTLING_CODES:
                raise TransientProviderError(f"{service}.{operation} was throttled ({code})") from e
            if missing_ok and code in _NOT_FOUND_CODES:
                return None
            raise ExternalServiceError(f"{service}.{operation} failed: {e}") from e
        except (EndpointConnectionError, ConnectionClosedError, ConnectTimeoutError, ReadTimeoutError) as e:
            raise TransientProviderError(f"{service}.{operation} could not reach AWS: {e}") from e
        except BotoCoreError as e:
            raise ExternalServiceError(f"{service}.{operation} failed: {e}") from e
