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

from typing import Optional


class ConfigurationError(Exception):
    """
    Raised when a policy set can't be configured: a setting is outside its declared range or
    of the wrong type, a policy name is used twice, or an enforcement level isn't recognized.
    Always raised before any resource is validated.
    """


class ExternalServiceError(Exception):
    """
    Raised when data can't be fetched from the cloud provider: the retry budget was exhausted,
    the provider rejected the request, or a paginated listing exceeded the page bound.
    """

    def __init__(self, message: str, kind: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.key = key


class TransientProviderError(Exception):
    """
    Raised by provider bindings for failures that are worth retrying (throttling, dropped
    connections). The enrichment client retries these and converts them into
    `ExternalServiceError` once its attempts are used up.
    """
