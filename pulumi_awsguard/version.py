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

from importlib.metadata import PackageNotFoundError, version as package_version

_PACKAGE_NAME = "pulumi_awsguard"

# Used when the package isn't installed, e.g. when run from a source checkout.
_DEV_VERSION = "v0.0.0-dev"


def _get_sem_version(version: str) -> str:
    """
    Converts a Python package version (e.g. "1.2.3a4" or "1.2.3.dev123") to the semver form the
    Pulumi engine expects (e.g. "v1.2.3-a.4" or "v1.2.3-dev.123").
    """
    if not version:
        return version

    dirty = ""
    if version.endswith("+dirty"):
        dirty = "+dirty"
        version = version[:-len("+dirty")]

    parts = version.split(".")

    if len(parts) == 4:
        dev = parts[3]
        if not dev.startswith("dev"):
            raise ValueError(f"invalid package version {version}")
        dev = dev[len("dev"):]
        return f"v{parts[0]}.{parts[1]}.{parts[2]}-dev.{dev}{dirty}"

    if len(parts) == 3:
        digits = ""
        on_suffix = False
        suffix = ""
        suffix_digits = ""
        for c in parts[2]:
            if c.isdigit() and not on_suffix:
                digits += c
            elif c.isdigit() and on_suffix:
                suffix_digits += c
            elif not c.isdigit():
                on_suffix = True
                suffix += c

        suffix = f"-{suffix}" if suffix else ""
        suffix_digits = f".{suffix_digits}" if suffix_digits else ""
        return f"v{parts[0]}.{parts[1]}.{digits}{suffix}{suffix_digits}{dirty}"

    raise ValueError(f"invalid package version {version}")


def _get_package_sem_version() -> str:
    try:
        return _get_sem_version(package_version(_PACKAGE_NAME))
    except PackageNotFoundError:
        return _DEV_VERSION


VERSION = _get_package_sem_version()
