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

from typing import Any, Callable, Dict, Mapping, Tuple

import pulumi

# SPECIAL_SIG_KEY is sometimes used to encode type identity inside of a map.
# See https://github.com/pulumi/pulumi/blob/master/sdk/go/common/resource/properties.go.
SPECIAL_SIG_KEY = "4dabf18193072939515e22adb298388d"

# SPECIAL_ASSET_SIG is a randomly assigned hash used to identify assets in maps.
SPECIAL_ASSET_SIG = "c44067f5952c0a294b673a41bacd8c17"

# SPECIAL_ARCHIVE_SIG is a randomly assigned hash used to identify archives in maps.
SPECIAL_ARCHIVE_SIG = "0def7320c3a5731c473e5ecbe6d01bc7"

# SPECIAL_SECRET_SIG is a randomly assigned hash used to identify secrets in maps.
SPECIAL_SECRET_SIG = "1b47061264138c4ac30d75fd1eb44270"

# Field that holds an asset's or archive's source, in the order the engine checks them.
_ASSET_SOURCES: Tuple[Tuple[str, Callable[[str], pulumi.Asset]], ...] = (
    ("path", pulumi.FileAsset),
    ("text", pulumi.StringAsset),
    ("uri", pulumi.RemoteAsset),
)
_ARCHIVE_SOURCES: Tuple[Tuple[str, Callable[[str], pulumi.Archive]], ...] = (
    ("path", pulumi.FileArchive),
    ("uri", pulumi.RemoteArchive),
)


def deserialize_properties(props: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Converts the properties of an analyzer request into the plain values a ResourceSnapshot holds.
    Secrets are replaced by their plaintext and assets and archives become Pulumi objects. Unknown
    values stay as their sentinel strings.
    """
    return {key: _deserialize_value(value) for key, value in props.items()}


def _deserialize_value(value: Any) -> Any:
    if isinstance(value, list):
        return [_deserialize_value(v) for v in value]
    if not isinstance(value, dict):
        return value
    if SPECIAL_SIG_KEY not in value:
        return deserialize_properties(value)

    sig = value[SPECIAL_SIG_KEY]
    decode = _DECODERS.get(sig)
    if decode is None:
        raise AssertionError(f"Unrecognized signature '{sig}' when unmarshaling resource property")
    return decode(value)


def _secret(value: Dict[str, Any]) -> Any:
    if "value" not in value:
        raise AssertionError("Invalid secret encountered when unmarshaling resource property")
    return _deserialize_value(value["value"])


def _asset(value: Dict[str, Any]) -> pulumi.Asset:
    for field, make in _ASSET_SOURCES:
        if field in value:
            return make(value[field])
    raise AssertionError("Invalid asset encountered when unmarshaling resource property")


def _archive(value: Dict[str, Any]) -> pulumi.Archive:
    if "assets" in value:
        assets = {key: _deserialize_value(a) for key, a in value["assets"].items()}
        if any(not isinstance(a, (pulumi.Asset, pulumi.Archive)) for a in assets.values()):
            raise AssertionError("Expected an AssetArchive's assets to be unmarshaled Asset or Archive objects")
        return pulumi.AssetArchive(assets)
    for field, make in _ARCHIVE_SOURCES:
        if field in value:
            return make(value[field])
    raise AssertionError("Invalid archive encountered when unmarshaling resource property")


_DECODERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    SPECIAL_ASSET_SIG: _asset,
    SPECIAL_ARCHIVE_SIG: _archive,
    SPECIAL_SECRET_SIG: _secret,
}
