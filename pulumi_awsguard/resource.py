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

import re
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Iterable, Iterator, List, Optional

# Sentinels the engine substitutes for values that can't be known until an update runs (e.g.,
# an output property of a resource that hasn't been created yet). The names are descriptive
# only and match the ones used by the Node.js SDK.
UNKNOWN_BOOLEAN_VALUE = "1c4a061d-8072-4f0a-a4cb-0ff528b18fe7"
UNKNOWN_NUMBER_VALUE = "3eeb2bf0-c639-47a8-9e75-3b44932eb421"
UNKNOWN_STRING_VALUE = "04da6b54-80e4-46f7-96ec-b56ff0331ba9"
UNKNOWN_ARRAY_VALUE = "6a19a0b0-7e62-4c92-b797-7f8e31da9cc2"
UNKNOWN_ASSET_VALUE = "030794c1-ac77-496b-92df-f27374a8bd58"
UNKNOWN_ARCHIVE_VALUE = "e48ece36-62e2-4504-bad9-02848725956a"
UNKNOWN_OBJECT_VALUE = "dd056dcd-154b-4c76-9bd3-c8f88648b5ff"

_UNKNOWN_TYPE_NAMES = {
    UNKNOWN_BOOLEAN_VALUE: "boolean",
    UNKNOWN_NUMBER_VALUE: "number",
    UNKNOWN_STRING_VALUE: "string",
    UNKNOWN_ARRAY_VALUE: "Array",
    UNKNOWN_ASSET_VALUE: "asset",
    UNKNOWN_ARCHIVE_VALUE: "archive",
    UNKNOWN_OBJECT_VALUE: "Object",
}

_CAMEL_BOUNDARY_RE = re.compile(r"_([a-z0-9])")


class UnknownValueError(Exception):
    """
    Exception raised to indicate that a property we attempted to access in some cloud resource is
    unknown. During preview, some resource fields (such as an allocated IP address) can't be known
    until the update is executed; an attempt to access such a field will result in this exception.
    """

    def __init__(self, unknown_type_sentinel: str, props: List[str]):
        super().__init__()
        self.unknown_type_sentinel = unknown_type_sentinel
        self.props = props
        path = ".".join(props)
        self.message = f"{_UNKNOWN_TYPE_NAMES[unknown_type_sentinel]} value at .{path} can't be known during preview"

    def __str__(self) -> str:
        return self.message


def is_unknown(value: Any) -> bool:
    return isinstance(value, str) and value in _UNKNOWN_TYPE_NAMES


class PropertyMap(Mapping):
    """
    A read-only view over a resource's properties. Reading a value that is unknown during preview
    raises `UnknownValueError` naming the full property path.
    """

    def __init__(self, values: Dict[str, Any], path: Optional[List[str]] = None):
        self.__values = values
        self.__path = path if path is not None else []

    def __getitem__(self, key):
        return _checked(self.__values[key], self.__path + [str(key)])

    def __contains__(self, key):
        return key in self.__values

    def __len__(self):
        return len(self.__values)

    def __iter__(self):
        return iter(self.__values)

    def __repr__(self):
        return f"PropertyMap({self.__values!r})"

    def to_dict(self) -> Dict[str, Any]:
        """
        Returns a plain copy of the properties, unknown sentinels included.
        """
        return _copy(self.__values)


class PropertyList(Sequence):
    """
    The list counterpart of `PropertyMap`.
    """

    def __init__(self, values: List[Any], path: List[str]):
        self.__values = values
        self.__path = path

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self.__values)))]
        return _checked(self.__values[index], self.__path + [str(index)])

    def __len__(self):
        return len(self.__values)

    def __repr__(self):
        return f"PropertyList({self.__values!r})"


def _checked(value: Any, path: List[str]) -> Any:
    if is_unknown(value):
        raise UnknownValueError(value, path)
    if isinstance(value, dict):
        return PropertyMap(value, path)
    if isinstance(value, list):
        return PropertyList(value, path)
    return value


def _copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _copy(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_copy(v) for v in value]
    return value


class ResourceSnapshot:
    """
    ResourceSnapshot is one resource of the stack as it was captured for a validation run. It is
    immutable: the properties are copied on construction and only exposed through a read-only view.
    """

    def __init__(self,
                 resource_type: str,
                 id: Optional[str] = None,  # pylint: disable=redefined-builtin
                 properties: Optional[Mapping[str, Any]] = None,
                 urn: Optional[str] = None,
                 name: Optional[str] = None) -> None:
        """
        :param str resource_type: The type token of the resource, e.g. `aws:kms/key:Key`.
        :param Optional[str] id: The provider-assigned ID. Absent (or unknown) until provisioned.
        :param Optional[Mapping[str, Any]] properties: The resource's properties.
        :param Optional[str] urn: The URN of the resource.
        :param Optional[str] name: The name of the resource.
        """
        if not resource_type:
            raise TypeError("Missing resource_type argument")
        if not isinstance(resource_type, str):
            raise TypeError("Expected resource_type to be a string")
        if id is not None and not isinstance(id, str):
            raise TypeError("Expected id to be a string")
        if properties is not None and not isinstance(properties, Mapping):
            raise TypeError("Expected properties to be a mapping")
        self.__resource_type = resource_type
        self.__id = None if not id or is_unknown(id) else id
        self.__properties = PropertyMap(_copy(properties) if properties is not None else {})
        self.__urn = urn or None
        self.__name = name or None

    @property
    def resource_type(self) -> str:
        return self.__resource_type

    @property
    def id(self) -> Optional[str]:
        return self.__id

    @property
    def properties(self) -> PropertyMap:
        return self.__properties

    @property
    def urn(self) -> Optional[str]:
        return self.__urn

    @property
    def name(self) -> Optional[str]:
        return self.__name

    def __repr__(self):
        return f"ResourceSnapshot(resource_type={self.__resource_type!r}, id={self.__id!r})"


class TypedResource:
    """
    TypedResource exposes a snapshot's properties by name. Attribute names are looked up as written
    and then in camelCase, so `key.enable_key_rotation` reads the `enableKeyRotation` property.
    Properties that aren't set read as None; nothing is defaulted.
    """

    def __init__(self, snapshot: ResourceSnapshot) -> None:
        self.__snapshot = snapshot

    @property
    def snapshot(self) -> ResourceSnapshot:
        return self.__snapshot

    @property
    def resource_type(self) -> str:
        return self.__snapshot.resource_type

    @property
    def id(self) -> Optional[str]:
        return self.__snapshot.id

    @property
    def urn(self) -> Optional[str]:
        return self.__snapshot.urn

    @property
    def name(self) -> Optional[str]:
        return self.__snapshot.name

    @property
    def props(self) -> PropertyMap:
        return self.__snapshot.properties

    def get(self, key: str, default: Any = None) -> Any:
        props = self.__snapshot.properties
        return props[key] if key in props else default

    def __getitem__(self, key: str) -> Any:
        return self.__snapshot.properties[key]

    def __contains__(self, key: str) -> bool:
        return key in self.__snapshot.properties

    def __getattr__(self, attr: str) -> Any:
        if attr.startswith("_"):
            raise AttributeError(attr)
        props = self.__snapshot.properties
        if attr in props:
            return props[attr]
        camel = _CAMEL_BOUNDARY_RE.sub(lambda m: m.group(1).upper(), attr)
        if camel in props:
            return props[camel]
        return None

    def __repr__(self):
        return f"TypedResource({self.__snapshot!r})"


def filter_resources(resources: Iterable[ResourceSnapshot], resource_type: str) -> List[TypedResource]:
    """
    Returns, in order, the resources whose type token is exactly `resource_type`, as typed views.
    Returns an empty list when nothing matches.
    """
    return [TypedResource(r) for r in resources if r.resource_type == resource_type]


class ResourceGraph(Sequence):
    """
    ResourceGraph is the ordered, read-only set of resources in the stack being validated.
    """

    def __init__(self, resources: Iterable[ResourceSnapshot]) -> None:
        snapshots = tuple(resources)
        for r in snapshots:
            if not isinstance(r, ResourceSnapshot):
                raise TypeError("Expected each resource to be a ResourceSnapshot")
        by_id: Dict[str, ResourceSnapshot] = {}
        for r in snapshots:
            if r.id is not None and r.id not in by_id:
                by_id[r.id] = r
        self.__resources = snapshots
        self.__by_id = by_id

    @staticmethod
    def from_records(records: Iterable[Mapping[str, Any]]) -> 'ResourceGraph':
        """
        Builds a graph from plain records of the form `{"type", "id", "properties", "urn", "name"}`.
        Only `type` is required.
        """
        resources: List[ResourceSnapshot] = []
        for record in records:
            if not isinstance(record, Mapping):
                raise TypeError("Expected each record to be a mapping")
            resources.append(ResourceSnapshot(
                record.get("type"),
                record.get("id"),
                record.get("properties"),
                record.get("urn"),
                record.get("name"),
            ))
        return ResourceGraph(resources)

    def __getitem__(self, index):
        return self.__resources[index]

    def __len__(self):
        return len(self.__resources)

    def __iter__(self) -> Iterator[ResourceSnapshot]:
        return iter(self.__resources)

    def get(self, resource_id: Optional[str]) -> Optional[ResourceSnapshot]:
        """
        Returns the first resource with the given ID, if any.
        """
        if resource_id is None:
            return None
        return self.__by_id.get(resource_id)

    def of_type(self, resource_type: str) -> List[TypedResource]:
        return filter_resources(self.__resources, resource_type)
