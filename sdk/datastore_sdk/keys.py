"""
Keys, key paths and the canonical key codec.

A Key addresses one entity by its path of (kind, id-or-name) pairs from the
root ancestor down to the entity itself, optionally scoped to a namespace.

This module provides:
- PathElement / Key: Immutable value objects
- build_key / path_from_key: Path description <-> Key
- encode_key / decode_key / keys_match: Canonical string form

Invariants:
    - Keys are immutable and compared structurally
    - encode_key is canonical: equal keys encode identically and distinct
      keys never collide
    - decode_key(encode_key(k)) == k

Example:
    >>> key = build_key([("Account", "acme"), ("Invoice", 42)], namespace="eu")
    >>> decode_key(encode_key(key)) == key
    True
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union

from .errors import InvalidPathError, MalformedKeyError

PathSpec = Union["PathElement", Mapping[str, Any], Sequence[Any]]


@dataclass(frozen=True)
class PathElement:
    """One (kind, id-or-name) step of a key path.

    Attributes:
        kind: Entity kind
        id: Store-assigned numeric id
        name: Caller-assigned name

    A complete element has exactly one of id or name. An element with
    neither is incomplete and is only valid as the last element of a key
    awaiting an auto-allocated id.
    """

    kind: str
    id: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, str) or not self.kind:
            raise InvalidPathError("Path element kind must be a non-empty string")
        if self.id is not None and self.name is not None:
            raise InvalidPathError(
                f"Path element '{self.kind}' has both id and name; exactly one is allowed"
            )
        if self.id is not None and (not isinstance(self.id, int) or isinstance(self.id, bool)):
            raise InvalidPathError(f"Path element '{self.kind}' id must be an integer")
        if self.name is not None and (not isinstance(self.name, str) or not self.name):
            raise InvalidPathError(f"Path element '{self.kind}' name must be a non-empty string")

    @property
    def is_complete(self) -> bool:
        return self.id is not None or self.name is not None

    @property
    def id_or_name(self) -> int | str | None:
        return self.id if self.id is not None else self.name

    def to_dict(self) -> dict[str, Any]:
        """Convert to a path description dictionary."""
        result: dict[str, Any] = {"kind": self.kind}
        if self.id is not None:
            result["id"] = self.id
        elif self.name is not None:
            result["name"] = self.name
        return result

    @classmethod
    def from_spec(cls, spec: PathSpec, index: int | None = None) -> PathElement:
        """Create from a PathElement, a mapping or a (kind, id_or_name) pair."""
        if isinstance(spec, PathElement):
            return spec
        try:
            if isinstance(spec, Mapping):
                return cls(kind=spec.get("kind", ""), id=spec.get("id"), name=spec.get("name"))
            if isinstance(spec, (tuple, list)) and len(spec) in (1, 2):
                kind = spec[0]
                ident = spec[1] if len(spec) == 2 else None
                if ident is None:
                    return cls(kind=kind)
                if isinstance(ident, bool):
                    raise InvalidPathError(f"Path element '{kind}' id must be an integer")
                if isinstance(ident, int):
                    return cls(kind=kind, id=ident)
                return cls(kind=kind, name=ident)
        except InvalidPathError as e:
            raise InvalidPathError(e.message, index=index) from None
        raise InvalidPathError(f"Unsupported path element: {spec!r}", index=index)


@dataclass(frozen=True)
class Key:
    """Immutable entity key.

    Attributes:
        path: Path elements from root ancestor to the entity
        namespace: Optional partition namespace (empty string means none)
    """

    path: tuple[PathElement, ...]
    namespace: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, tuple):
            object.__setattr__(self, "path", tuple(self.path))
        if not self.path:
            raise InvalidPathError("Key path must have at least one element")
        if not self.namespace:
            object.__setattr__(self, "namespace", None)
        for i, element in enumerate(self.path[:-1]):
            if not element.is_complete:
                raise InvalidPathError(
                    f"Ancestor path element '{element.kind}' has neither id nor name",
                    index=i,
                )

    @property
    def kind(self) -> str:
        return self.path[-1].kind

    @property
    def id(self) -> int | None:
        return self.path[-1].id

    @property
    def name(self) -> str | None:
        return self.path[-1].name

    @property
    def id_or_name(self) -> int | str | None:
        return self.path[-1].id_or_name

    @property
    def is_complete(self) -> bool:
        return self.path[-1].is_complete

    @property
    def parent(self) -> Key | None:
        """The ancestor key one level up, or None for a root key."""
        if len(self.path) == 1:
            return None
        return Key(self.path[:-1], self.namespace)

    def child(self, kind: str, id_or_name: int | str | None = None) -> Key:
        """Return a key for a child entity of this key."""
        if not self.is_complete:
            raise InvalidPathError("Cannot add a child to an incomplete key")
        element = PathElement.from_spec((kind, id_or_name), index=len(self.path))
        return Key(self.path + (element,), self.namespace)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the canonical dictionary used by the codec."""
        result: dict[str, Any] = {"path": [e.to_dict() for e in self.path]}
        if self.namespace:
            result["namespace"] = self.namespace
        return result

    def encode(self) -> str:
        return encode_key(self)

    def __str__(self) -> str:
        path = "/".join(f"{e.kind}:{e.id_or_name if e.is_complete else '?'}" for e in self.path)
        return f"{self.namespace}:{path}" if self.namespace else path


def build_key(
    path: Iterable[PathSpec],
    namespace: str | None = None,
    *,
    allow_incomplete: bool = False,
) -> Key:
    """Build a Key from an ordered ancestor-to-child path description.

    Args:
        path: Path elements as PathElement, {"kind", "id"|"name"} mappings or
            (kind, id_or_name) pairs
        namespace: Optional namespace
        allow_incomplete: Permit the final element to lack both id and name

    Returns:
        Key

    Raises:
        InvalidPathError: If the path is empty or an element is invalid
    """
    elements = tuple(PathElement.from_spec(spec, index=i) for i, spec in enumerate(path))
    if not elements:
        raise InvalidPathError("Key path must have at least one element")
    for i, element in enumerate(elements):
        if element.is_complete:
            continue
        if allow_incomplete and i == len(elements) - 1:
            continue
        raise InvalidPathError(
            f"Path element '{element.kind}' has neither id nor name", index=i
        )
    return Key(elements, namespace)


def path_from_key(key: Key) -> list[dict[str, Any]]:
    """Inverse of build_key: the path description of a key."""
    return [element.to_dict() for element in key.path]


def encode_key(key: Key) -> str:
    """Encode a key to its canonical, URL-safe string form."""
    raw = json.dumps(key.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_key(encoded: str) -> Key:
    """Decode a string produced by encode_key.

    Raises:
        MalformedKeyError: If the string is not a valid encoded key
    """
    if not isinstance(encoded, str) or not encoded:
        raise MalformedKeyError("Encoded key must be a non-empty string", encoded=None)
    try:
        raw = base64.b64decode(encoded.encode("ascii"), altchars=b"-_", validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedKeyError(f"Invalid encoded key: {e}", encoded=encoded) from e

    if not isinstance(data, dict) or not isinstance(data.get("path"), list):
        raise MalformedKeyError("Encoded key has no path", encoded=encoded)
    namespace = data.get("namespace")
    if namespace is not None and not isinstance(namespace, str):
        raise MalformedKeyError("Encoded key namespace must be a string", encoded=encoded)
    if not all(isinstance(e, dict) for e in data["path"]):
        raise MalformedKeyError("Encoded key path elements must be objects", encoded=encoded)
    try:
        return build_key(data["path"], namespace, allow_incomplete=True)
    except InvalidPathError as e:
        raise MalformedKeyError(f"Encoded key has an invalid path: {e.message}", encoded=encoded) from e


def keys_match(a: Key, b: Key) -> bool:
    """Structural key equality over the full path and namespace."""
    return encode_key(a) == encode_key(b)
