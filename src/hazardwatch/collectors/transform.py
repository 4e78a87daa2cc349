"""
Transform engine for declarative sources.

Applied in order: navigate ``dataPath``, filter records by field
equality, then project each record through the field allow-list.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..errors import TransformError

_TOKEN = re.compile(r"\[(-?\d+)\]|([^.\[\]]+)")

_MISSING = object()

PathToken = Union[str, int]


def parse_path(path: str) -> Tuple[PathToken, ...]:
    """
    Split a dot/bracket path into keys and indices.

    >>> parse_path("features[0].properties.mag")
    ('features', 0, 'properties', 'mag')
    """
    if not path:
        return ()
    tokens: List[PathToken] = []
    pos = 0
    for match in _TOKEN.finditer(path):
        gap = path[pos : match.start()].strip(".")
        if gap:
            raise ValueError(f"Malformed path {path!r} near {gap!r}")
        index, key = match.groups()
        tokens.append(int(index) if index is not None else key)
        pos = match.end()
    if path[pos:].strip("."):
        raise ValueError(f"Malformed path {path!r}")
    return tuple(tokens)


def _step(current: Any, token: PathToken, path: str) -> Any:
    if isinstance(current, Mapping):
        if isinstance(token, int):
            raise TransformError(
                f"Path {path!r}: expected a sequence at [{token}], found an object"
            )
        return current.get(token, _MISSING)
    if isinstance(current, list):
        if isinstance(token, str):
            if not token.lstrip("-").isdigit():
                raise TransformError(
                    f"Path {path!r}: expected an object at {token!r}, found a sequence"
                )
            token = int(token)
        try:
            return current[token]
        except IndexError:
            return _MISSING
    raise TransformError(
        f"Path {path!r}: cannot descend into {type(current).__name__} at {token!r}"
    )


def lookup(record: Any, path: Union[str, Tuple[PathToken, ...]]) -> Any:
    """
    Resolve a path inside one record.

    Returns the module's missing sentinel when any key or index is absent.
    Raises TransformError on a type mismatch along the way.
    """
    tokens = parse_path(path) if isinstance(path, str) else path
    label = path if isinstance(path, str) else ".".join(map(str, path))
    current = record
    for token in tokens:
        if current is None:
            return _MISSING
        current = _step(current, token, label)
        if current is _MISSING:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


def navigate(body: Any, path: Optional[str]) -> Any:
    """
    Locate the substructure at path within a response body.

    An absent path (missing key, null, index out of range) yields an
    empty list rather than an error.
    """
    if not path:
        return body
    value = lookup(body, path)
    if value is _MISSING or value is None:
        return []
    return value


def matches(record: Mapping[str, Any], constraints: Mapping[str, Any]) -> bool:
    """
    True when every constraint field equals the record's value.

    A field absent from the record does not match.
    """
    for field, expected in constraints.items():
        try:
            actual = lookup(record, field)
        except TransformError:
            return False
        if actual is _MISSING or actual != expected:
            return False
    return True


class FieldSpec:
    """One allow-listed field: where it comes from and what it is called."""

    __slots__ = ("source", "target", "default", "has_default", "_tokens")

    def __init__(self, source: str, target: str, default: Any = _MISSING):
        self.source = source
        self.target = target
        self.default = default
        self.has_default = default is not _MISSING
        self._tokens = parse_path(source)

    @classmethod
    def from_config(cls, source: str, spec: Any) -> "FieldSpec":
        if isinstance(spec, str):
            return cls(source, spec)
        if isinstance(spec, Mapping) and "to" in spec:
            return cls(source, spec["to"], spec.get("default", _MISSING))
        raise ValueError(
            f"Field {source!r}: expected an output name or {{to, default}}, "
            f"got {spec!r}"
        )

    def extract(self, record: Any) -> Any:
        value = lookup(record, self._tokens)
        if value is _MISSING:
            if self.has_default:
                return self.default
            raise TransformError(f"Required field {self.source!r} missing from record")
        return value


def compile_fields(fields: Optional[Mapping[str, Any]]) -> List[FieldSpec]:
    return [FieldSpec.from_config(src, spec) for src, spec in (fields or {}).items()]


def project(record: Any, specs: List[FieldSpec]) -> Dict[str, Any]:
    """Keep only the allow-listed fields, renamed."""
    return {spec.target: spec.extract(record) for spec in specs}


def apply_transform(
    body: Any,
    data_path: Optional[str] = None,
    filter_by: Optional[Mapping[str, Any]] = None,
    fields: Optional[List[FieldSpec]] = None,
) -> Any:
    """
    Run the full transform over a parsed response body.

    With neither filter nor fields the navigated value is returned as
    is. Otherwise the target must be a sequence of objects (a single
    object is treated as a one-record sequence) and a list is returned.
    """
    target = navigate(body, data_path)
    if not filter_by and not fields:
        return target

    if isinstance(target, Mapping):
        records = [target]
    elif isinstance(target, list):
        records = target
    else:
        raise TransformError(
            f"Path {data_path!r}: expected a sequence of records, "
            f"found {type(target).__name__}"
        )

    for i, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise TransformError(
                f"Record {i} at {data_path!r} is {type(record).__name__}, not an object"
            )

    if filter_by:
        records = [r for r in records if matches(r, filter_by)]
    if fields:
        records = [project(r, fields) for r in records]
    return list(records)
