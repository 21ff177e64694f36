"""Certificate metadata bag.

Metadata is an open mapping from string keys to JSON-compatible values. It is
merged on every write and never replaced wholesale, so keys only accumulate.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

from attestation_platform.domain.exceptions import ValidationError

MetadataValue = Union[None, bool, int, float, str, list, dict]
Metadata = dict[str, MetadataValue]

_SCALARS = (type(None), bool, int, float, str)


def _check_value(path: str, value: Any) -> None:
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_value(f"{path}[{i}]", item)
        return
    if isinstance(value, Mapping):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError("Metadata keys must be strings", {"field": path})
            _check_value(f"{path}.{k}", v)
        return
    raise ValidationError(
        f"Unsupported metadata value type {type(value).__name__}",
        {"field": path},
    )


def validate_metadata(metadata: Mapping[str, Any] | None) -> Metadata:
    """Validate a metadata mapping and return a plain dict copy.

    Raises:
        ValidationError: If a key is not a string or a value is not JSON-compatible.
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("Metadata must be a mapping", {"field": "metadata"})
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError("Metadata keys must be strings", {"field": "metadata"})
        _check_value(key, value)
    return {k: _normalize(v) for k, v in metadata.items()}


def _normalize(value: Any) -> MetadataValue:
    if isinstance(value, tuple):
        return [_normalize(v) for v in value]
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _normalize(v) for k, v in value.items()}
    return value


def merge_metadata(base: Mapping[str, Any] | None, extra: Mapping[str, Any] | None) -> Metadata:
    """Merge ``extra`` over ``base`` without mutating either.

    Top-level keys of ``extra`` win; keys only present in ``base`` survive.
    """
    merged: Metadata = dict(base or {})
    merged.update(validate_metadata(extra))
    return merged
