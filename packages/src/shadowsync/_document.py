"""Shadow documents and the recursive state merge.

A shadow document is an arbitrarily deep mapping from field name to a
scalar, a nested document, or a sequence of scalars.  The cached view
of a device is always one such document, replaced wholesale on every
change so readers never observe a half-applied update.

Merge rules:

- A nested document in *changes* is merged recursively into the
  corresponding field of *base* (an empty document when absent).
- Any other value (scalar or sequence) replaces the field outright.
- Fields present only in *base* are kept unchanged.
- Neither input is mutated; the result is a fresh document.
"""

from __future__ import annotations

from collections.abc import Mapping

type Scalar = str | int | float | bool | None
type ScalarList = list[Scalar]
type Value = Scalar | ScalarList | Document
type Document = dict[str, Value]


def merge(
    base: Mapping[str, Value] | None,
    changes: Mapping[str, Value] | None,
) -> Document:
    """Merge *changes* into *base* and return a new document.

    ``None`` for either argument is treated as an empty document, which
    is what the transport sends when a shadow has no ``reported`` or
    ``desired`` section yet.

    Example::

        >>> merge({"a": 1, "b": {"c": 2}}, {"b": {"c": 3}})
        {'a': 1, 'b': {'c': 3}}
    """
    result: Document = copy_document(base)
    if not changes:
        return result

    for key, value in changes.items():
        match value:
            case Mapping():
                previous = result.get(key)
                result[key] = merge(
                    previous if isinstance(previous, Mapping) else None,
                    value,
                )
            case list() | tuple():
                result[key] = list(value)
            case _:
                result[key] = value
    return result


def copy_document(document: Mapping[str, Value] | None) -> Document:
    """Return a structural copy of *document* (nested mappings copied)."""
    if not document:
        return {}
    copied: Document = {}
    for key, value in document.items():
        match value:
            case Mapping():
                copied[key] = copy_document(value)
            case list() | tuple():
                copied[key] = list(value)
            case _:
                copied[key] = value
    return copied
