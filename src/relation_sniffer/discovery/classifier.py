"""
Relation Classifier - Decides whether a type or value denotes a relation.

Classification is static first: a declared return type that is a Relation
subclass is enough, and nothing needs to be executed. Only when the method
declares no usable type is the value it actually returned inspected.
"""

from __future__ import annotations

import inspect
from decimal import Decimal
from typing import Any, Optional, Type

from relation_sniffer.models import RelationKind
from relation_sniffer.orm import Relation

# Accessors only many-to-many relations through a pivot table expose
PIVOT_ACCESSORS = ("get_foreign_pivot_key_name", "get_related_pivot_key_name")

# Values that can never be relation objects
SCALAR_TYPES = (
    str, bytes, bytearray, int, float, complex, Decimal,
    list, tuple, dict, set, frozenset,
)


class RelationClassifier:
    """Classifies declared return types and runtime values as relations."""

    def __init__(self, base: Type[Relation] = Relation):
        self.base = base

    def classify_type(self, declared: Optional[Any]) -> Optional[RelationKind]:
        """
        Classify a declared return type.

        Returns None when the type is absent, is not a plain class (for
        example Optional[HasMany]), or is not a relation type.
        """
        if declared is None or not inspect.isclass(declared):
            return None
        if not issubclass(declared, self.base):
            return None
        return self._kind_of(declared)

    def classify_value(self, value: Any) -> Optional[RelationKind]:
        """Classify a value returned by invoking a method."""
        if not is_object_value(value):
            return None
        if not isinstance(value, self.base):
            return None
        return self._kind_of(type(value))

    def _kind_of(self, relation_type: type) -> RelationKind:
        if all(callable(getattr(relation_type, name, None)) for name in PIVOT_ACCESSORS):
            return RelationKind.MANY_TO_MANY_THROUGH_PIVOT
        if getattr(relation_type, "returns_many", False):
            return RelationKind.TO_MANY
        return RelationKind.TO_ONE


def is_object_value(value: Any) -> bool:
    """Return True for values that could be an object instance of interest."""
    if value is None or isinstance(value, bool):
        return False
    if inspect.isclass(value):
        return False
    return not isinstance(value, SCALAR_TYPES)
