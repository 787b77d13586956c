"""
Active-record base class for entity models.

Relations are declared as ordinary zero-argument methods that build and
return a relation object, for example::

    class Author(Model):
        def books(self) -> HasMany:
            return self.has_many(Book)

Models persist themselves through a write backend. The class-level backend
can be swapped for a scoped block with ``Model.sandboxed()``.
"""

from __future__ import annotations

import logging
import re
import weakref
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Type, Union

from sqlalchemy import column, literal_column, select, table
from sqlalchemy.engine import Row

from relation_sniffer.orm.backends import NullWriteBackend, SqlWriteBackend, WriteBackend
from relation_sniffer.orm.database import Database
from relation_sniffer.orm.relations import BelongsTo, BelongsToMany, HasMany, HasOne

logger = logging.getLogger(__name__)

_MISSING = object()

# Qualified class name -> model class; entries go away with their class
_registry: weakref.WeakValueDictionary = weakref.WeakValueDictionary()


def snake_case(name: str) -> str:
    """Convert a CamelCase class name to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def pluralize(word: str) -> str:
    """Naive English plural used for default table names."""
    if word.endswith("y") and not word.endswith(("ay", "ey", "oy", "uy")):
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def qualified_name(cls: type) -> str:
    """Return the module-qualified name identifying a class."""
    return f"{cls.__module__}.{cls.__qualname__}"


def resolve_model(target: Union[str, Type[Model]]) -> Type[Model]:
    """
    Resolve a model class from a class or a registered name.

    A qualified name always resolves. A short class name resolves only when
    exactly one registered model carries it.

    Raises:
        LookupError: If no model, or more than one model, matches the name
    """
    if isinstance(target, type):
        return target
    model = _registry.get(target)
    if model is not None:
        return model

    matches = sorted(
        ((name, cls) for name, cls in list(_registry.items()) if cls.__name__ == target),
        key=lambda match: match[0],
    )
    if len(matches) == 1:
        return matches[0][1]
    if matches:
        candidates = ", ".join(name for name, _ in matches)
        raise LookupError(f'Class "{target}" is ambiguous: {candidates}')
    raise LookupError(f'Class "{target}" not found')


class Model:
    """Base class for row-backed entities."""

    __abstract__ = True
    __tablename__: Optional[str] = None
    __database__: Optional[Database] = None
    __write_backend__: Optional[WriteBackend] = None

    primary_key = "id"
    soft_deletes = False
    deleted_at_column = "deleted_at"

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        _registry[qualified_name(cls)] = cls

    def __init__(self, **attributes: Any):
        self.attributes: Dict[str, Any] = dict(attributes)
        self.exists = False

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attributes = self.__dict__.get("attributes", {})
        try:
            return attributes[name]
        except KeyError:
            raise AttributeError(f"{type(self).__name__!r} has no attribute {name!r}") from None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.primary_key}={self.get_key()!r}>"

    # Class-level metadata

    @classmethod
    def is_abstract(cls) -> bool:
        """Return True if the class itself is declared abstract."""
        return bool(cls.__dict__.get("__abstract__", False))

    @classmethod
    def get_table(cls) -> str:
        """Return the backing table name."""
        return cls.__dict__.get("__tablename__") or pluralize(snake_case(cls.__name__))

    @classmethod
    def get_key_name(cls) -> str:
        return cls.primary_key

    @classmethod
    def get_foreign_key(cls) -> str:
        """Return the default foreign key other tables use to reference this model."""
        return f"{snake_case(cls.__name__)}_{cls.primary_key}"

    @classmethod
    def get_database(cls) -> Database:
        if cls.__database__ is None:
            raise RuntimeError(f"{cls.__name__} is not bound to a database")
        return cls.__database__

    @classmethod
    def get_write_backend(cls) -> WriteBackend:
        if cls.__write_backend__ is not None:
            return cls.__write_backend__
        return SqlWriteBackend(cls.get_database())

    @classmethod
    @contextmanager
    def sandboxed(cls, backend: Optional[WriteBackend] = None) -> Iterator[WriteBackend]:
        """
        Substitute a write backend for this class for the duration of a block.

        Defaults to a NullWriteBackend, so saves, updates and deletes issued
        by any instance of the class (or its subclasses) are refused. The
        previous backend is restored on every exit path.
        """
        previous = cls.__dict__.get("__write_backend__", _MISSING)
        guard = backend if backend is not None else NullWriteBackend()
        cls.__write_backend__ = guard
        try:
            yield guard
        finally:
            if previous is _MISSING:
                del cls.__write_backend__
            else:
                cls.__write_backend__ = previous

    # Reading

    @classmethod
    def from_row(cls, row: Row) -> Model:
        instance = cls(**dict(row._mapping))
        instance.exists = True
        return instance

    @classmethod
    def all(cls) -> List[Model]:
        rows = cls.get_database().fetch_all(select(literal_column("*")).select_from(table(cls.get_table())))
        return [cls.from_row(row) for row in rows]

    @classmethod
    def find(cls, key: Any) -> Optional[Model]:
        target = table(cls.get_table(), column(cls.primary_key))
        statement = select(literal_column("*")).select_from(target).where(target.c[cls.primary_key] == key)
        rows = cls.get_database().fetch_all(statement)
        return cls.from_row(rows[0]) if rows else None

    def get_attribute(self, name: str) -> Any:
        return self.attributes.get(name)

    def get_key(self) -> Any:
        return self.attributes.get(self.primary_key)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.attributes)

    # Writing

    def save(self) -> bool:
        """Persist the model. Returns False if the write was refused."""
        backend = type(self).get_write_backend()
        if self.exists:
            return backend.update(self.get_table(), self.primary_key, self.get_key(), self.attributes)

        key = backend.insert(self.get_table(), self.attributes)
        if key is None or key is False:
            return False
        if key is not True:
            self.attributes.setdefault(self.primary_key, key)
        self.exists = True
        return True

    def update(self, **attributes: Any) -> bool:
        self.attributes.update(attributes)
        return self.save()

    def delete(self) -> bool:
        """Delete the model, or mark it deleted when the model uses soft deletes."""
        if not self.exists:
            return False
        if self.soft_deletes:
            return self.update(**{self.deleted_at_column: datetime.now().isoformat()})
        return self.force_delete()

    def force_delete(self) -> bool:
        """Delete the row regardless of soft deletes."""
        if not self.exists:
            return False
        deleted = type(self).get_write_backend().delete(self.get_table(), self.primary_key, self.get_key())
        if deleted:
            self.exists = False
        return deleted

    # Relation builders

    def has_one(
        self,
        related: Union[str, Type[Model]],
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ) -> HasOne:
        related_class = resolve_model(related)
        return HasOne(
            self,
            related_class(),
            foreign_key or self.get_foreign_key(),
            local_key or self.get_key_name(),
        )

    def has_many(
        self,
        related: Union[str, Type[Model]],
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ) -> HasMany:
        related_class = resolve_model(related)
        return HasMany(
            self,
            related_class(),
            foreign_key or self.get_foreign_key(),
            local_key or self.get_key_name(),
        )

    def belongs_to(
        self,
        related: Union[str, Type[Model]],
        foreign_key: Optional[str] = None,
        owner_key: Optional[str] = None,
    ) -> BelongsTo:
        related_class = resolve_model(related)
        return BelongsTo(
            self,
            related_class(),
            foreign_key or related_class.get_foreign_key(),
            owner_key or related_class.get_key_name(),
        )

    def belongs_to_many(
        self,
        related: Union[str, Type[Model]],
        table_name: Optional[str] = None,
        foreign_pivot_key: Optional[str] = None,
        related_pivot_key: Optional[str] = None,
        parent_key: Optional[str] = None,
        related_key: Optional[str] = None,
    ) -> BelongsToMany:
        related_class = resolve_model(related)
        if table_name is None:
            segments = sorted([snake_case(type(self).__name__), snake_case(related_class.__name__)])
            table_name = "_".join(segments)
        return BelongsToMany(
            self,
            related_class(),
            table_name,
            foreign_pivot_key or self.get_foreign_key(),
            related_pivot_key or related_class.get_foreign_key(),
            parent_key or self.get_key_name(),
            related_key or related_class.get_key_name(),
        )
