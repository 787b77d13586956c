"""
Relation objects returned by entity relation methods.

A relation method on a model builds and returns one of these. The object
knows the related model and the join keys, and can build the SQLAlchemy
query that loads the related rows.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Union

from sqlalchemy import Select, column, literal_column, select, table

if TYPE_CHECKING:
    from relation_sniffer.orm.model import Model


def _last_segment(key: str) -> str:
    return key.split(".")[-1]


class Relation:
    """Base class for all relations between two models."""

    returns_many = False

    def __init__(self, parent: Model, related: Model):
        self.parent = parent
        self.related = related

    def get_parent(self) -> Model:
        return self.parent

    def get_related(self) -> Model:
        """Return an instance of the related model."""
        return self.related

    def query(self) -> Select:
        """Build the query selecting the related rows."""
        raise NotImplementedError

    def get_results(self) -> Union[List[Model], Optional[Model]]:
        """Load the related model(s) for the parent."""
        related_class = type(self.related)
        rows = related_class.get_database().fetch_all(self.query())
        models = [related_class.from_row(row) for row in rows]
        if self.returns_many:
            return models
        return models[0] if models else None

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {type(self.parent).__name__} -> "
            f"{type(self.related).__name__}>"
        )


class HasOneOrMany(Relation):
    """Direct relation: the related table holds a foreign key to the parent."""

    def __init__(self, parent: Model, related: Model, foreign_key: str, local_key: str):
        super().__init__(parent, related)
        self.foreign_key = foreign_key
        self.local_key = local_key

    def get_foreign_key_name(self) -> str:
        return _last_segment(self.foreign_key)

    def get_qualified_foreign_key_name(self) -> str:
        return f"{self.related.get_table()}.{self.get_foreign_key_name()}"

    def get_local_key_name(self) -> str:
        return self.local_key

    def get_parent_key(self) -> Any:
        return self.parent.get_attribute(self.local_key)

    def query(self) -> Select:
        foreign_key = self.get_foreign_key_name()
        target = table(self.related.get_table(), column(foreign_key))
        return (
            select(literal_column("*"))
            .select_from(target)
            .where(target.c[foreign_key] == self.get_parent_key())
        )


class HasOne(HasOneOrMany):
    """One-to-one relation owned by the parent."""


class HasMany(HasOneOrMany):
    """One-to-many relation owned by the parent."""

    returns_many = True


class BelongsTo(Relation):
    """Inverse relation: the parent table holds a foreign key to the related owner."""

    def __init__(self, parent: Model, related: Model, foreign_key: str, owner_key: str):
        super().__init__(parent, related)
        self.foreign_key = foreign_key
        self.owner_key = owner_key

    def get_foreign_key_name(self) -> str:
        return _last_segment(self.foreign_key)

    def get_owner_key_name(self) -> str:
        return self.owner_key

    def get_qualified_owner_key_name(self) -> str:
        return f"{self.related.get_table()}.{self.owner_key}"

    def query(self) -> Select:
        target = table(self.related.get_table(), column(self.owner_key))
        return (
            select(literal_column("*"))
            .select_from(target)
            .where(target.c[self.owner_key] == self.parent.get_attribute(self.get_foreign_key_name()))
        )


class BelongsToMany(Relation):
    """Many-to-many relation joined through a pivot table."""

    returns_many = True

    def __init__(
        self,
        parent: Model,
        related: Model,
        table_name: str,
        foreign_pivot_key: str,
        related_pivot_key: str,
        parent_key: str,
        related_key: str,
    ):
        super().__init__(parent, related)
        self.table_name = table_name
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key

    def get_table(self) -> str:
        """Return the pivot table name."""
        return self.table_name

    def get_foreign_pivot_key_name(self) -> str:
        return self.foreign_pivot_key

    def get_qualified_foreign_pivot_key_name(self) -> str:
        return f"{self.table_name}.{self.foreign_pivot_key}"

    def get_related_pivot_key_name(self) -> str:
        return self.related_pivot_key

    def get_parent_key_name(self) -> str:
        return self.parent_key

    def get_related_key_name(self) -> str:
        return self.related_key

    def query(self) -> Select:
        related_table = self.related.get_table()
        target = table(related_table, column(self.related_key))
        pivot = table(self.table_name, column(self.foreign_pivot_key), column(self.related_pivot_key))
        return (
            select(literal_column(f"{related_table}.*"))
            .select_from(
                target.join(pivot, target.c[self.related_key] == pivot.c[self.related_pivot_key])
            )
            .where(pivot.c[self.foreign_pivot_key] == self.parent.get_attribute(self.parent_key))
        )
