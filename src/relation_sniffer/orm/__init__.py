"""
Active-record entity layer inspected by the relation sniffer.

Models declare relations as zero-argument methods returning relation
objects, persist through a swappable write backend, and read and write
through a SQLAlchemy-backed Database handle.
"""

from relation_sniffer.orm.backends import NullWriteBackend, SqlWriteBackend, WriteBackend
from relation_sniffer.orm.database import Database
from relation_sniffer.orm.model import Model, qualified_name, resolve_model
from relation_sniffer.orm.relations import (
    BelongsTo,
    BelongsToMany,
    HasMany,
    HasOne,
    HasOneOrMany,
    Relation,
)

__all__ = [
    "Database",
    "Model",
    "qualified_name",
    "resolve_model",
    "WriteBackend",
    "SqlWriteBackend",
    "NullWriteBackend",
    "Relation",
    "HasOneOrMany",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
]
