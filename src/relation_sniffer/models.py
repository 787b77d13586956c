"""
Core data models for the relation_sniffer package.

Defines the descriptors the sniffer works on, the schema graph it produces,
probe failure records, and the scan configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Union

import yaml

logger = logging.getLogger(__name__)

# Methods that persist state; never probed whatever the configuration says.
DEFAULT_EXCLUSIONS = frozenset({
    "save",
    "update",
    "delete",
    "force_delete",
    "forceDelete",
})

GLOBAL_KEY = "*"


class RelationKind(str, Enum):
    """Kind of a relation edge."""
    TO_ONE = "to_one"
    TO_MANY = "to_many"
    MANY_TO_MANY_THROUGH_PIVOT = "many_to_many_through_pivot"

    @property
    def is_pivot(self) -> bool:
        return self is RelationKind.MANY_TO_MANY_THROUGH_PIVOT


@dataclass(frozen=True)
class EntityDescriptor:
    """Identifies one concrete entity class found by the catalog."""
    name: str  # module-qualified class name
    table_name: str
    entity_class: type

    @property
    def short_name(self) -> str:
        return self.entity_class.__name__

    def instantiate(self) -> Any:
        """Return a fresh, unsaved instance of the entity."""
        return self.entity_class()


@dataclass(frozen=True)
class MethodCandidate:
    """A method on an entity class, as seen by the method filter."""
    name: str
    is_static: bool = False
    is_public: bool = True
    required_parameters: int = 0
    declared_return_type: Optional[Any] = None


@dataclass(frozen=True)
class RelationEdge:
    """A relation from one entity to another, with its join keys."""
    source_entity: str
    relation_name: str
    kind: RelationKind
    related_entity: str

    # Non-pivot keys
    foreign_key: Optional[str] = None
    local_key: Optional[str] = None

    # Pivot keys (foreign_key holds the foreign pivot key)
    parent_key: Optional[str] = None
    related_pivot_key: Optional[str] = None
    related_key: Optional[str] = None
    pivot_table: Optional[str] = None

    # True when the source holds the foreign key (child -> parent)
    is_inverse: bool = False

    @property
    def is_pivot(self) -> bool:
        return self.kind.is_pivot

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the serialized edge shape."""
        data: Dict[str, Any] = {
            "isPivot": self.is_pivot,
            "relatedModel": self.related_entity,
        }
        if self.is_pivot:
            data.update({
                "foreignKey": self.foreign_key,
                "parentKey": self.parent_key,
                "relatedPivotKey": self.related_pivot_key,
                "relatedKey": self.related_key,
                "table": self.pivot_table,
            })
        else:
            data.update({
                "foreignKey": self.foreign_key,
                "localKey": self.local_key,
            })
        return data


@dataclass(frozen=True)
class EntityNode:
    """Metadata and outgoing relations of one entity."""
    table: str
    class_name: str
    relations: Mapping[str, RelationEdge] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "relations", MappingProxyType(dict(self.relations)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "table": self.table,
                "class": self.class_name,
            },
            "relations": {name: edge.to_dict() for name, edge in self.relations.items()},
        }


@dataclass(frozen=True)
class SchemaGraph:
    """
    Entities as nodes and relations as directed edges.

    Built once per scan and read-only afterwards. Entities keep the order
    in which the catalog produced them.
    """
    entities: Mapping[str, EntityNode] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, name: object) -> bool:
        return name in self.entities

    def get_entity(self, name: str) -> Optional[EntityNode]:
        return self.entities.get(name)

    def get_edge(self, entity: str, relation: str) -> Optional[RelationEdge]:
        node = self.entities.get(entity)
        return node.relations.get(relation) if node else None

    def edges(self) -> Iterator[RelationEdge]:
        """Iterate over all relation edges in entity order."""
        for node in self.entities.values():
            yield from node.relations.values()

    @property
    def edge_count(self) -> int:
        return sum(len(node.relations) for node in self.entities.values())

    def to_list(self) -> List[Dict[str, Any]]:
        """Convert to the list-of-entities output shape."""
        return [node.to_dict() for node in self.entities.values()]

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Convert to a mapping keyed by entity identity."""
        return {name: node.to_dict() for name, node in self.entities.items()}


@dataclass
class ProbeFailure:
    """A failure recorded while probing or extracting a relation."""
    entity: str
    method: str
    kind: str
    message: str
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "method": self.method,
            "kind": self.kind,
            "message": self.message,
            "hint": self.hint,
        }


# Receives the serialized schema graph
GraphSink = Callable[[List[Dict[str, Any]]], Any]


@dataclass
class SnifferConfig:
    """
    Configuration for a scan.

    exclusions maps "*" (all entities) or an entity identity to method
    names that must never be probed. DEFAULT_EXCLUSIONS always apply.
    """
    exclusions: Dict[str, List[str]] = field(default_factory=dict)
    probe_timeout: Optional[float] = None  # seconds per probed method

    def __post_init__(self):
        normalized: Dict[str, List[str]] = {}
        for key, names in (self.exclusions or {}).items():
            if isinstance(names, str):
                names = [names]
            normalized[str(key)] = [str(n) for n in (names or [])]
        self.exclusions = normalized
        if self.probe_timeout is not None and self.probe_timeout <= 0:
            self.probe_timeout = None

    def global_exclusions(self) -> Set[str]:
        """Method names excluded on every entity."""
        return set(DEFAULT_EXCLUSIONS) | set(self.exclusions.get(GLOBAL_KEY, []))

    def exclusions_for(self, entity: EntityDescriptor) -> Set[str]:
        """Method names excluded on one entity (identity or short class name)."""
        names = set(self.exclusions.get(entity.name, []))
        names.update(self.exclusions.get(entity.short_name, []))
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exclude": self.exclusions,
            "probe_timeout": self.probe_timeout,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> SnifferConfig:
        """
        Create from a dictionary.

        Accepts either {"exclude": {...}, "probe_timeout": N} or a bare
        exclusion mapping such as {"*": ["touch"], "app.models.User": [...]}.
        """
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"Sniffer configuration must be a mapping, got {type(data).__name__}")

        if "exclude" in data or "probe_timeout" in data:
            return cls(
                exclusions=dict(data.get("exclude") or {}),
                probe_timeout=data.get("probe_timeout"),
            )
        return cls(exclusions=dict(data))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> SnifferConfig:
        """Load from a YAML file; a missing file yields the defaults."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Sniffer config file not found: {path}")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        config = cls.from_dict(data)
        logger.info(f"Loaded exclusions for {len(config.exclusions)} keys from {path}")
        return config
