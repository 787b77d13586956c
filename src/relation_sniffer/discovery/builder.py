"""
Schema Graph Builder - Aggregates per-entity relation edges into a graph.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from relation_sniffer.models import EntityDescriptor, EntityNode, GraphSink, RelationEdge, SchemaGraph

logger = logging.getLogger(__name__)


class SchemaGraphBuilder:
    """Accumulates entity metadata and relation edges during a scan."""

    def __init__(self):
        self._metadata: Dict[str, Dict[str, str]] = {}
        self._relations: Dict[str, Dict[str, RelationEdge]] = {}

    def add_entity(self, entity: EntityDescriptor) -> None:
        """Record an entity's metadata; only the first encounter counts."""
        if entity.name in self._metadata:
            return
        self._metadata[entity.name] = {
            "table": entity.table_name,
            "class": entity.name,
        }
        self._relations[entity.name] = {}

    def add_edge(self, edge: RelationEdge) -> None:
        if edge.source_entity not in self._metadata:
            raise KeyError(f"Entity {edge.source_entity} was not added before its relations")

        relations = self._relations[edge.source_entity]
        if edge.relation_name in relations:
            logger.warning(
                f"Duplicate relation {edge.relation_name} on {edge.source_entity}; "
                f"keeping the last one"
            )
        relations[edge.relation_name] = edge

    def build(self) -> SchemaGraph:
        """Return the immutable graph for everything added so far."""
        return SchemaGraph(entities={
            name: EntityNode(
                table=meta["table"],
                class_name=meta["class"],
                relations=self._relations[name],
            )
            for name, meta in self._metadata.items()
        })

    def emit(self, sink: GraphSink) -> Any:
        """Build the graph and hand its serialized form to a sink."""
        return sink(self.build().to_list())
