"""
Metadata Extractor - Reads join keys and the related entity from a relation.
"""

from __future__ import annotations

import logging
from typing import Any

from relation_sniffer.discovery.probe import ProbeSession
from relation_sniffer.errors import ExtractionError
from relation_sniffer.models import RelationEdge, RelationKind
from relation_sniffer.orm import Relation, qualified_name

logger = logging.getLogger(__name__)


class MetadataExtractor:
    """Builds RelationEdges from confirmed relation methods."""

    def extract(self, session: ProbeSession, relation_name: str, kind: RelationKind) -> RelationEdge:
        """
        Invoke a confirmed relation builder and extract its metadata.

        The builder is invoked again inside the probing session, only to
        obtain a relation object to read from; the kind is not re-derived.

        A builder confirmed by its declared type runs here for the first
        time, so its errors keep their own kind and hint.

        Raises:
            ProbeError: If the builder raises or times out
            ExtractionError: If the builder returns something other than a
                relation, or the relation object lacks an expected accessor
        """
        entity = session.entity.name
        relation = session.invoke(relation_name)

        if not isinstance(relation, Relation):
            raise ExtractionError(
                entity,
                relation_name,
                f"Expected a relation object, got {type(relation).__name__}",
            )

        try:
            return self._edge_from(entity, relation_name, kind, relation)
        except AttributeError as e:
            raise ExtractionError(entity, relation_name, f"Missing relation accessor: {e}") from e

    def _edge_from(self, entity: str, relation_name: str, kind: RelationKind, relation: Any) -> RelationEdge:
        related_entity = qualified_name(type(relation.get_related()))

        if kind.is_pivot:
            return RelationEdge(
                source_entity=entity,
                relation_name=relation_name,
                kind=kind,
                related_entity=related_entity,
                foreign_key=relation.get_foreign_pivot_key_name(),
                parent_key=relation.get_parent_key_name(),
                related_pivot_key=relation.get_related_pivot_key_name(),
                related_key=relation.get_related_key_name(),
                pivot_table=relation.get_table(),
            )

        # Inverse relations keep the authoritative key on the owner side
        is_inverse = hasattr(relation, "get_owner_key_name")
        if is_inverse:
            local_key = relation.get_owner_key_name()
        else:
            local_key = relation.get_local_key_name()

        return RelationEdge(
            source_entity=entity,
            relation_name=relation_name,
            kind=kind,
            related_entity=related_entity,
            foreign_key=relation.get_foreign_key_name(),
            local_key=local_key,
            is_inverse=is_inverse,
        )
