"""
Relation Sniffer - Infers the schema graph implied by entity classes.

Ties the catalog, method filter, classifier, safe probe, metadata extractor
and graph builder together. Entities are scanned one at a time and methods
one at a time; a failing method or entity never stops the scan.

Usage:
    from relation_sniffer import sniff

    graph = sniff(["app.models"], exclusions={"*": ["touch"]})
    print(graph.to_list())
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from relation_sniffer.discovery.builder import SchemaGraphBuilder
from relation_sniffer.discovery.catalog import EntityCatalog
from relation_sniffer.discovery.classifier import RelationClassifier
from relation_sniffer.discovery.extractor import MetadataExtractor
from relation_sniffer.discovery.method_filter import MethodFilter
from relation_sniffer.discovery.probe import ProbeResult, SafeProbe
from relation_sniffer.errors import DiscoveryError, ExtractionError, ProbeError
from relation_sniffer.models import EntityDescriptor, GraphSink, ProbeFailure, SchemaGraph, SnifferConfig

logger = logging.getLogger(__name__)


class RelationSniffer:
    """
    Scans entity classes and infers their relations.

    Discovery stages per entity:
    1. Method filter picks zero-argument public instance methods
    2. Declared return types classify what they can without executing
    3. Remaining candidates are invoked under a write guard and rollback
    4. Confirmed relations are invoked again to read their join keys
    """

    def __init__(
        self,
        catalog: EntityCatalog,
        config: Optional[SnifferConfig] = None,
        classifier: Optional[RelationClassifier] = None,
    ):
        """
        Initialize the sniffer.

        Args:
            catalog: Entities to scan
            config: Exclusions and probe timeout
            classifier: Relation classifier (defaults to the orm Relation base)
        """
        self.catalog = catalog
        self.config = config or SnifferConfig()
        self.method_filter = MethodFilter(self.config)
        self.classifier = classifier or RelationClassifier()
        self.probe = SafeProbe(self.classifier, timeout=self.config.probe_timeout)
        self.extractor = MetadataExtractor()
        self.failures: List[ProbeFailure] = []

    def sniff(self) -> SchemaGraph:
        """
        Scan every entity in the catalog.

        Returns:
            SchemaGraph with one node per entity that could be probed
        """
        self.failures = []
        builder = SchemaGraphBuilder()

        logger.info(f"Sniffing relations on {len(self.catalog)} entities")

        for entity in self.catalog:
            self._sniff_entity(entity, builder)

        graph = builder.build()
        logger.info(
            f"Sniffing complete: {len(graph)} entities, "
            f"{graph.edge_count} relations, {len(self.failures)} failures"
        )
        return graph

    def sniff_to(self, sink: GraphSink) -> Any:
        """Scan and hand the serialized graph to a sink."""
        return sink(self.sniff().to_list())

    def _sniff_entity(self, entity: EntityDescriptor, builder: SchemaGraphBuilder) -> None:
        candidates = self.method_filter.candidates(entity)
        logger.debug(f"{entity.short_name}: {len(candidates)} candidate methods")

        try:
            with self.probe.session(entity) as session:
                builder.add_entity(entity)

                confirmed: List[ProbeResult] = []
                for method in candidates:
                    result = session.probe_method(method)
                    if result.is_relation:
                        confirmed.append(result)

                for result in confirmed:
                    try:
                        edge = self.extractor.extract(session, result.method.name, result.kind)
                    except (ProbeError, ExtractionError) as e:
                        session.record(e)
                        continue
                    builder.add_edge(edge)

                self.failures.extend(session.failures)
        except DiscoveryError as e:
            logger.debug(f"Skipping {entity.name}: {e}")


def sniff(
    targets: Iterable[Union[str, type]],
    exclusions: Optional[Dict[str, List[str]]] = None,
    probe_timeout: Optional[float] = None,
) -> SchemaGraph:
    """
    Convenience function to scan entity classes and modules.

    Args:
        targets: Entity classes, or module/package names to import and walk
        exclusions: {"*": [...], <entity identity>: [...]} method exclusions
        probe_timeout: Optional per-method timeout in seconds

    Returns:
        SchemaGraph with the inferred relations

    Example:
        graph = sniff(["app.models"])

        graph = sniff([Author, Book], exclusions={"*": ["publish"]})
    """
    classes: List[type] = []
    for target in targets:
        if isinstance(target, str):
            classes.extend(d.entity_class for d in EntityCatalog.from_package(target))
        else:
            classes.append(target)

    config = SnifferConfig(exclusions=exclusions or {}, probe_timeout=probe_timeout)
    return RelationSniffer(EntityCatalog(classes), config).sniff()
