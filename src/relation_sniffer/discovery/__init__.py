"""
Relation discovery for active-record entity classes.

This module infers the relations between entities without any schema
declaration, by:
- Enumerating concrete entity classes
- Filtering their methods down to relation candidates
- Classifying declared return types, or probing the method when undeclared
- Extracting join keys and pivot tables from the relation objects

Zero-configuration usage:
    from relation_sniffer.discovery import sniff

    graph = sniff(["app.models"])
"""

from relation_sniffer.discovery.catalog import EntityCatalog
from relation_sniffer.discovery.method_filter import MethodFilter
from relation_sniffer.discovery.classifier import RelationClassifier
from relation_sniffer.discovery.probe import ProbeResult, ProbeSession, SafeProbe
from relation_sniffer.discovery.extractor import MetadataExtractor
from relation_sniffer.discovery.builder import SchemaGraphBuilder
from relation_sniffer.discovery.sniffer import RelationSniffer, sniff

__all__ = [
    "EntityCatalog",
    "MethodFilter",
    "RelationClassifier",
    "SafeProbe",
    "ProbeSession",
    "ProbeResult",
    "MetadataExtractor",
    "SchemaGraphBuilder",
    "RelationSniffer",
    "sniff",
]
