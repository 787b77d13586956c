"""
Relation Sniffer - Infers the relational schema implied by entity classes

Inspects active-record entity classes, finds the methods that build
relations to other entities, and extracts their join keys into a schema
graph suitable for ER diagrams or structural analysis.

Features:
- Static classification from declared return types
- Guarded runtime probing for undeclared relation methods
- No writes reach storage while probing (write guard + rollback)
- JSON, YAML and Mermaid output
"""

__version__ = "0.1.0"

from relation_sniffer.models import (
    EntityDescriptor,
    EntityNode,
    MethodCandidate,
    ProbeFailure,
    RelationEdge,
    RelationKind,
    SchemaGraph,
    SnifferConfig,
)

from relation_sniffer.discovery import (
    EntityCatalog,
    RelationSniffer,
    sniff,
)

from relation_sniffer.output import (
    GraphWriter,
    render_mermaid,
)

__all__ = [
    # Core models
    "EntityDescriptor",
    "EntityNode",
    "MethodCandidate",
    "ProbeFailure",
    "RelationEdge",
    "RelationKind",
    "SchemaGraph",
    "SnifferConfig",
    # Discovery
    "EntityCatalog",
    "RelationSniffer",
    "sniff",
    # Output
    "GraphWriter",
    "render_mermaid",
]
