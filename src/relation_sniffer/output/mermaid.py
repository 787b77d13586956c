"""
Mermaid ER diagram rendering for schema graphs.
"""

from __future__ import annotations

from typing import Dict, List, Set, Tuple

from relation_sniffer.models import RelationEdge, RelationKind, SchemaGraph

# Cardinality markers, source side then target side
_CONNECTORS = {
    RelationKind.TO_ONE: "||--o|",
    RelationKind.TO_MANY: "||--o{",
    RelationKind.MANY_TO_MANY_THROUGH_PIVOT: "||--o{",
}
_INVERSE_CONNECTOR = "}o--||"


def render_mermaid(graph: SchemaGraph) -> str:
    """
    Generate a Mermaid ER diagram from the schema graph.

    Entities are drawn by table name with the key columns the relations
    mention. Pivot relations are drawn through their pivot table.

    Args:
        graph: The schema graph

    Returns:
        Mermaid ERD diagram as a string
    """
    tables = {name: node.table for name, node in graph.entities.items()}
    columns: Dict[str, Set[str]] = {table: set() for table in tables.values()}
    links: List[Tuple[str, str, str, str]] = []

    for edge in graph.edges():
        source = tables[edge.source_entity]
        target = tables.get(edge.related_entity, _short(edge.related_entity))
        columns.setdefault(target, set())

        if edge.is_pivot:
            pivot = edge.pivot_table
            columns.setdefault(pivot, set()).update({edge.foreign_key, edge.related_pivot_key})
            columns[source].add(edge.parent_key)
            columns[target].add(edge.related_key)
            links.append((source, "||--o{", pivot, edge.relation_name))
            links.append((target, "||--o{", pivot, edge.relation_name))
        else:
            _add_key_columns(edge, source, target, columns)
            connector = _INVERSE_CONNECTOR if edge.is_inverse else _CONNECTORS[edge.kind]
            links.append((source, connector, target, edge.relation_name))

    lines = ["erDiagram"]
    for table in sorted(columns):
        lines.append(f"    {_mermaid_safe(table)} {{")
        for col in sorted(c for c in columns[table] if c):
            lines.append(f"        string {_mermaid_safe(col)}")
        lines.append("    }")

    for source, connector, target, label in links:
        lines.append(f'    {_mermaid_safe(source)} {connector} {_mermaid_safe(target)} : "{label}"')

    return "\n".join(lines) + "\n"


def _add_key_columns(edge: RelationEdge, source: str, target: str, columns: Dict[str, Set[str]]) -> None:
    if edge.is_inverse:
        columns[source].add(edge.foreign_key)
        columns[target].add(edge.local_key)
    else:
        columns[source].add(edge.local_key)
        columns[target].add(edge.foreign_key)


def _short(name: str) -> str:
    return name.rsplit(".", 1)[-1]


def _mermaid_safe(name: str) -> str:
    """Make a name safe for Mermaid diagrams."""
    return name.replace("-", "_").replace(" ", "_").replace(".", "_")
