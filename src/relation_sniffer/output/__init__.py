"""
Output module for dumping schema graphs.

Supports:
- JSON and YAML dumps of the entity list
- Mermaid ER diagrams
"""

from relation_sniffer.output.writer import FORMATS, GraphWriter
from relation_sniffer.output.mermaid import render_mermaid

__all__ = [
    "FORMATS",
    "GraphWriter",
    "render_mermaid",
]
