"""
Graph Writer - Dumps a schema graph to JSON, YAML or Mermaid.

Supports:
- JSON (the list-of-entities shape, indented)
- YAML
- Mermaid erDiagram text
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Union

import yaml

from relation_sniffer.models import SchemaGraph
from relation_sniffer.output.mermaid import render_mermaid

logger = logging.getLogger(__name__)

FORMATS = ("json", "yaml", "mermaid")


class GraphWriter:
    """
    Serializes schema graphs.

    Can be used directly as a sink for the serialized graph list, e.g.
    ``sniffer.sniff_to(GraphWriter("json", stream=sys.stdout))``.
    """

    def __init__(self, fmt: str = "json", stream: Optional[TextIO] = None):
        """
        Initialize the writer.

        Args:
            fmt: One of "json", "yaml", "mermaid"
            stream: Stream used when called as a sink (defaults to stdout)
        """
        fmt = fmt.lower()
        if fmt not in FORMATS:
            raise ValueError(f"Unknown output format: {fmt} (expected one of {', '.join(FORMATS)})")
        self.fmt = fmt
        self.stream = stream

    def __call__(self, entities: List[Dict[str, Any]]) -> None:
        """Sink interface: write an already serialized graph to the stream."""
        if self.fmt == "mermaid":
            raise ValueError("Mermaid output needs a SchemaGraph; use render() instead")
        (self.stream or sys.stdout).write(self._dump(entities))

    def render(self, graph: SchemaGraph) -> str:
        """Render a graph to text in the configured format."""
        if self.fmt == "mermaid":
            return render_mermaid(graph)
        return self._dump(graph.to_list())

    def write(self, graph: SchemaGraph, path: Union[str, Path]) -> Path:
        """Render a graph and write it to a file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.render(graph))
        logger.info(f"Wrote {self.fmt} schema graph to {path}")
        return path

    def _dump(self, entities: List[Dict[str, Any]]) -> str:
        if self.fmt == "yaml":
            return yaml.safe_dump(entities, default_flow_style=False, sort_keys=False)
        return json.dumps(entities, indent=2) + "\n"
