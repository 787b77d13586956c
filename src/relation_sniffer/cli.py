"""
Command-line interface for relation_sniffer.

Provides the sniff command, which scans entity modules for relations and
dumps the resulting schema graph.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from relation_sniffer import __version__
from relation_sniffer.models import ProbeFailure, SchemaGraph, SnifferConfig

console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@click.group()
@click.version_option(version=__version__, prog_name="relation-sniffer")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """
    Relation Sniffer - Infer the relational schema of entity classes

    Probes entity classes for relation methods and dumps the schema graph.
    """
    setup_logging(verbose)


@cli.command()
@click.option(
    "-m",
    "--module",
    "modules",
    type=str,
    multiple=True,
    help="Module defining entity classes (repeatable)",
)
@click.option(
    "-p",
    "--package",
    "packages",
    type=str,
    multiple=True,
    help="Package whose modules define entity classes (repeatable)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML file with method exclusions and probe timeout",
)
@click.option(
    "--exclude",
    type=str,
    multiple=True,
    help="Method name never to probe on any entity (repeatable)",
)
@click.option(
    "--probe-timeout",
    type=float,
    default=None,
    help="Per-method probe timeout in seconds",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "yaml", "mermaid"]),
    default="json",
    help="Output format",
)
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file (default: stdout)",
)
def sniff(
    modules: Tuple[str, ...],
    packages: Tuple[str, ...],
    config: Optional[Path],
    exclude: Tuple[str, ...],
    probe_timeout: Optional[float],
    fmt: str,
    output: Optional[Path],
) -> None:
    """
    Scan entity classes and dump the inferred schema graph.

    Examples:

        # Scan every module of a package and print JSON
        relation-sniffer sniff --package app.models

        # Never probe "publish", write a Mermaid ER diagram
        relation-sniffer sniff -m app.models.blog --exclude publish \\
            --format mermaid --output docs/erd.mmd

        # Use an exclusion config file and a 5 second probe timeout
        relation-sniffer sniff -p app.models --config sniffer.yaml \\
            --probe-timeout 5
    """
    from relation_sniffer.discovery import EntityCatalog, RelationSniffer
    from relation_sniffer.output import GraphWriter

    if not modules and not packages:
        console.print("[red]Error: No entities specified. Use --module or --package[/red]")
        sys.exit(1)

    sniffer_config = SnifferConfig.from_yaml(config) if config else SnifferConfig()
    if exclude:
        sniffer_config.exclusions.setdefault("*", []).extend(exclude)
    if probe_timeout is not None:
        sniffer_config.probe_timeout = probe_timeout if probe_timeout > 0 else None

    classes: List[type] = []
    classes.extend(d.entity_class for d in EntityCatalog.from_modules(modules))
    for package in packages:
        classes.extend(d.entity_class for d in EntityCatalog.from_package(package))
    catalog = EntityCatalog(classes)

    console.print("[bold blue]Relation Sniffer[/bold blue]")
    console.print(f"Entities: {len(catalog)}")

    sniffer = RelationSniffer(catalog, sniffer_config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Sniffing relations...", total=None)
        graph = sniffer.sniff()
        progress.update(task, completed=True)

    _print_summary(graph)
    if sniffer.failures:
        _print_failures(sniffer.failures)

    writer = GraphWriter(fmt)
    if output:
        writer.write(graph, output)
        console.print(f"\n[green]Saved schema graph to: {output}[/green]")
    else:
        click.echo(writer.render(graph), nl=False)


def _print_summary(graph: SchemaGraph) -> None:
    if not graph.edge_count:
        console.print("\n[yellow]No relations discovered.[/yellow]")
        return

    rel_table = Table(title="Discovered Relations")
    rel_table.add_column("Entity", style="cyan")
    rel_table.add_column("Relation", style="green")
    rel_table.add_column("Kind", style="blue")
    rel_table.add_column("Related", style="yellow")
    rel_table.add_column("Keys", style="magenta")

    for edge in graph.edges():
        if edge.is_pivot:
            keys = (
                f"{edge.pivot_table}({edge.foreign_key}, {edge.related_pivot_key}) "
                f"{edge.parent_key} -> {edge.related_key}"
            )
        else:
            keys = f"{edge.foreign_key} -> {edge.local_key}"
        rel_table.add_row(
            edge.source_entity.rsplit(".", 1)[-1],
            edge.relation_name,
            edge.kind.value,
            edge.related_entity.rsplit(".", 1)[-1],
            keys,
        )

    console.print(rel_table)


def _print_failures(failures: List[ProbeFailure]) -> None:
    fail_table = Table(title="Probe Failures")
    fail_table.add_column("Entity", style="cyan")
    fail_table.add_column("Method", style="green")
    fail_table.add_column("Kind", style="yellow")
    fail_table.add_column("Message", style="red")

    for failure in failures:
        message = failure.message
        if failure.hint:
            message = f"{message} ({failure.hint})"
        fail_table.add_row(
            failure.entity.rsplit(".", 1)[-1],
            failure.method,
            failure.kind,
            message,
        )

    console.print(fail_table)


if __name__ == "__main__":
    cli()
