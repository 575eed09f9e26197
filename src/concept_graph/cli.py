"""CLI interface for Concept Graph using Typer."""

import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from concept_graph import __version__
from concept_graph.config import Provider, settings
from concept_graph.errors import ConfigError, ProviderUnavailableError, StorageError

app = typer.Typer(
    name="conceptgraph",
    help="Concept Graph - build weighted concept graphs from documents with LLMs",
    add_completion=False,
)
console = Console()

EXIT_CONFIG = 1
EXIT_UNREACHABLE = 2


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Build and analyze concept graphs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _resolve_provider(name: Optional[str]) -> Provider:
    if name is None:
        return settings.provider
    try:
        return Provider(name.lower())
    except ValueError:
        available = ", ".join(p.value for p in Provider)
        console.print(f"[red]Unknown provider '{name}'. Available: {available}[/red]")
        raise typer.Exit(EXIT_CONFIG)


def _load_graph(source: str, graph_file: Optional[Path], tenant: Optional[str]):
    """Read the graph for analytics commands from a JSON file or the Kuzu store."""
    from concept_graph.export import load_json

    tenant = tenant or settings.tenant
    if graph_file is not None or source == "json":
        path = graph_file or settings.graph_json_path
        if not path.exists():
            console.print(f"[red]Graph file not found: {path}. Run 'conceptgraph build' first.[/red]")
            raise typer.Exit(1)
        return load_json(path)

    if source != "kuzu":
        console.print(f"[red]Unknown source '{source}'. Use 'json' or 'kuzu'.[/red]")
        raise typer.Exit(1)

    from concept_graph.storage import KuzuStore

    store = KuzuStore()
    try:
        return store.load_graph(tenant)
    finally:
        store.close()


@app.command()
def build(
    path: Path = typer.Argument(..., help="File or directory to extract concepts from"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="openai, anthropic, google or ollama"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", min=1, help="Concurrent LLM calls"),
    append: bool = typer.Option(False, "--append", help="Merge into the existing graph instead of replacing it"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant label for stored nodes and edges"),
    domain: Optional[str] = typer.Option(None, "--domain", help="Domain context added to the extraction prompt"),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore and remove the progress checkpoint"),
    output: str = typer.Option("json", "--output", "-o", help="Where to write the graph: json or kuzu"),
    recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="Descend into subdirectories"),
):
    """Extract relations from documents and build the concept graph."""
    from concept_graph.export import export_json, load_json
    from concept_graph.extraction import CheckpointStore, ExtractionOrchestrator, select_documents
    from concept_graph.graph import GraphBuilder, TextChunker, detect_communities
    from concept_graph.llm import create_extractor
    from concept_graph.parsers import collect_documents

    if output not in ("json", "kuzu"):
        console.print(f"[red]Unknown output '{output}'. Use 'json' or 'kuzu'.[/red]")
        raise typer.Exit(1)

    provider_enum = _resolve_provider(provider)
    tenant = tenant or settings.tenant
    model_name = model or settings.model_for(provider_enum)
    settings.ensure_directories()

    # Collect files to process
    try:
        documents = collect_documents(path, recursive=recursive)
    except FileNotFoundError:
        console.print(f"[red]Path not found: {path}[/red]")
        raise typer.Exit(1)

    documents = select_documents(
        documents,
        threshold=settings.selection_threshold,
        max_per_dir=settings.max_docs_per_dir,
        min_chars=settings.min_document_chars,
    )
    if not documents:
        console.print("[yellow]No documents to process.[/yellow]")
        raise typer.Exit(0)

    chunker = TextChunker.for_model(model_name, settings.reserved_tokens)
    chunks = [
        chunk
        for doc in documents
        for chunk in chunker.chunk_document(doc.text, doc.source_path)
    ]

    console.print(
        f"\n[bold]{len(documents)} documents, {len(chunks)} chunks[/bold] "
        f"({provider_enum.value}/{model_name}, {chunker.plan.target_chars} chars per chunk)\n"
    )

    target = settings.graph_json_path if output == "json" else settings.kuzu_db_path
    checkpoint = CheckpointStore(
        settings.checkpoint_path,
        scope={
            "input": str(path.resolve()),
            "output": f"{output}:{target.resolve()}",
            "tenant": tenant,
        },
    )
    # Progress without the graph it produced cannot be resumed
    if fresh or (output == "json" and not settings.graph_json_path.exists()):
        checkpoint.reset()

    try:
        extractor = create_extractor(provider_enum, settings, model=model_name)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_CONFIG)

    builder = GraphBuilder(tenant=tenant)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Extracting relations", total=len(chunks))

        orchestrator = ExtractionOrchestrator(
            extractor,
            concurrency=concurrency or settings.resolve_concurrency(provider_enum),
            checkpoint=checkpoint,
            domain_context=domain or settings.domain_context,
            max_split_depth=settings.max_split_depth,
            call_timeout=settings.request_timeout,
            transient_attempts=settings.transient_attempts,
            on_result=lambda chunk, triples: builder.add_relations(triples),
            on_progress=lambda report: progress.update(task, completed=report.completed + report.resumed),
        )

        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
        try:
            run = orchestrator.run(chunks)
        except ConfigError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(EXIT_CONFIG)
        except ProviderUnavailableError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(EXIT_UNREACHABLE)
        finally:
            signal.signal(signal.SIGINT, previous_handler)

    builder.add_chunk_proximity()
    report = run.report

    # A resumed run only holds the new chunks; union it with earlier output
    merge = append or report.resumed > 0
    if output == "json" and merge and settings.graph_json_path.exists():
        builder.absorb(load_json(settings.graph_json_path))

    graph = builder.finalize()
    detect_communities(graph)

    if output == "json":
        export_json(graph, settings.graph_json_path)
        destination = str(settings.graph_json_path)
    else:
        from concept_graph.storage import KuzuStore

        store = KuzuStore()
        try:
            if merge:
                store.merge_graph(graph, tenant)
            else:
                store.store_graph(graph, tenant)
        except StorageError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        finally:
            store.close()
        destination = f"kuzu:{settings.kuzu_db_path} (tenant '{tenant}')"

    border = "green" if not (report.failed or report.skipped or report.cancelled) else "yellow"
    console.print(
        Panel(
            f"{report.summary()}\n"
            f"Concepts: {graph.node_count}, relationships: {graph.edge_count}"
            + (f", dropped triples: {builder.dropped}" if builder.dropped else "")
            + f"\nSaved to {destination}",
            title="Build complete" if not report.cancelled else "Build interrupted",
            border_style=border,
        )
    )

    if report.errors:
        table = Table(title="Chunk errors")
        table.add_column("Chunk", style="cyan")
        table.add_column("Kind")
        table.add_column("Message")
        for error in report.errors[:10]:
            table.add_row(error.chunk_key, error.kind, error.message[:80])
        console.print(table)
        if len(report.errors) > 10:
            console.print(f"... and {len(report.errors) - 10} more")


@app.command()
def stats(
    source: str = typer.Option("json", "--source", help="Read the graph from json or kuzu"),
    graph_file: Optional[Path] = typer.Option(None, "--graph", "-g", help="JSON graph file"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant to read from the store"),
    top: int = typer.Option(10, "--top", "-n", help="Number of top concepts to show"),
):
    """Show graph statistics and the most central concepts."""
    from concept_graph.graph import compute_stats

    graph = _load_graph(source, graph_file, tenant)
    result = compute_stats(graph, top=top)

    table = Table(title="Graph statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Concepts", str(result.node_count))
    table.add_row("Relationships", str(result.edge_count))
    table.add_row("Connected components", str(result.connected_components))
    table.add_row("Communities", str(result.community_count))
    table.add_row("Density", f"{result.density:.4f}")
    table.add_row("Average degree", f"{result.avg_degree:.2f}")
    table.add_row("Max degree", str(result.max_degree))
    console.print(table)

    if result.top_centrality:
        ranking = Table(title="Most central concepts")
        ranking.add_column("#", justify="right")
        ranking.add_column("Concept", style="cyan")
        ranking.add_column("PageRank", justify="right")
        ranking.add_column("Degree", justify="right")
        for i, (node_id, score) in enumerate(result.top_centrality, start=1):
            ranking.add_row(str(i), graph.nodes[node_id].label, f"{score:.4f}", str(len(graph.neighbors(node_id))))
        console.print(ranking)


@app.command()
def communities(
    source: str = typer.Option("json", "--source", help="Read the graph from json or kuzu"),
    graph_file: Optional[Path] = typer.Option(None, "--graph", "-g", help="JSON graph file"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant to read from the store"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of communities to show"),
):
    """Detect communities with label propagation."""
    from concept_graph.graph import community_summary, detect_communities

    graph = _load_graph(source, graph_file, tenant)
    detect_communities(graph)
    summary = community_summary(graph)

    if not summary:
        console.print("[yellow]The graph is empty.[/yellow]")
        return

    table = Table(title=f"{len(summary)} communities")
    table.add_column("Community", justify="right", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Members")
    for community_id, members in summary[:limit]:
        shown = ", ".join(graph.nodes[m].label for m in members[:8])
        if len(members) > 8:
            shown += ", ..."
        table.add_row(str(community_id), str(len(members)), shown)
    console.print(table)


@app.command()
def path(
    source_concept: str = typer.Argument(..., metavar="FROM", help="Start concept"),
    target_concept: str = typer.Argument(..., metavar="TO", help="End concept"),
    source: str = typer.Option("json", "--source", help="Read the graph from json or kuzu"),
    graph_file: Optional[Path] = typer.Option(None, "--graph", "-g", help="JSON graph file"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant to read from the store"),
):
    """Find the lowest-weight path between two concepts."""
    from concept_graph.graph import shortest_path

    graph = _load_graph(source, graph_file, tenant)
    result = shortest_path(graph, source_concept, target_concept)

    if result is None:
        console.print(f"[yellow]No path between '{source_concept}' and '{target_concept}'.[/yellow]")
        return

    labels = [graph.nodes[node_id].label for node_id in result.nodes]
    console.print(
        Panel(
            " -> ".join(labels),
            title=f"{result.hops} hops, cost {result.cost:g}",
            border_style="blue",
        )
    )


@app.command()
def query(
    text: str = typer.Argument(..., help="Concept name or part of it"),
    depth: int = typer.Option(1, "--depth", "-d", min=1, help="Neighborhood depth"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of matching concepts"),
    source: str = typer.Option("json", "--source", help="Read the graph from json or kuzu"),
    graph_file: Optional[Path] = typer.Option(None, "--graph", "-g", help="JSON graph file"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant to read from the store"),
):
    """Search concepts and show their neighborhood."""
    if source == "kuzu" and graph_file is None:
        from concept_graph.storage import KuzuStore

        store = KuzuStore()
        try:
            matches = [item["id"] for item in store.search_concepts(text, tenant, limit)]
            neighborhoods = [(match, store.neighbors(match, tenant, depth)) for match in matches]
        finally:
            store.close()
    else:
        from concept_graph.graph import find_concepts, neighborhood

        graph = _load_graph(source, graph_file, tenant)
        matches = find_concepts(graph, text, limit)
        neighborhoods = [(match, neighborhood(graph, match, depth)) for match in matches]

    if not neighborhoods:
        console.print(f"[yellow]No concept matches '{text}'.[/yellow]")
        return

    for match, result in neighborhoods:
        table = Table(title=f"{match} ({len(result['concepts']) - 1} related concepts)")
        table.add_column("Source", style="cyan")
        table.add_column("Relation")
        table.add_column("Target", style="cyan")
        table.add_column("Weight", justify="right")
        for relation in sorted(result["relations"], key=lambda r: -r["weight"]):
            table.add_row(relation["source"], relation["relation"], relation["target"], f"{relation['weight']:g}")
        console.print(table)


@app.command()
def export(
    export_format: str = typer.Option("json", "--format", "-f", help="json, csv or graphml"),
    output: Path = typer.Option(..., "--output", "-o", help="Output file (CSV writes <name>_nodes.csv and <name>_edges.csv)"),
    source: str = typer.Option("json", "--source", help="Read the graph from json or kuzu"),
    graph_file: Optional[Path] = typer.Option(None, "--graph", "-g", help="JSON graph file"),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant to read from the store"),
):
    """Export the graph to JSON, CSV or GraphML."""
    from concept_graph.export import EXPORT_FORMATS, export_csv, export_graphml, export_json
    from concept_graph.graph import detect_communities, rank_by_centrality

    if export_format not in EXPORT_FORMATS:
        console.print(f"[red]Unknown format '{export_format}'. Use one of: {', '.join(EXPORT_FORMATS)}[/red]")
        raise typer.Exit(1)

    graph = _load_graph(source, graph_file, tenant)
    if any(node.community is None for node in graph.nodes.values()):
        detect_communities(graph)

    if export_format == "json":
        analytics = {"pagerank": dict(rank_by_centrality(graph))}
        written = [export_json(graph, output, analytics=analytics)]
    elif export_format == "csv":
        written = list(
            export_csv(
                graph,
                output.with_name(f"{output.stem}_nodes.csv"),
                output.with_name(f"{output.stem}_edges.csv"),
            )
        )
    else:
        written = [export_graphml(graph, output)]

    for item in written:
        console.print(f"[green]✓[/green] {item}")


@app.command()
def version():
    """Show version information."""
    console.print(f"Concept Graph v{__version__}")


if __name__ == "__main__":
    app()
