"""noteseek search — fused retrieval for one or more queries."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from noteseek.cli.errors import (
    err_config,
    err_embedding_failed,
    err_empty_corpus,
    err_no_queries,
    err_vector_config,
)
from noteseek.config import ConfigError, load_config
from noteseek.rag.fusion import normalize_queries
from noteseek.rag.retriever import SearchOptions
from noteseek.store import RetrievalStore

console = Console()


def search_cmd(
    queries: Annotated[
        list[str],
        typer.Argument(help="One or more queries; several are fused with RRF."),
    ],
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", "-C", help="Directory holding noteseek.yaml."),
    ] = Path("."),
    mode: Annotated[
        str | None,
        typer.Option("--mode", help="Override retrieval.mode (vector | keyword)."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Override retrieval.top_k."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Override retrieval.min_score."),
    ] = None,
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", help="Rescan corpus directories even if unchanged."),
    ] = False,
) -> None:
    """Retrieve the notes most relevant to QUERIES."""
    if not normalize_queries(queries):
        console.print(err_no_queries())
        raise typer.Exit(1)

    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    options = SearchOptions.from_config(cfg)
    if mode is not None:
        options = replace(options, mode=mode.lower())
    if top_k is not None:
        options = replace(options, top_k=top_k)
    if min_score is not None:
        options = replace(options, min_score=min_score)

    with RetrievalStore.from_config(cfg) as store:
        corpus = store.build(cfg.corpus.dirs, force=rebuild)
        if not corpus:
            console.print(err_empty_corpus(cfg.corpus.dirs))
            raise typer.Exit(1)

        try:
            hits = asyncio.run(store.search_multi(queries, corpus, options))
        except ConfigError as exc:
            console.print(err_vector_config(str(exc), cfg.embedding.key_env))
            raise typer.Exit(1)
        except Exception as exc:  # provider errors surface after LiteLLM retries
            console.print(err_embedding_failed(exc))
            raise typer.Exit(1)

    if not hits:
        console.print("[yellow]No matching notes.[/]")
        return

    table = Table(title=f"Notes ({options.mode})", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Source", style="cyan", overflow="fold")
    table.add_column("Snippet")
    for i, hit in enumerate(hits, start=1):
        table.add_row(str(i), f"{hit.score:.3f}", _display_path(hit.source, project_dir), hit.snippet)
    console.print(table)


def _display_path(source: str, project_dir: Path) -> str:
    """Show *source* relative to the project when it lives inside it."""
    try:
        return str(Path(source).relative_to(project_dir.resolve()))
    except ValueError:
        return source
