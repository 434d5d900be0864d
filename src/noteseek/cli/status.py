"""noteseek status — corpus and embedding cache overview."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from noteseek.cli.errors import err_config
from noteseek.config import ConfigError, NoteseekConfig, load_config
from noteseek.ingest.corpus import summarize
from noteseek.models import Chunk
from noteseek.rag.embedding_cache import chunk_identity
from noteseek.store import RetrievalStore

console = Console()


def status_cmd(
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", "-C", help="Directory holding noteseek.yaml."),
    ] = Path("."),
) -> None:
    """Show corpus directories, chunk counts and embedding cache coverage."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    with RetrievalStore.from_config(cfg) as store:
        corpus = store.build(cfg.corpus.dirs)
        _show_corpus_panel(cfg, corpus)
        _show_cache_panel(cfg, store, corpus)


def _show_corpus_panel(cfg: NoteseekConfig, corpus: list[Chunk]) -> None:
    summary = summarize(corpus)
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Kind")
    table.add_column("Directory", overflow="fold")
    table.add_column("Chunks", justify="right")
    for kind, path in sorted(cfg.corpus.dirs.items()):
        exists = path.is_dir()
        count = summary.chunks_by_kind.get(kind, 0)
        table.add_row(
            kind,
            str(path) if exists else f"[dim]{path} (missing)[/]",
            str(count),
        )
    console.print(
        Panel(
            table,
            title=f"[bold]Corpus[/] — {summary.chunks} chunks · {summary.sources} files",
            expand=False,
        )
    )


def _show_cache_panel(cfg: NoteseekConfig, store: RetrievalStore, corpus: list[Chunk]) -> None:
    vector = cfg.embedding
    lines = [
        f"Mode:      {cfg.retrieval.mode}",
        f"Provider:  {vector.provider or '[dim](unset)[/]'}",
        f"Model:     {vector.model or '[dim](unset)[/]'}",
        f"Endpoint:  {vector.base_url or '[dim](unset)[/]'}",
        f"API key:   {'set' if vector.api_key else f'[yellow]missing[/] (${vector.key_env})'}",
    ]
    path = store.cache_path(vector)
    if path is None or not path.exists():
        lines.append("Cache:     [dim]none yet — run: noteseek warmup[/]")
    else:
        cache = store.embedding_cache(vector)
        covered = sum(1 for c in corpus if chunk_identity(c) in cache)
        lines.append(f"Cache:     {path}")
        lines.append(f"Coverage:  {covered}/{len(corpus)} chunks embedded")
    console.print(Panel("\n".join(lines), title="[bold]Embeddings[/]", expand=False))
