"""noteseek warmup — embed the whole corpus ahead of interactive use.

Ctrl-C cancels cooperatively: the batch in flight finishes, everything embedded
so far is saved, and the next run picks up where this one stopped.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from noteseek.cli.errors import (
    err_config,
    err_embedding_failed,
    err_empty_corpus,
    err_vector_config,
    warn_warmup_aborted,
)
from noteseek.config import ConfigError, VectorCfg, load_config
from noteseek.models import Chunk
from noteseek.rag.warmup import ProgressCallback, WarmupResult
from noteseek.store import RetrievalStore

console = Console()


def warmup_cmd(
    project_dir: Annotated[
        Path,
        typer.Option("--project-dir", "-C", help="Directory holding noteseek.yaml."),
    ] = Path("."),
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", help="Rescan corpus directories even if unchanged."),
    ] = False,
) -> None:
    """Pre-compute embeddings for every note so the first search is fast."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    try:
        cfg.embedding.require_complete()
    except ConfigError as exc:
        console.print(err_vector_config(str(exc), cfg.embedding.key_env))
        raise typer.Exit(1)

    with RetrievalStore.from_config(cfg) as store:
        corpus = store.build(cfg.corpus.dirs, force=rebuild)
        if not corpus:
            console.print(err_empty_corpus(cfg.corpus.dirs))
            raise typer.Exit(1)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Embedding…", total=None)

            def _on_progress(done: int, total: int) -> None:
                prog.update(task, completed=done, total=total)

            try:
                result = asyncio.run(_run(store, corpus, cfg.embedding, _on_progress))
            except Exception as exc:  # provider errors surface after LiteLLM retries
                console.print(err_embedding_failed(exc))
                raise typer.Exit(1)

    if result.aborted:
        console.print(warn_warmup_aborted(result.created, result.total))
        raise typer.Exit(130)

    console.print(
        f"[green]✓[/] {result.created} embedded · {result.cached} already cached"
        + (f" · {result.total - result.created} skipped" if result.total > result.created else "")
    )
    if result.cache_path is not None:
        console.print(f"  [dim]Cache: {result.cache_path}[/]")


async def _run(
    store: RetrievalStore,
    corpus: list[Chunk],
    vector: VectorCfg,
    on_progress: ProgressCallback,
) -> WarmupResult:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        installed = True
    try:
        return await store.warmup(corpus, vector, on_progress=on_progress, cancel=cancel)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

