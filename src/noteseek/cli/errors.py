"""noteseek rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from noteseek.cli.errors import err_vector_config
    console.print(err_vector_config(str(exc), cfg.embedding.key_env))
    raise typer.Exit(1)
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path


def err_config(message: str) -> str:
    """noteseek.yaml or the global config could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix noteseek.yaml (or ~/.noteseek/config.yaml) and retry."
    )


def err_vector_config(message: str, key_env: str) -> str:
    """Vector mode requested without a complete embedding provider config.

    Example:
        Vector retrieval config incomplete: missing api_key.
          Set:  export NOTESEEK_EMBEDDING_API_KEY=...
    """
    return (
        f"[red]Error:[/] {message}\n"
        "  Configure the provider in noteseek.yaml:\n"
        "    embedding:\n"
        "      provider: openai_compatible\n"
        "      base_url: https://api.example.com/v1\n"
        "      model: text-embedding-3-small\n"
        f"  Set:  export {key_env}=sk-...\n"
        "  Or search without embeddings:  noteseek search --mode keyword ..."
    )


def err_empty_corpus(dirs: Mapping[str, Path]) -> str:
    """No chunks were produced from the configured directories."""
    listing = "\n".join(f"    {kind}: {path}" for kind, path in dirs.items()) or "    (none)"
    return (
        "[yellow]No notes found.[/] None of the corpus directories contain .md/.txt files:\n"
        f"{listing}\n"
        "  Add files there or set corpus.dirs in noteseek.yaml."
    )


def err_no_queries() -> str:
    """Every query was blank."""
    return (
        "[red]Error:[/] No non-empty query given.\n"
        '  Run:  noteseek search "your question" ["another angle" ...]'
    )


def err_embedding_failed(exc: BaseException) -> str:
    """The embedding provider failed after its retries."""
    return (
        f"[red]Error:[/] Embedding request failed: {exc}\n"
        "  Check embedding.base_url, the model name and your API key, or raise\n"
        "  embedding.timeout_sec / embedding.max_retries in noteseek.yaml."
    )


def warn_warmup_aborted(done: int, total: int) -> str:
    """Warmup was cancelled before all chunks were embedded."""
    return (
        f"[yellow]⚠[/] Warmup cancelled after {done}/{total} chunks.\n"
        "  Progress so far is saved. Run:  noteseek warmup  to finish."
    )
