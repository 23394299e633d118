import json
import asyncio
import logging
import sys
from pathlib import Path

from typer import Typer, Option, Argument, Exit
from typing import Annotated, Any, Optional
from rich.markdown import Markdown
from rich.panel import Panel
from rich.console import Console
from rich.logging import RichHandler

from .config import EmbeddingConfig, RetrievalSettings, resolve_db_path
from .embeddings import EmbeddingProvider
from .service import KnowledgeService
from .storage import DuckDBKnowledgeStore

app = Typer(help="Query agent knowledge tables stored in DuckDB.")

DbPathOption = Annotated[
    Optional[str],
    Option("--db-path", help="DuckDB database path (defaults to AGENT_KNOWLEDGE_DB_PATH)."),
]
TenantOption = Annotated[Optional[str], Option("--tenant", help="Tenant that owns the table.")]
AgentOption = Annotated[Optional[str], Option("--agent", help="Agent the table belongs to.")]
TableIdOption = Annotated[Optional[str], Option("--table-id", help="Table primary key.")]
TableNameOption = Annotated[
    Optional[str], Option("--table-name", help="Table name within tenant and agent.")
]
JsonOption = Annotated[bool, Option("--json", help="Print the raw response as JSON.")]


@app.callback()
def configure(
    log_level: Annotated[
        str, Option("--log-level", help="Logging level for diagnostic output.")
    ] = "WARNING",
) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def build_provider() -> EmbeddingProvider:
    return EmbeddingProvider(EmbeddingConfig.from_env())


def build_service(db_path: str | None) -> tuple[KnowledgeService, DuckDBKnowledgeStore]:
    store = DuckDBKnowledgeStore(resolve_db_path(db_path))
    service = KnowledgeService(
        store,
        embedding_provider=build_provider(),
        settings=RetrievalSettings(),
    )
    return service, store


def run_operation(db_path: str | None, operation: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
    service, store = build_service(db_path)
    try:
        return asyncio.run(getattr(service, operation)(*args, **kwargs))
    finally:
        store.close()


def _request(
    *,
    tenant: str | None,
    agent: str | None,
    table_id: str | None,
    table_name: str | None,
    **extra: Any,
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "tenant_id": tenant,
        "agent_id": agent,
        "table_id": table_id,
        "table_name": table_name,
    }
    request.update({key: value for key, value in extra.items() if value is not None})
    return request


def render(response: dict[str, Any], *, as_json: bool, title: str, body: str) -> None:
    console = Console()
    if as_json:
        console.print_json(json.dumps(response, default=str))
    elif not response.get("success"):
        console.print(
            Panel(
                Markdown(f"**{response.get('code')}**: {response.get('message')}"),
                title_align="left",
                title="Request failed",
                border_style="bold red",
            )
        )
    else:
        console.print(
            Panel(
                Markdown(body),
                title_align="left",
                title=title,
                border_style="bold green",
            )
        )
    if not response.get("success"):
        raise Exit(code=1)


@app.command()
def search(
    query: Annotated[
        Optional[str], Option("--query", "-q", help="Natural-language query; omit to browse.")
    ] = None,
    tenant: TenantOption = None,
    agent: AgentOption = None,
    table_id: TableIdOption = None,
    table_name: TableNameOption = None,
    top_k: Annotated[Optional[int], Option("--top-k", help="Maximum number of results.")] = None,
    threshold: Annotated[
        Optional[float], Option("--threshold", help="Minimum similarity for vector results.")
    ] = None,
    page: Annotated[int, Option("--page", help="Browse page (1-based).")] = 1,
    limit: Annotated[Optional[int], Option("--limit", help="Browse page size.")] = None,
    deadline: Annotated[
        Optional[float], Option("--deadline", help="Overall search budget in seconds.")
    ] = None,
    db_path: DbPathOption = None,
    as_json: JsonOption = False,
) -> None:
    """Search a knowledge table, or browse it when no query is given."""
    request = _request(
        tenant=tenant,
        agent=agent,
        table_id=table_id,
        table_name=table_name,
        query=query,
        top_k=top_k,
        similarity_threshold=threshold,
        page=page,
        limit=limit,
        deadline=deadline,
    )
    response = run_operation(db_path, "search", request)

    if response.get("search_method") == "browse":
        pagination = response["pagination"]
        lines = [f"[Chunk {row['chunk_index']}] {row['content']}" for row in response["data"]]
        body = (
            f"Page {pagination['page']} of {pagination['total_pages']} "
            f"({pagination['total_count']} chunks)\n\n" + "\n\n".join(lines)
        )
        title = "Browse"
    else:
        body = f"{response.get('summary', '')}\n\n{response.get('formatted_context', '')}"
        title = f"Search ({response.get('search_method')})"
    render(response, as_json=as_json, title=title, body=body)


@app.command("search-content")
def search_content(
    query: Annotated[str, Option("--query", "-q", help="Phrase to look for in chunk content.")],
    tenant: TenantOption = None,
    agent: AgentOption = None,
    table_id: TableIdOption = None,
    table_name: TableNameOption = None,
    limit: Annotated[int, Option("--limit", help="Maximum rows to scan.")] = 500,
    db_path: DbPathOption = None,
    as_json: JsonOption = False,
) -> None:
    """List the chunk indexes whose content contains a phrase."""
    request = _request(
        tenant=tenant, agent=agent, table_id=table_id, table_name=table_name, query=query
    )
    response = run_operation(db_path, "search_content", request, limit=limit)
    indexes = ", ".join(str(index) for index in response.get("chunk_indexes", []))
    body = f"Chunks matching `{query}`: {indexes or 'none'}"
    render(response, as_json=as_json, title="Content search", body=body)


@app.command()
def chunk(
    chunk_index: Annotated[int, Argument(help="Chunk index to fetch.")],
    tenant: TenantOption = None,
    agent: AgentOption = None,
    table_id: TableIdOption = None,
    table_name: TableNameOption = None,
    limit: Annotated[int, Option("--limit", help="Maximum rows to return.")] = 100,
    db_path: DbPathOption = None,
    as_json: JsonOption = False,
) -> None:
    """Show every active row stored under one chunk index."""
    request = _request(tenant=tenant, agent=agent, table_id=table_id, table_name=table_name)
    response = run_operation(db_path, "get_chunk", request, chunk_index, limit=limit)
    body = "\n\n---\n\n".join(row["content"] for row in response.get("rows", [])) or "_No rows._"
    render(response, as_json=as_json, title=f"Chunk {chunk_index}", body=body)


@app.command()
def inspect(
    tenant: TenantOption = None,
    agent: AgentOption = None,
    table_id: TableIdOption = None,
    table_name: TableNameOption = None,
    db_path: DbPathOption = None,
    as_json: JsonOption = False,
) -> None:
    """Show table metadata and chunk statistics."""
    request = _request(tenant=tenant, agent=agent, table_id=table_id, table_name=table_name)
    response = run_operation(db_path, "inspect_table", request)
    body = ""
    if response.get("success"):
        stats = response["stats"]
        body = "\n".join(
            [
                f"**Table:** {response['table']['name']} (`{response['table']['id']}`)",
                f"- vectors: {stats['total_vectors']}",
                f"- distinct chunks: {stats['distinct_chunks']}",
                f"- embedded vectors: {stats['embedded_vectors']}",
                f"- last updated: {stats['last_updated_at']}",
            ]
        )
    render(response, as_json=as_json, title="Inspect", body=body)


@app.command()
def embed(
    texts: Annotated[Optional[list[str]], Argument(help="Texts to embed.")] = None,
    file: Annotated[
        Optional[Path],
        Option("--file", "-f", help="Read one text per line from a file ('-' for stdin)."),
    ] = None,
    batch_size: Annotated[
        Optional[int],
        Option("--batch-size", help="Concurrent embedding calls per batch (default from settings)."),
    ] = None,
) -> None:
    """Embed texts with the configured provider and print the vectors as JSON."""
    inputs = list(texts or [])
    if file is not None:
        source = sys.stdin.read() if str(file) == "-" else file.read_text(encoding="utf-8")
        inputs.extend(line for line in source.splitlines() if line.strip())
    if not inputs:
        Console(stderr=True).print("[bold red]No texts to embed[/]")
        raise Exit(code=1)
    if batch_size is None:
        batch_size = RetrievalSettings().embedding_batch_size
    if batch_size < 1:
        Console(stderr=True).print("[bold red]--batch-size must be >= 1[/]")
        raise Exit(code=1)

    provider = build_provider()
    vectors = asyncio.run(provider.generate_embeddings_batch(inputs, batch_size=batch_size))
    payload = [
        {"index": index, "text": text, "embedding": vector}
        for index, (text, vector) in enumerate(zip(inputs, vectors))
    ]
    Console().print_json(json.dumps(payload))
    if any(vector is None for vector in vectors):
        raise Exit(code=1)


@app.command()
def ping() -> None:
    """Check that the embedding provider answers a test request."""
    provider = build_provider()
    console = Console()
    if not provider.is_configured():
        console.print("[bold yellow]Embedding provider not configured (set GOOGLE_API_KEY)[/]")
        raise Exit(code=1)
    ok = asyncio.run(provider.test_connection())
    details = json.dumps(provider.describe(), indent=2)
    panel = Panel(
        Markdown(f"```\n{details}\n```"),
        title_align="left",
        title="Provider reachable" if ok else "Provider unreachable",
        border_style="bold green" if ok else "bold red",
    )
    console.print(panel)
    if not ok:
        raise Exit(code=1)
