"""Click CLI with analyze, files, cache and serve subcommands."""

from __future__ import annotations

import asyncio
import json
import logging

import click

from repo_graph import __version__
from repo_graph.config import EngineConfig
from repo_graph.errors import RepoGraphError
from repo_graph.models import AnalysisRequest, SourceKind
from repo_graph.service import DependencyService

_KIND_COLORS = {
    SourceKind.PRIMARY_CLASS.value: "yellow",
    SourceKind.COMPONENT.value: "magenta",
    SourceKind.TEST.value: "green",
    SourceKind.OTHER.value: "white",
}


def _run(service: DependencyService, coro):
    async def _main():
        try:
            return await coro
        finally:
            await service.close()

    try:
        return asyncio.run(_main())
    except RepoGraphError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """repo-graph: cross-repository dependency graphs for source repositories."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)


def _service(ctx: click.Context) -> DependencyService:
    factory = ctx.obj.get("service_factory") if ctx.obj else None
    return factory() if factory else DependencyService(EngineConfig.from_env())


@cli.command()
@click.argument("target_file")
@click.option("--repo", "-r", "repositories", multiple=True, required=True,
              help="Repository to search (org/repo); repeat for several")
@click.option("--target-repo", "-t", help="Repository holding TARGET_FILE (defaults to the first --repo)")
@click.option("--org", help="Organization for bare repository names")
@click.option("--depth", "-d", "max_depth", default=2, show_default=True, help="Maximum traversal depth")
@click.option("--method-level/--file-level", default=True, help="Graph granularity")
@click.option("--content", "include_content", is_flag=True, help="Attach content excerpts to nodes")
@click.option("--dependents", "include_dependents", is_flag=True, help="Also find files that use the target")
@click.option("--json", "as_json", is_flag=True, help="Print the graph as JSON")
@click.pass_context
def analyze(
    ctx: click.Context,
    target_file: str,
    repositories: tuple[str, ...],
    target_repo: str | None,
    org: str | None,
    max_depth: int,
    method_level: bool,
    include_content: bool,
    include_dependents: bool,
    as_json: bool,
):
    """Analyze TARGET_FILE and print its dependency graph."""
    service = _service(ctx)
    try:
        search = [service.parse_repository(r, org) for r in repositories]
        request = AnalysisRequest(
            repositories=search,
            target_file=target_file,
            target_repo=service.parse_repository(target_repo, org) if target_repo else search[0],
            max_depth=max_depth,
            include_method_level=method_level,
            include_content=include_content,
            include_dependents=include_dependents,
        )
    except RepoGraphError as e:
        raise click.ClickException(str(e))
    graph = _run(service, service.analyze(request))

    if as_json:
        click.echo(json.dumps(graph.to_dict(), indent=2))
        return

    meta = graph.metadata
    click.echo(f"\n{click.style(meta.analyzed_file, fg='cyan')}: "
               f"{meta.node_count} node(s), {meta.link_count} link(s), "
               f"{meta.cross_repository_link_count} cross-repository\n")
    for node in graph.nodes:
        color = _KIND_COLORS.get(node.kind.value, "white")
        click.echo(f"  {click.style(node.kind.value, fg=color):>24}  {node.name}  "
                   f"{click.style(node.repository.full_name, dim=True)}  depth {node.depth}")
    if graph.links:
        click.echo()
        for link in graph.links:
            marker = click.style(" [cross-repo]", fg="red") if link.cross_repository else ""
            click.echo(f"  {link.source_id} -[{link.relation.value}]-> {link.target_id}{marker}")
    if meta.unresolved_reference_count:
        click.echo(f"\nUnresolved references: {meta.unresolved_reference_count}")
    if meta.truncated:
        click.echo(click.style(f"Truncated: {', '.join(meta.truncation_reasons)}", fg="yellow"))


@cli.command()
@click.argument("repo")
@click.option("--org", help="Organization for a bare repository name")
@click.option("--refresh", is_flag=True, help="Bypass cached listings")
@click.pass_context
def files(ctx: click.Context, repo: str, org: str | None, refresh: bool):
    """List the classified source files of REPO."""
    service = _service(ctx)
    listing = _run(service, service.list_repository_files(repo, org, force_refresh=refresh))

    click.echo(f"\n{listing['repository']}: {listing['totalCount']} file(s)"
               f"{' (truncated)' if listing['truncated'] else ''}\n")
    for kind, entries in listing["files"].items():
        click.echo(click.style(f"{kind} ({len(entries)})", fg=_KIND_COLORS.get(kind, "white")))
        for entry in entries:
            click.echo(f"  {entry['path']}")


@cli.group()
def cache():
    """Inspect and manage the on-disk caches."""


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context):
    """Show entry counts per cache category."""
    service = _service(ctx)
    stats = service.cache_stats()
    for name, counts in stats["perCategory"].items():
        click.echo(f"  {name:<14} total {counts['total']:>5}  active {counts['active']:>5}  "
                   f"expired {counts['expired']:>5}")
    click.echo(f"Total: {stats['combinedTotal']} ({stats['combinedExpired']} expired)")


@cache.command("clean")
@click.pass_context
def cache_clean(ctx: click.Context):
    """Remove expired entries."""
    removed = _service(ctx).clean_expired()
    click.echo(f"Removed {sum(removed.values())} expired entr{'y' if sum(removed.values()) == 1 else 'ies'}")


@cache.command("clear")
@click.option("--repo", help="Only drop entries for this repository (org/repo)")
@click.pass_context
def cache_clear(ctx: click.Context, repo: str | None):
    """Drop cached entries."""
    service = _service(ctx)
    if repo:
        try:
            removed = service.invalidate_repository(repo)
        except RepoGraphError as e:
            raise click.ClickException(str(e))
        click.echo(f"Removed {removed} entries for {repo}")
        return
    service.clear_all()
    click.echo("All caches cleared")


@cli.command()
@click.option("--port", "-p", default=8420, help="Port number")
@click.option("--host", default="127.0.0.1", help="Host address")
def serve(port: int, host: str):
    """Start the HTTP API."""
    import uvicorn

    from repo_graph.web import create_app

    click.echo(f"Starting repo-graph API at http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
