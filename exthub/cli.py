"""exthub CLI — inspect the local extension registry and the GitHub marketplace."""

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from exthub import __version__
from exthub.config import Settings
from exthub.errors import ExthubError

console = Console()


def _run(coro):
    """Run *coro*, turning library errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except ExthubError as e:
        console.print(f"[red]Error:[/] {e}")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """exthub — manage Claude Code extensions.

    Tracks installed plugins, skills, commands and agents, and looks up
    extension metadata on GitHub.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if ctx.obj is None:
        try:
            ctx.obj = Settings.from_env()
        except ExthubError as e:
            raise click.ClickException(str(e))


# ── Registry ─────────────────────────────────────────────────────────


async def _open_registry(settings: Settings):
    from exthub.registry.store import RegistryStore

    store = RegistryStore.from_settings(settings)
    await store.initialize()
    return store


@main.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include records that are not installed")
@click.pass_obj
def list_cmd(settings: Settings, show_all: bool):
    """List installed extensions."""
    store = _run(_open_registry(settings))
    records = store.list_all() if show_all else store.list_installed()

    if not records:
        console.print("[yellow]No extensions installed.[/]")
        return

    table = Table(title=f"Extensions ({len(records)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Installed", justify="right", style="green")
    table.add_column("Latest", justify="right")
    table.add_column("Description")

    for record in records:
        table.add_row(
            record.id,
            record.type.value,
            record.installed_version or "-",
            record.version,
            record.description[:60],
        )
    console.print(table)


@main.command()
@click.pass_obj
def stats(settings: Settings):
    """Show registry statistics."""
    store = _run(_open_registry(settings))
    result = store.stats()

    console.print(f"Total: [bold]{result.total}[/]  Installed: [bold green]{result.installed}[/]")
    for ext_type, count in result.by_type.items():
        console.print(f"  {ext_type:<8} {count}")


@main.command()
@click.argument("ext_id")
@click.pass_obj
def info(settings: Settings, ext_id: str):
    """Show the registry record for EXT_ID (owner/name)."""
    store = _run(_open_registry(settings))
    record = store.get(ext_id)
    if record is None:
        console.print(f"[yellow]{ext_id} is not in the registry.[/]")
        raise SystemExit(1)

    for key, value in record.to_dict().items():
        if key == "readme" or value in (None, [], ""):
            continue
        console.print(f"[bold]{key}:[/] {value}")


@main.command()
@click.argument("ext_id")
@click.pass_obj
def remove(settings: Settings, ext_id: str):
    """Remove EXT_ID from the registry."""

    async def _remove():
        store = await _open_registry(settings)
        return await store.remove(ext_id)

    if _run(_remove()):
        console.print(f"[green]Removed[/] {ext_id}")
    else:
        console.print(f"[yellow]{ext_id} is not in the registry.[/]")


# ── GitHub ───────────────────────────────────────────────────────────


@main.command()
@click.argument("topic", default="claude-code-plugin")
@click.option("--limit", default=30, show_default=True, help="Results per page")
@click.pass_obj
def search(settings: Settings, topic: str, limit: int):
    """Search GitHub repositories tagged with TOPIC."""
    from exthub.github.proxy import GitHubAPIProxy
    from exthub.registry.models import ExtensionRecord

    async def _search():
        async with GitHubAPIProxy.from_settings(settings) as proxy:
            return await proxy.search_repositories(topic, per_page=limit)

    records = ExtensionRecord.from_search_results(_run(_search()))
    if not records:
        console.print("[yellow]No extensions found.[/]")
        return

    table = Table(title=f"topic:{topic} ({len(records)} found)")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Stars", justify="right", style="green")
    table.add_column("Description")
    for record in records:
        table.add_row(record.id, record.type.value, str(record.stars), record.description[:60])
    console.print(table)


@main.command()
@click.argument("repo_ids", nargs=-1, required=True)
@click.pass_obj
def fetch(settings: Settings, repo_ids: tuple[str, ...]):
    """Fetch metadata for up to 10 REPO_IDS (owner/repo) in one batch."""
    from exthub.github.proxy import GitHubAPIProxy

    async def _fetch():
        async with GitHubAPIProxy.from_settings(settings) as proxy:
            return await proxy.batch_fetch_extensions(list(repo_ids))

    results = _run(_fetch())
    table = Table(title=f"Metadata ({len(results)} of {min(len(repo_ids), 10)})")
    table.add_column("ID", style="cyan")
    table.add_column("Stars", justify="right", style="green")
    table.add_column("Latest release")
    table.add_column("Updated")
    for meta in results:
        table.add_row(meta.id, str(meta.stars), meta.latest_release or "-", meta.last_updated or "-")
    console.print(table)


@main.command("rate-limit")
@click.pass_obj
def rate_limit(settings: Settings):
    """Show the current GitHub API rate limit."""
    from exthub.github.proxy import GitHubAPIProxy

    async def _status():
        async with GitHubAPIProxy.from_settings(settings) as proxy:
            return await proxy.get_rate_limit_status()

    state = _run(_status())
    reset = state.reset_date.isoformat() if state.reset_date else "unknown"
    console.print(f"{state.remaining}/{state.limit} requests remaining, resets at {reset}")


# ── Validation ───────────────────────────────────────────────────────


@main.command("check-url")
@click.argument("url")
def check_url(url: str):
    """Check that URL is a GitHub repository URL."""
    from exthub.utils.urls import validate_repository_url

    result = validate_repository_url(url)
    if result.valid:
        console.print(f"  [green]v[/] {result.owner}/{result.repo}")
    else:
        console.print(f"  [red]x[/] {result.error}")
        raise SystemExit(1)


@main.command("validate-manifest")
@click.argument("manifest_path", type=click.Path())
def validate_manifest_cmd(manifest_path: str):
    """Validate an extension manifest (JSON or YAML)."""
    from exthub.manifest.validator import load_manifest_file

    console.print(f"\n[bold blue]exthub[/] — Validating: {manifest_path}\n")
    result = load_manifest_file(manifest_path)
    if result.valid:
        console.print("  [green]v[/] Manifest is valid")
        return

    console.print(f"[red]Manifest validation FAILED ({len(result.errors)} issue(s)):[/]")
    for issue in result.errors:
        console.print(f"  [red]x[/] {issue}")
    raise SystemExit(1)


if __name__ == "__main__":
    main()
