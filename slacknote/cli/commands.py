"""CLI commands for slacknote."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import typer
from rich.table import Table

from slacknote import __logo__
from slacknote.core.errors import ConfigurationError, NotionAPIError, SlackAPIError

from .core import app, console, fail, load_runtime_config

# Slack error codes the batch tools can explain.
_SLACK_HINTS = {
    "channel_not_found": "Check the channel ID and that the app was added to the channel.",
    "not_in_channel": "Invite the app to the channel first (/invite @app).",
    "missing_scope": "Add channels:history, groups:history and users:read to the app's scopes.",
    "ratelimited": "Rate limited by Slack; raise pacing.pageDelaySeconds and retry.",
}

_DATE_FORMATS = ["%Y-%m-%d"]


def _slack_failure(exc: SlackAPIError) -> NoReturn:
    hint = _SLACK_HINTS.get(exc.error_code)
    fail(f"{exc}" + (f"\n  {hint}" if hint else ""))


# ============================================================================
# Setup
# ============================================================================


@app.command()
def init():
    """Create ~/.slacknote/config.json with defaults."""
    from slacknote.config.loader import get_config_path, save_config
    from slacknote.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"\n{__logo__} slacknote is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set SLACK_BOT_TOKEN, SLACK_SIGNING_SECRET, OPENAI_API_KEY, NOTION_TOKEN")
    console.print("     and NOTION_DATABASE_ID in [cyan]~/.slacknote/.env[/cyan] or the environment")
    console.print("  2. Run: [cyan]slacknote serve[/cyan] and point the Slack Events URL at /slack/events")


# ============================================================================
# Event intake
# ============================================================================


@app.command()
def serve(
    port: int | None = typer.Option(None, "--port", "-p", help="Override gateway.port"),
    host: str | None = typer.Option(None, "--host", help="Override gateway.host"),
):
    """Run the Slack event intake server."""
    from slacknote.api.server import run_server
    from slacknote.app.bootstrap import build_runtime

    config = load_runtime_config()
    if port is not None:
        config.gateway.port = port
    if host:
        config.gateway.host = host

    try:
        runtime = build_runtime(config)
    except ConfigurationError as e:
        fail(str(e), e.missing)
    except ValueError as e:
        fail(f"model routing: {e}")

    console.print(f"{__logo__} Starting slacknote on {config.gateway.host}:{config.gateway.port}")
    digest = config.digest
    labels = ", ".join(f":{emoji}: {label}" for emoji, label in digest.reactions.items())
    console.print(f"[green]✓[/green] Labels: {labels}")
    console.print(f"[green]✓[/green] Trigger: :{digest.trigger_reaction}:  Channel trigger: :{digest.channel_trigger_reaction}:")
    if config.reports.enabled and config.reports.channels:
        console.print(f"[green]✓[/green] Report channels: {', '.join(config.reports.channels)}")

    run_server(
        router=runtime.router,
        aggregation=runtime.aggregation,
        slack=config.slack,
        gateway=config.gateway,
        on_shutdown=runtime.aclose,
        log_level=config.logging.level,
    )


# ============================================================================
# Batch tools
# ============================================================================


@app.command()
def backfill(
    channel: str = typer.Option(..., "--channel", "-c", help="Channel ID to replay"),
    since: datetime = typer.Option(..., "--since", formats=_DATE_FORMATS, help="First day (UTC, inclusive)"),
    until: datetime | None = typer.Option(None, "--until", formats=_DATE_FORMATS, help="Last day (UTC, inclusive)"),
    max_items: int | None = typer.Option(None, "--max", min=1, help="Stop after this many messages"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Extract but do not write"),
):
    """Replay report detection over channel history into the report log."""
    from slacknote.app.bootstrap import build_backfill

    config = load_runtime_config()
    if until is not None and until < since:
        fail("--until must not be earlier than --since")

    async def run():
        batch = build_backfill(config)
        try:
            return await batch.backfill.run(
                channel,
                since.date(),
                until.date() if until else None,
                max_items=max_items,
                dry_run=dry_run,
            )
        finally:
            await batch.aclose()

    try:
        stats = asyncio.run(run())
    except ConfigurationError as e:
        fail(str(e), e.missing)
    except SlackAPIError as e:
        _slack_failure(e)
    except NotionAPIError as e:
        fail(str(e))

    table = Table(title=f"Backfill {channel}" + (" (dry run)" if dry_run else ""))
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in stats.as_dict().items():
        table.add_row(name, str(value))
    console.print(table)
    if stats.failed:
        raise typer.Exit(2)


@app.command()
def export(
    channel: str = typer.Option(..., "--channel", "-c", help="Channel ID to export"),
    since: datetime = typer.Option(..., "--since", formats=_DATE_FORMATS, help="First day (UTC, inclusive)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="CSV path"),
):
    """Export channel history (threads expanded) to CSV."""
    from slacknote.app.bootstrap import build_slack_client, require_credentials
    from slacknote.export import ChannelExporter

    config = load_runtime_config()
    try:
        require_credentials(config, "export")
    except ConfigurationError as e:
        fail(str(e), e.missing)

    async def run():
        slack = build_slack_client(config, history=True)
        try:
            return await ChannelExporter(slack, config.pacing).export(channel, since.date(), output)
        finally:
            await slack.aclose()

    try:
        path, count = asyncio.run(run())
    except SlackAPIError as e:
        _slack_failure(e)

    if not count:
        console.print("[yellow]No messages found. Check the channel ID, the date and channel membership.[/yellow]")
        return
    console.print(f"[green]✓[/green] Exported {count} messages to {path}")


@app.command("check-db")
def check_db(
    channel: str = typer.Option("", "--channel", "-c", help="Channel ID used for routing"),
    tool: str | None = typer.Option(None, "--tool", help="Tool key used for routing"),
):
    """Resolve the report-log database and show how its columns map to roles."""
    from slacknote.app.bootstrap import build_notion_client
    from slacknote.reports.routing import resolve_route

    config = load_runtime_config()
    if not config.notion.token:
        fail("NOTION_TOKEN is not set", ["NOTION_TOKEN"])
    try:
        target = resolve_route(tool or config.reports.tool_key, channel, config.reports.routing)
    except ConfigurationError as e:
        fail(str(e))

    async def run():
        notion = build_notion_client(config)
        try:
            ok, message = await notion.check_target_access(target)
            roles = (await notion.schemas.schema_for(target)).roles() if ok else {}
            return ok, message, roles
        finally:
            await notion.aclose()

    ok, message, roles = asyncio.run(run())
    console.print(f"Target: {target}")
    if not ok:
        fail(message)
    console.print(f"[green]✓[/green] {message}")

    table = Table(title="Property roles")
    table.add_column("Role", style="cyan")
    table.add_column("Property")
    for role, name in roles.items():
        table.add_row(role, name)
    console.print(table)


# ============================================================================
# Report-log analysis
# ============================================================================


def _count_table(title: str, counts, limit: int | None = None) -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in counts.most_common(limit):
        table.add_row(name or "-", str(value))
    return table


@app.command()
def enrich(
    work_csv: Path = typer.Option(..., "--work-csv", exists=True, dir_okay=False, help="Work-log CSV export"),
    since: datetime = typer.Option(..., "--since", formats=_DATE_FORMATS, help="First log date (inclusive)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Enriched CSV path"),
    channel: str = typer.Option("", "--channel", "-c", help="Channel ID used for routing"),
    tool: str | None = typer.Option(None, "--tool", help="Tool key used for routing"),
):
    """Match report-log rows against a work log and write an enriched CSV."""
    from slacknote.app.bootstrap import build_notion_client, require_credentials
    from slacknote.enrich import ReportLogEnricher
    from slacknote.reports.routing import resolve_route

    config = load_runtime_config()
    try:
        require_credentials(config, "enrich")
        target = resolve_route(tool or config.reports.tool_key, channel, config.reports.routing)
    except ConfigurationError as e:
        fail(str(e), e.missing)

    async def run():
        notion = build_notion_client(config)
        try:
            return await ReportLogEnricher(notion).run(target, since.date(), work_csv, output)
        finally:
            await notion.aclose()

    try:
        result = asyncio.run(run())
    except ConfigurationError as e:
        fail(str(e))
    except NotionAPIError as e:
        fail(str(e))

    stats = result.stats
    console.print(f"Report log: {stats.total} rows   Work log: {result.work_rows} rows")
    console.print(f"[green]✓[/green] OCR worker found: {stats.total - stats.unmatched}")
    console.print(f"[yellow]?[/yellow] OCR worker unknown: {stats.unmatched}")
    console.print(f"[green]✓[/green] Confirmation log matched: {stats.matched_confirm}")
    for record in result.records:
        if record.ocr_worker is None:
            console.print(f"  - [{record.kind}] {record.group} / {record.product}")

    console.print(_count_table("Mistake kind", stats.by_kind))
    console.print(_count_table("By OCR worker", stats.by_ocr_worker))
    console.print(_count_table("By confirmer", stats.by_confirmer))
    console.print(_count_table("Final status", stats.by_final_status))
    console.print(_count_table("Top groups", stats.by_group, 10))
    console.print(f"[green]✓[/green] Wrote {len(result.records)} rows to {result.output}")


@app.command("import-mismatch")
def import_mismatch(
    csv_files: list[Path] = typer.Option(..., "--csv", exists=True, dir_okay=False, help="Enriched CSV (repeatable)"),
    parent_page: str | None = typer.Option(None, "--parent-page", help="Override notion.parentPageId"),
    title: str | None = typer.Option(None, "--title", help="Title of the new database"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Read and preview without writing"),
):
    """Create a Notion database from enriched mismatch CSVs."""
    from slacknote.app.bootstrap import build_notion_client, require_credentials
    from slacknote.importer import DEFAULT_DATABASE_TITLE, MismatchImporter

    config = load_runtime_config()
    if parent_page:
        config.notion.parent_page_id = parent_page
    if not dry_run:
        try:
            require_credentials(config, "import")
        except ConfigurationError as e:
            fail(str(e), e.missing)

    async def run():
        if dry_run:
            return await MismatchImporter(None, config.pacing).run(csv_files, dry_run=True)
        notion = build_notion_client(config)
        try:
            return await MismatchImporter(notion, config.pacing).run(
                csv_files,
                parent_page_id=config.notion.parent_page_id,
                title=title or DEFAULT_DATABASE_TITLE,
            )
        finally:
            await notion.aclose()

    try:
        stats = asyncio.run(run())
    except NotionAPIError as e:
        fail(str(e))

    console.print(f"Rows: {stats.total} ({stats.duplicates} duplicates dropped)")
    if dry_run:
        columns = ("起票日", "ミス種別", "グループ/店舗名", "食べ物名", "OCR作業者")
        table = Table(title="Preview (dry run)")
        for column in columns:
            table.add_column(column)
        for row in stats.preview:
            table.add_row(*(row.get(c, "") for c in columns))
        console.print(table)
        return
    console.print(f"[green]✓[/green] Imported {stats.written} rows into {stats.database_id}")
    if stats.failed:
        console.print(f"[red]✗[/red] {stats.failed} rows failed")
        raise typer.Exit(2)


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """Show slacknote configuration and, when running, live buffer state."""
    import httpx

    from slacknote.config.loader import get_config_path

    config_path = get_config_path()
    config = load_runtime_config()

    console.print(f"{__logo__} slacknote Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    missing = set(config.missing_credentials(mode="serve"))
    for name in ("SLACK_BOT_TOKEN", "SLACK_SIGNING_SECRET", "OPENAI_API_KEY", "NOTION_TOKEN", "NOTION_DATABASE_ID"):
        console.print(f"{name}: {'[dim]not set[/dim]' if name in missing else '[green]✓[/green]'}")
    for route, profile in config.models.routes.items():
        console.print(f"Model {route}: {config.models.profiles[profile].model}")

    url = f"http://127.0.0.1:{config.gateway.port}/status"
    headers = {"Authorization": f"Bearer {config.gateway.status_token}"} if config.gateway.status_token else {}
    try:
        response = httpx.get(url, headers=headers, timeout=2.0)
        response.raise_for_status()
    except httpx.HTTPError:
        console.print(f"\nServer: [dim]not reachable at {url}[/dim]")
        return

    data = response.json()
    console.print(f"\nServer: [green]running[/green] (uptime {data.get('uptime_seconds')}s)")
    table = Table(title="Buffers")
    table.add_column("Key", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Page")
    artifacts = {a["key"]: a.get("url") or a.get("id") or "" for a in data.get("artifacts") or []}
    for entry in data.get("buffer") or []:
        table.add_row(entry["key"], str(entry["count"]), artifacts.get(entry["key"], ""))
    console.print(table)
    in_flight = data.get("in_flight") or []
    if in_flight:
        console.print(f"Flushing: {', '.join(in_flight)}")


if __name__ == "__main__":
    app()
