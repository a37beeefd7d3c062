from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from tray_tracker import __version__
from tray_tracker.config import DEFAULT_CONFIG_PATH, MAX_BATCH_SIZE, RuntimeConfig, load_runtime_config, write_default_config
from tray_tracker.db import get_motor_client, get_store, init_odm
from tray_tracker.exceptions import FatalStoreError, TrayTrackerError, ValidationError
from tray_tracker.executor import MigrationMode
from tray_tracker.logsink import JsonlLogSink, configure_logging, fan_out, logging_sink
from tray_tracker.migrate import run_migration_set
from tray_tracker.models import MigrationRun
from tray_tracker.report import MigrationReport
from tray_tracker.reporting import print_json, print_report, print_rules_table, print_status_table
from tray_tracker.rules import MigrationRule, RelocationRule, Rule, available_rules, resolve_rules
from tray_tracker.seed import GENERATORS, seed_collection


app = typer.Typer(no_args_is_help=True)
migrate_app = typer.Typer(no_args_is_help=True, help="Field migrations")
rules_app = typer.Typer(no_args_is_help=True, help="Migration rule catalogue")
app.add_typer(migrate_app, name="migrate")
app.add_typer(rules_app, name="rules")
console = Console()


def _load_config(uri: Optional[str], db: Optional[str]) -> RuntimeConfig:
    return load_runtime_config(mongodb_uri=uri, default_db=db)


def _select_rules(
    rule_name: Optional[str],
    collection: Optional[str],
    source: Optional[str],
    target: Optional[str],
    target_collection: Optional[str],
    version: str,
    delete_source: bool,
    rules_file: Optional[Path],
) -> List[Rule]:
    if rule_name:
        if collection or source or target or target_collection:
            raise ValidationError("Use either --rule or --collection/--source/--target, not both.")
        return resolve_rules(rule_name, rules_file)

    try:
        if collection and target_collection and not (source or target):
            return [RelocationRule(collection=collection, target_collection=target_collection, version=version)]
        if collection and source and target and not target_collection:
            return [
                MigrationRule(
                    collection=collection,
                    source_field=source,
                    target_field=target,
                    version=version,
                    delete_source=delete_source,
                )
            ]
    except ValueError as exc:
        raise ValidationError(f"Invalid rule: {exc}") from exc
    raise ValidationError(
        "Pass --rule NAME, all of --collection, --source and --target, "
        "or --collection with --target-collection."
    )


async def _store_reports(config: RuntimeConfig, reports: List[MigrationReport], rules: List[Rule]) -> None:
    odm_client = await init_odm(config.mongodb_uri, config.default_db)
    by_label = {rule.label: rule for rule in rules}
    try:
        for report in reports:
            rule = by_label[report.rule]
            await MigrationRun.from_report(config.default_db, rule.collection, report).insert()
    finally:
        odm_client.close()


def _execute(
    mode: MigrationMode,
    uri: Optional[str],
    db: Optional[str],
    rule_name: Optional[str],
    collection: Optional[str],
    source: Optional[str],
    target: Optional[str],
    target_collection: Optional[str],
    version: str,
    delete_source: bool,
    batch_size: Optional[int],
    dry_run: bool,
    rate_limit_ms: int,
    verify: bool,
    store: bool,
    audit_log: Optional[Path],
    rules_file: Optional[Path],
    output: str,
) -> None:
    async def _run() -> int:
        config = _load_config(uri, db)
        configure_logging(config.log_level)
        rules = _select_rules(
            rule_name, collection, source, target, target_collection, version, delete_source,
            rules_file or config.rules_file,
        )
        size = batch_size or config.batch_size
        if not 1 <= size <= MAX_BATCH_SIZE:
            raise ValidationError(f"--batch-size must be between 1 and {MAX_BATCH_SIZE}.")

        sinks = [logging_sink]
        audit_path = audit_log or config.audit_log
        if audit_path:
            sinks.append(JsonlLogSink(audit_path))

        client = get_motor_client(config.mongodb_uri)
        fatal: Optional[FatalStoreError] = None
        try:
            reports = await run_migration_set(
                get_store(client, config.default_db, page_size=size),
                rules,
                mode,
                batch_size=size,
                dry_run=dry_run,
                rate_limit_ms=rate_limit_ms,
                verify=verify,
                log_sink=fan_out(sinks),
            )
        except FatalStoreError as exc:
            fatal = exc
            reports = list(exc.completed)
            if exc.report is not None:
                reports.append(exc.report)
        finally:
            client.close()

        if store and fatal is None:
            await _store_reports(config, reports, rules)
        elif store:
            console.print("[yellow]Skipping --store: database unreachable[/yellow]")

        if output == "json":
            payload = [report.to_dict() for report in reports]
            print_json({"mode": mode.value, "reports": payload})
        else:
            for report in reports:
                if mode is MigrationMode.STATUS:
                    print_status_table(report)
                else:
                    print_report(report)
            if fatal is not None and not reports:
                console.print(f"[red]✗ {fatal}[/red]")

        if fatal is not None or any(report.has_errors for report in reports):
            return 1
        return 0

    try:
        code = asyncio.run(_run())
    except TrayTrackerError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=1)
    if code:
        raise typer.Exit(code=code)


def _migration_command(mode: MigrationMode, help_text: str):
    def command(
        uri: Optional[str] = typer.Option(None, "--uri", help="MongoDB URI"),
        db: Optional[str] = typer.Option(None, "--db", help="Database name"),
        rule_name: Optional[str] = typer.Option(None, "--rule", help="Named rule set, see 'rules list'"),
        collection: Optional[str] = typer.Option(None, "--collection", help="Collection name"),
        source: Optional[str] = typer.Option(None, "--source", help="Field to migrate from"),
        target: Optional[str] = typer.Option(None, "--target", help="Field to migrate to"),
        target_collection: Optional[str] = typer.Option(
            None, "--target-collection", help="Copy whole documents into this collection"
        ),
        version: str = typer.Option("v1", "--version", help="Migration version tag"),
        delete_source: bool = typer.Option(False, "--delete-source", help="Remove the source field instead of nulling it"),
        batch_size: Optional[int] = typer.Option(None, "--batch-size", help=f"Writes per commit (max {MAX_BATCH_SIZE})"),
        dry_run: bool = typer.Option(False, "--dry-run", help="Do not write changes"),
        rate_limit_ms: int = typer.Option(0, "--rate-limit-ms", help="Delay between batches"),
        verify: bool = typer.Option(False, "--verify", help="Re-read written documents afterwards"),
        store: bool = typer.Option(False, "--store", help="Store run reports via Beanie ODM"),
        audit_log: Optional[Path] = typer.Option(None, "--audit-log", help="Append engine events to a JSON-lines file"),
        rules_file: Optional[Path] = typer.Option(None, "--rules-file", help="YAML file with extra rules"),
        output: str = typer.Option("table", "--output", help="Output format: table, json"),
    ) -> None:
        _execute(
            mode, uri, db, rule_name, collection, source, target, target_collection, version, delete_source,
            batch_size, dry_run, rate_limit_ms, verify, store, audit_log, rules_file, output,
        )

    command.__doc__ = help_text
    return command


migrate_app.command("run")(
    _migration_command(MigrationMode.MIGRATE, "Copy source fields into target fields where needed.")
)
migrate_app.command("rollback")(
    _migration_command(MigrationMode.ROLLBACK, "Revert documents migrated by the same rule version.")
)
migrate_app.command("status")(
    _migration_command(MigrationMode.STATUS, "Count documents per classification without writing.")
)
migrate_app.command("cleanup")(
    _migration_command(MigrationMode.CLEANUP, "Remove source fields that duplicate the target value.")
)


@app.command()
def version() -> None:
    console.print(f"TrayTracker migrations v{__version__}")


@app.command()
def init(path: Optional[Path] = typer.Option(None, "--path", help="Path for config file")) -> None:
    config_path = path or DEFAULT_CONFIG_PATH
    if config_path.exists():
        console.print(f"Config already exists at {config_path}")
        raise typer.Exit(code=0)

    write_default_config(config_path)
    console.print(f"Created config at {config_path}")


@rules_app.command("list")
def rules_list(
    rules_file: Optional[Path] = typer.Option(None, "--rules-file", help="YAML file with extra rules"),
    output: str = typer.Option("table", "--output", help="Output format: table, json"),
) -> None:
    """List built-in and file-defined rules."""
    try:
        rules = available_rules(rules_file)
    except TrayTrackerError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=1)

    if output == "json":
        print_json({name: [rule.model_dump() for rule in items] for name, items in rules.items()})
        return
    print_rules_table(rules)


@app.command("seed")
def seed(
    collection: str = typer.Option(..., "--collection", help=f"One of: {', '.join(sorted(GENERATORS))}"),
    count: int = typer.Option(10, "--count", help="Number of documents to generate"),
    random_seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible data"),
    uri: Optional[str] = typer.Option(None, "--uri", help="MongoDB URI"),
    db: Optional[str] = typer.Option(None, "--db", help="Database name"),
) -> None:
    """Seed a collection with demo documents in mixed legacy/migrated layouts."""
    if collection not in GENERATORS:
        console.print(f"[red]Unknown collection: {collection}. Supported: {', '.join(sorted(GENERATORS))}[/red]")
        raise typer.Exit(code=1)

    async def _run() -> None:
        config = _load_config(uri, db)
        client = get_motor_client(config.mongodb_uri)

        console.print(f"[dim]Seeding {count} documents into {collection}...[/dim]")
        inserted = await seed_collection(client, config.default_db, collection, count, random_seed)

        print_json({"status": "seeded", "inserted": inserted, "collection": collection})
        client.close()

    try:
        asyncio.run(_run())
    except TrayTrackerError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=1)
