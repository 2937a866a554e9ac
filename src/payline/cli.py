"""CLI entrypoint for payline."""

import json
import logging
from pathlib import Path

import click

from payline import __version__
from payline.config import Settings, load_settings
from payline.convergence.service import format_convergence_summary
from payline.errors import PaylineError
from payline.io.ingest import ingest_file
from payline.io.profile import format_inventory_summary, inventory_capabilities
from payline.orchestrator.runtime import CalculationRunner
from payline.storage.store import PaylineStore
from payline.utils.logging import setup_logging

logger = logging.getLogger("payline.cli")


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _fail(exc: PaylineError) -> None:
    click.echo(f"❌ {exc}", err=True)
    raise click.Abort()


def _open_store(ctx: click.Context, db_path: str | None) -> PaylineStore:
    settings: Settings = ctx.obj["settings"]
    return PaylineStore(Path(db_path) if db_path else settings.db_path)


def _db_path_option(func):
    return click.option(
        "--db-path",
        default=None,
        type=click.Path(dir_okay=False),
        help="DuckDB store path (default: PL_DB_PATH or ./data/payline.duckdb)",
    )(func)


def _tenant_option(func):
    return click.option("--tenant", "tenant_id", required=True, help="Tenant identifier")(func)


def _plan_option(func):
    return click.option("--plan-id", required=True, help="Plan identifier")(func)


@click.group()
@click.version_option(version=__version__, prog_name="payline")
@click.pass_context
def main(ctx: click.Context):
    """Payline: bind compensation plans to imported data and compute payouts."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings()
    except PaylineError as e:
        _fail(e)
    setup_logging(
        log_dir=str(settings.log_dir),
        level=settings.log_level,
        quiet_console=True,
    )
    logger.debug("Settings: %s", settings.to_dict())
    ctx.obj["settings"] = settings


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@_tenant_option
@click.option("--data-type", default=None, help="Data type label (default: sanitized file name)")
@click.option("--entity-column", default=None, help="Column holding the entity identifier")
@click.option("--period-column", default=None, help="Column holding the period label")
@click.option("--sheet", default=None, help="Sheet name for spreadsheets (default: first sheet)")
@_db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def ingest(
    ctx: click.Context,
    path: str,
    tenant_id: str,
    data_type: str | None,
    entity_column: str | None,
    period_column: str | None,
    sheet: str | None,
    db_path: str | None,
    as_json: bool,
):
    """Import a CSV, XLSX or JSON file as committed rows."""
    try:
        store = _open_store(ctx, db_path)
        result = ingest_file(
            store,
            path,
            tenant_id,
            data_type=data_type,
            entity_column=entity_column,
            period_column=period_column,
            sheet=sheet,
        )
    except PaylineError as e:
        _fail(e)

    if as_json:
        _echo_json(result)
        return
    click.echo(f"✅ {result['file']}: {result['rows']} row(s) as '{result['data_type']}'")
    if entity_column and result["with_entity"] < result["rows"]:
        click.echo(f"⚠️  {result['rows'] - result['with_entity']} row(s) have no {entity_column}")


@main.group()
def plan():
    """Manage stored plans."""
    pass


@plan.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@_tenant_option
@click.option("--plan-id", default=None, help="Plan identifier (default: the plan's id or file name)")
@_db_path_option
@click.pass_context
def plan_import(ctx: click.Context, path: str, tenant_id: str, plan_id: str | None, db_path: str | None):
    """Store a plan configuration JSON file."""
    try:
        config = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"❌ Cannot read plan file: {e}", err=True)
        raise click.Abort()
    if not isinstance(config, dict):
        click.echo("❌ Plan file must hold a JSON object", err=True)
        raise click.Abort()

    plan_id = plan_id or str(config.get("id") or Path(path).stem)
    try:
        store = _open_store(ctx, db_path)
        store.save_plan(tenant_id, plan_id, config)
    except PaylineError as e:
        _fail(e)
    click.echo(f"✅ Stored plan '{plan_id}' for tenant '{tenant_id}'")


@main.command()
@_tenant_option
@_db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print the catalog as JSON")
@click.pass_context
def inventory(ctx: click.Context, tenant_id: str, db_path: str | None, as_json: bool):
    """Show the tenant's data capability catalog."""
    settings: Settings = ctx.obj["settings"]
    try:
        store = _open_store(ctx, db_path)
        rows = store.recent_rows(tenant_id, limit=settings.inventory_row_limit)
    except PaylineError as e:
        _fail(e)

    capabilities = inventory_capabilities(
        rows,
        row_limit=settings.inventory_row_limit,
        samples_per_type=settings.sample_per_type,
    )
    if as_json:
        _echo_json([c.to_dict() for c in capabilities])
    else:
        click.echo(format_inventory_summary(capabilities))


@main.command()
@_tenant_option
@_plan_option
@_db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def converge(ctx: click.Context, tenant_id: str, plan_id: str, db_path: str | None, as_json: bool):
    """Generate and store derivation rules for a plan."""
    try:
        runner = CalculationRunner(_open_store(ctx, db_path), ctx.obj["settings"])
        report = runner.converge(tenant_id, plan_id)
    except PaylineError as e:
        _fail(e)

    if as_json:
        _echo_json(report.to_json_dict())
    else:
        click.echo(format_convergence_summary(report))


@main.group()
def rules():
    """Inspect stored derivation rules."""
    pass


@rules.command("show")
@_tenant_option
@_plan_option
@_db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print the rules as JSON")
@click.pass_context
def rules_show(ctx: click.Context, tenant_id: str, plan_id: str, db_path: str | None, as_json: bool):
    """Print the stored rule set of a plan."""
    try:
        stored = _open_store(ctx, db_path).load_rules(tenant_id, plan_id)
    except PaylineError as e:
        _fail(e)

    if stored is None:
        click.echo(f"❌ No rules stored for plan '{plan_id}'. Run 'payline converge' first.", err=True)
        raise click.Abort()

    if as_json:
        _echo_json([r.to_json_dict() for r in stored])
        return
    if not stored:
        click.echo("Rule set is empty.")
    for rule in stored:
        target = f"sum({rule.source_field})" if rule.operation == "sum" else "count(*)"
        where = " and ".join(f"{f.field} {f.operator} {f.value}" for f in rule.filters)
        click.echo(f"{rule.metric} = {target} over '{rule.source_pattern}'" + (f" where {where}" if where else ""))


@main.command()
@_tenant_option
@_plan_option
@click.option("--period", default=None, help="Only calculate this period")
@_db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print the batch result as JSON")
@click.pass_context
def calculate(
    ctx: click.Context,
    tenant_id: str,
    plan_id: str,
    period: str | None,
    db_path: str | None,
    as_json: bool,
):
    """Compute payouts for every entity with data."""
    try:
        runner = CalculationRunner(_open_store(ctx, db_path), ctx.obj["settings"])
        batch = runner.calculate(tenant_id, plan_id, period=period)
    except PaylineError as e:
        _fail(e)

    if as_json:
        payload = batch.to_json_dict()
        payload["totalPayout"] = batch.total_payout
        _echo_json(payload)
        return

    click.echo(f"Plan {plan_id}: {batch.entity_count} entities in {batch.elapsed_ms:.0f} ms")
    for result in batch.results:
        label = f"{result.entity_id} ({result.period})" if result.period else str(result.entity_id)
        flag = f"  unresolved: {', '.join(result.unresolved_metrics)}" if result.unresolved_metrics else ""
        click.echo(f"  {label:<24} {result.component:<32} {result.payout:>14,.2f}{flag}")
    for failure in batch.failures:
        click.echo(f"  ❌ {failure.entity_id} ({failure.period}): {failure.error_type}: {failure.error}")
    click.echo(f"Total payout: {batch.total_payout:,.2f}")


if __name__ == "__main__":
    main()
