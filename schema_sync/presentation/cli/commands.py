"""CLI commands using Click framework."""

import json
import logging
import os
import sys

import click

from schema_sync.domain.entities.evolution import BootstrapRequired, ConfirmationRequired
from schema_sync.domain.entities.errors import SchemaSyncError
from schema_sync.domain.services.bootstrap import render_bootstrap_sql
from schema_sync.infrastructure.di_container import DIContainer
from schema_sync.infrastructure.repositories.history_repository import InMemoryHistoryRepository

RISK_ICONS = {"SAFE": "✓", "CAUTION": "⚠️", "DESTRUCTIVE": "✗"}


def _orchestrator(ctx):
    return ctx.obj["container"].get_orchestrator()


def _fail(error: Exception):
    code = getattr(error, "code", "error")
    click.echo(f"\n❌ {code}: {getattr(error, 'message', str(error))}", err=True)
    raise click.Abort()


def _require_stored_plans(ctx):
    """Plans are looked up in history; an in-memory store is empty on every invocation."""
    if isinstance(ctx.obj["container"].get_history_repository(), InMemoryHistoryRepository):
        raise click.UsageError(
            "history_dsn_required: plans are read back from the history database; "
            "pass --history-dsn or set SCHEMA_SYNC_HISTORY_DSN",
            ctx=ctx,
        )


@click.group()
@click.version_option(version="1.0.0")
@click.option('--reference', '-r', type=click.Path(exists=True), default=None,
              help='Reference schema SQL file (default: SCHEMA_SYNC_REFERENCE_PATH)')
@click.option('--tenants-file', '-t', type=click.Path(exists=True), default=None,
              help='JSON file mapping tenant ids to DSNs (default: SCHEMA_SYNC_TENANTS_FILE)')
@click.option('--history-dsn', default=None,
              help='Control database for history (default: SCHEMA_SYNC_HISTORY_DSN)')
@click.pass_context
def cli(ctx, reference, tenants_file, history_dsn):
    """Schema Sync - drift detection and controlled migration for tenant databases."""
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING").upper())
    container = DIContainer()
    container.configure(reference_path=reference, tenants_file=tenants_file, history_dsn=history_dsn)
    ctx.obj = {"container": container}


@cli.command()
@click.argument('tenant_id')
@click.option('--output', '-o', type=click.Path(), default=None,
              help='Write the full plan as JSON')
@click.pass_context
def plan(ctx, tenant_id, output):
    """Compute a migration plan for a tenant."""
    try:
        outcome = _orchestrator(ctx).create_plan(tenant_id)
    except (SchemaSyncError, ValueError) as e:
        _fail(e)

    if isinstance(outcome, BootstrapRequired):
        click.echo(f"⚠️  Bootstrap required ({', '.join(outcome.missing)})")
        click.echo(outcome.hint)
        click.echo("")
        click.echo(outcome.bootstrap_sql)
        sys.exit(2)

    payload = outcome.to_dict()
    counts = payload["summary_counts"]
    click.echo(f"📊 Plan {outcome.plan.plan_id}")
    click.echo(f"   SAFE: {counts['SAFE']}  CAUTION: {counts['CAUTION']}  DESTRUCTIVE: {counts['DESTRUCTIVE']}")
    for change in outcome.plan.changes:
        icon = RISK_ICONS.get(change.risk_level.value, "?")
        click.echo(f"   {icon} [{change.risk_level.value}] {change.title}")
        click.echo(f"      {change.reason}")

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
        click.echo(f"\n💾 Plan saved to: {output}")


@cli.command()
@click.argument('tenant_id')
@click.argument('plan_id')
@click.option('--query', '-q', 'queries', multiple=True,
              help='SELECT query to run (repeatable); defaults to the plan queries')
@click.pass_context
def preflight(ctx, tenant_id, plan_id, queries):
    """Run read-only preflight queries for a plan."""
    _require_stored_plans(ctx)
    try:
        response = _orchestrator(ctx).run_preflight(tenant_id, plan_id, list(queries))
    except (SchemaSyncError, ValueError) as e:
        _fail(e)

    for result in response.results:
        status = "✓" if result.ok else "✗"
        detail = json.dumps(result.result, default=str) if result.ok else result.error
        click.echo(f"{status} {result.change_id or '-'}: {detail}")
        click.echo(f"   {result.query}")


@cli.command(name='apply-safe')
@click.argument('tenant_id')
@click.argument('plan_id')
@click.pass_context
def apply_safe(ctx, tenant_id, plan_id):
    """Apply the SAFE tier of a stored plan."""
    _require_stored_plans(ctx)
    try:
        response = _orchestrator(ctx).apply_safe(tenant_id, plan_id)
    except (SchemaSyncError, ValueError) as e:
        _fail(e)
    _echo_apply(response)


@cli.command(name='apply-destructive')
@click.argument('tenant_id')
@click.argument('plan_id')
@click.option('--confirm', 'confirmation_phrase', prompt='Type the confirmation phrase',
              help='Exact confirmation phrase')
@click.pass_context
def apply_destructive(ctx, tenant_id, plan_id, confirmation_phrase):
    """Apply CAUTION and DESTRUCTIVE changes of a stored plan."""
    _require_stored_plans(ctx)
    try:
        outcome = _orchestrator(ctx).apply_destructive(tenant_id, plan_id, confirmation_phrase)
    except (SchemaSyncError, ValueError) as e:
        _fail(e)

    if isinstance(outcome, ConfirmationRequired):
        click.echo(f"❌ {outcome.message}: {outcome.hint}", err=True)
        sys.exit(1)
    _echo_apply(outcome)


def _echo_apply(response):
    for statement in response.result.statements:
        status = "✓" if statement.ok else "✗"
        click.echo(f"{status} {statement.change_id or '-'}")
        if not statement.ok:
            click.echo(f"   {statement.error_kind or ''} {statement.error}")
    state = response.result.state.value
    click.echo(f"\n{'✅' if response.overall_ok else '⚠️ '} {state}"
               f"{' (' + response.result.error + ')' if response.result.error else ''}")
    if not response.overall_ok:
        sys.exit(1)


@cli.command()
@click.argument('tenant_id')
@click.option('--limit', '-n', default=25, help='Number of records, newest first')
@click.pass_context
def history(ctx, tenant_id, limit):
    """Show the migration history of a tenant."""
    try:
        records = _orchestrator(ctx).fetch_history(tenant_id, limit)
    except (SchemaSyncError, ValueError) as e:
        _fail(e)
    for record in records:
        click.echo(f"{record.created_at.isoformat()}  {record.status.value:<20} {record.id}")


@cli.command(name='bootstrap-sql')
@click.option('--role', default=lambda: os.getenv("SCHEMA_SYNC_REQUIRED_ROLE", "app_user"),
              help='Required application role')
@click.option('--schema', default=lambda: os.getenv("SCHEMA_SYNC_TARGET_SCHEMA", "public"),
              help='Target schema')
def bootstrap_sql(role, schema):
    """Print the one-time bootstrap script."""
    click.echo(render_bootstrap_sql(role, schema))


@cli.command()
@click.option('--port', '-p', default=8000, help='Port to run API server')
@click.option('--host', '-h', default='0.0.0.0', help='Host to bind')
@click.pass_context
def serve(ctx, port, host):
    """Start the REST API server."""
    click.echo(f"🌐 Starting API server on {host}:{port}")
    from schema_sync.presentation.api.app import create_app
    import uvicorn
    uvicorn.run(create_app(ctx.obj["container"]), host=host, port=port)


if __name__ == '__main__':
    cli()
