"""
Main CLI entry point for the Bulk Data Exchange Pipeline

Provides command-line interface for running the pipeline, submitting and
inspecting import and export jobs, and administering scheduled exports.
"""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from ..core.config import load_settings
from ..core.exceptions import BulkDataExchangeError
from ..core.pipeline import DataExchangePipeline
from ..utils.database import DatabaseManager
from ..utils.logger import setup_logger


# Global pipeline instance
pipeline: Optional[DataExchangePipeline] = None


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file path')
@click.option('--database-url', '-d', help='Database connection URL')
@click.option('--log-level', '-l', default=None, help='Log level')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option('--actor', '-a', default='cli', show_default=True, help='User id recorded as job creator')
@click.option('--elevated', is_flag=True, help='Read jobs of all users')
@click.option('--plugin', 'plugins', multiple=True, help='Module adapter plugin as package.module:function')
@click.pass_context
def cli(ctx, config, database_url, log_level, verbose, actor, elevated, plugins):
    """Bulk Data Exchange Pipeline CLI"""

    ctx.ensure_object(dict)

    try:
        settings = load_settings(config, database_url=database_url, log_level=log_level)
    except BulkDataExchangeError as e:
        raise click.ClickException(e.message)

    if plugins:
        settings.module_plugins = list(settings.module_plugins) + list(plugins)

    logger = setup_logger("bulk_data_exchange", level=settings.log_level,
                          structured=settings.structured_logs and not verbose)

    ctx.obj['logger'] = logger
    ctx.obj['settings'] = settings
    ctx.obj['actor'] = actor
    ctx.obj['elevated'] = elevated
    ctx.obj['verbose'] = verbose


@cli.group('import')
@click.pass_context
def import_group(ctx):
    """Import job commands"""
    pass


@cli.group('export')
@click.pass_context
def export_group(ctx):
    """Export job commands"""
    pass


@cli.group()
@click.pass_context
def schedule(ctx):
    """Scheduled export commands"""
    pass


# Pipeline Commands
@cli.command('run')
@click.option('--create-schema', is_flag=True, help='Create database tables before starting')
@click.pass_context
def run_pipeline(ctx, create_schema):
    """Run pollers and the scheduler until interrupted"""

    async def _run():
        try:
            await _initialize_pipeline(ctx, start=True, create_schema=create_schema)

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, lambda: asyncio.ensure_future(pipeline.stop()))
                except NotImplementedError:
                    pass

            click.echo("Pipeline running. Press Ctrl+C to stop.")
            await pipeline.wait_for_shutdown()
            click.echo("Pipeline stopped")

        except BulkDataExchangeError as e:
            click.echo(f"Error running pipeline: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_run())


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create database tables and indexes"""

    async def _init():
        settings = ctx.obj['settings']
        if not settings.database_url:
            click.echo("No database URL configured", err=True)
            sys.exit(1)

        db_manager = DatabaseManager(settings.database_url)
        try:
            await db_manager.initialize()
            await db_manager.create_schema()
            click.echo("Database schema created")
        except BulkDataExchangeError as e:
            click.echo(f"Error creating schema: {e.message}", err=True)
            sys.exit(1)
        finally:
            await db_manager.close()

    asyncio.run(_init())


@cli.command('recover')
@click.pass_context
def recover(ctx):
    """Revert stuck PROCESSING jobs to PENDING"""

    async def _recover():
        try:
            await _initialize_pipeline(ctx)
            recovered = await pipeline.recover_stuck_jobs()
            for kind, count in recovered.items():
                click.echo(f"{kind.title()} jobs recovered: {count}")
        except BulkDataExchangeError as e:
            click.echo(f"Error recovering jobs: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_recover())


@cli.command('stats')
@click.pass_context
def stats(ctx):
    """Show job counts by status"""

    async def _stats():
        try:
            await _initialize_pipeline(ctx)
            statistics = await pipeline.get_statistics(ctx.obj['actor'], ctx.obj['elevated'])
            for kind in ("imports", "exports"):
                counts = statistics.get(kind, {})
                click.echo(f"{kind.title()}:")
                for status, count in sorted(counts.items()):
                    click.echo(f"  {status}: {count}")
        except BulkDataExchangeError as e:
            click.echo(f"Error getting statistics: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_stats())


# Import Commands
@import_group.command('preview')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--module', '-m', help='Module key, to suggest column mappings')
@click.pass_context
def import_preview(ctx, file_path, module):
    """Show headers and first rows of a spreadsheet"""

    async def _preview():
        try:
            await _initialize_pipeline(ctx)
            preview = pipeline.preview_upload(Path(file_path).read_bytes(), module)
            click.echo(f"Headers: {', '.join(preview['headers'])}")
            click.echo(f"Total rows: {preview['total_rows']}")
            for row in preview['preview_rows']:
                click.echo(f"  {row['row_number']}: {json.dumps(row['data'], ensure_ascii=False)}")
            if ctx.obj['verbose'] and preview.get('suggested_mappings'):
                click.echo(f"Suggested mappings: {json.dumps(preview['suggested_mappings'], indent=2)}")
        except BulkDataExchangeError as e:
            click.echo(f"Error previewing file: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_preview())


@import_group.command('submit')
@click.argument('module')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--mappings-json', help='Column mappings as JSON list of {key, source_column}')
@click.option('--context-json', help='Module context as JSON object')
@click.option('--duplicate-strategy', type=click.Choice(['skip', 'update', 'error']), help='Duplicate handling')
@click.pass_context
def import_submit(ctx, module, file_path, mappings_json, context_json, duplicate_strategy):
    """Queue a spreadsheet for import"""

    async def _submit():
        try:
            await _initialize_pipeline(ctx)

            mappings = _parse_json(mappings_json, "mappings") if mappings_json else None
            context = _parse_json(context_json, "context") if context_json else {}
            if duplicate_strategy:
                context["duplicate_strategy"] = duplicate_strategy

            path = Path(file_path)
            job = await pipeline.submit_import(module, path.read_bytes(), path.name, ctx.obj['actor'],
                                               mappings=mappings, context=context)

            click.echo("Import job submitted successfully!")
            click.echo(f"Job ID: {job.id}")
            click.echo(f"Module: {job.module}")
            click.echo(f"Total rows: {job.total_rows}")

        except BulkDataExchangeError as e:
            click.echo(f"Error submitting import: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_submit())


@import_group.command('status')
@click.argument('job_id', required=False)
@click.option('--limit', type=int, default=10, help='Limit number of jobs to show')
@click.pass_context
def import_status(ctx, job_id, limit):
    """Show one import job, or recent imports"""

    async def _status():
        try:
            await _initialize_pipeline(ctx)
            if job_id:
                job = await pipeline.get_import_job(job_id, ctx.obj['actor'], ctx.obj['elevated'])
                _display_job_details(job.to_dict(), ctx.obj['verbose'])
            else:
                jobs = await pipeline.jobs.list_import_history(ctx.obj['actor'], ctx.obj['elevated'])
                _display_jobs_table([j.to_dict() for j in jobs[:limit]])
        except BulkDataExchangeError as e:
            click.echo(f"Error getting import status: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_status())


@import_group.command('errors')
@click.argument('job_id')
@click.pass_context
def import_errors(ctx, job_id):
    """List row errors of an import job"""

    async def _errors():
        try:
            await _initialize_pipeline(ctx)
            errors = await pipeline.get_import_errors(job_id, ctx.obj['actor'], ctx.obj['elevated'])
            if not errors:
                click.echo("No errors")
            for error in errors:
                click.echo(f"Row {error.row_number}: {error.message}")
        except BulkDataExchangeError as e:
            click.echo(f"Error getting import errors: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_errors())


@import_group.command('cancel')
@click.argument('job_id')
@click.pass_context
def import_cancel(ctx, job_id):
    """Cancel a pending or running import"""

    async def _cancel():
        try:
            await _initialize_pipeline(ctx)
            job = await pipeline.cancel_import(job_id, ctx.obj['actor'], ctx.obj['elevated'])
            click.echo(f"Import job {job.id} is {job.status.value}")
        except BulkDataExchangeError as e:
            click.echo(f"Error cancelling import: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_cancel())


# Export Commands
@export_group.command('submit')
@click.argument('module')
@click.option('--column', '-C', 'columns', multiple=True, required=True, help='Column to export (repeatable)')
@click.option('--filters-json', help='Exact-match filters as JSON object')
@click.option('--context-json', help='Module context as JSON object')
@click.option('--file-name', help='Output file name')
@click.pass_context
def export_submit(ctx, module, columns, filters_json, context_json, file_name):
    """Queue an export"""

    async def _submit():
        try:
            await _initialize_pipeline(ctx)
            filters = _parse_json(filters_json, "filters") if filters_json else {}
            context = _parse_json(context_json, "context") if context_json else None
            job = await pipeline.submit_export(module, filters, list(columns), ctx.obj['actor'],
                                               file_name=file_name, context=context)
            click.echo("Export job submitted successfully!")
            click.echo(f"Job ID: {job.id}")
            click.echo(f"File name: {job.file_name}")
        except BulkDataExchangeError as e:
            click.echo(f"Error submitting export: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_submit())


@export_group.command('status')
@click.argument('job_id', required=False)
@click.option('--limit', type=int, default=10, help='Limit number of jobs to show')
@click.pass_context
def export_status(ctx, job_id, limit):
    """Show one export job, or recent exports"""

    async def _status():
        try:
            await _initialize_pipeline(ctx)
            if job_id:
                job = await pipeline.get_export_job(job_id, ctx.obj['actor'], ctx.obj['elevated'])
                _display_job_details(job.to_dict(), ctx.obj['verbose'])
            else:
                jobs = await pipeline.jobs.list_export_history(ctx.obj['actor'], ctx.obj['elevated'])
                _display_jobs_table([j.to_dict() for j in jobs[:limit]])
        except BulkDataExchangeError as e:
            click.echo(f"Error getting export status: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_status())


@export_group.command('download')
@click.argument('job_id')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the file here instead of printing its location')
@click.pass_context
def export_download(ctx, job_id, output):
    """Print the location of, or save, a completed export"""

    async def _download():
        try:
            await _initialize_pipeline(ctx)
            if output:
                content = await pipeline.jobs.read_export_artifact(job_id, ctx.obj['actor'], ctx.obj['elevated'])
                Path(output).write_bytes(content)
                click.echo(f"Saved {len(content)} bytes to {output}")
            else:
                click.echo(await pipeline.get_export_download(job_id, ctx.obj['actor'], ctx.obj['elevated']))
        except BulkDataExchangeError as e:
            click.echo(f"Error downloading export: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_download())


# Schedule Commands
@schedule.command('create')
@click.argument('name')
@click.argument('module')
@click.option('--schedule', 'expression', required=True, help='daily, weekly, monthly or a 5-field cron expression')
@click.option('--column', '-C', 'columns', multiple=True, required=True, help='Column to export (repeatable)')
@click.option('--recipient', '-r', 'recipients', multiple=True, required=True, help='Recipient email (repeatable)')
@click.option('--filters-json', help='Exact-match filters as JSON object')
@click.option('--context-json', help='Module context as JSON object')
@click.option('--inactive', is_flag=True, help='Create without activating')
@click.pass_context
def schedule_create(ctx, name, module, expression, columns, recipients, filters_json, context_json, inactive):
    """Create a scheduled export"""

    async def _create():
        try:
            await _initialize_pipeline(ctx)
            scheduled = await pipeline.create_scheduled_export(
                ctx.obj['actor'],
                name=name,
                module=module,
                columns=list(columns),
                schedule=expression,
                recipients=list(recipients),
                filters=_parse_json(filters_json, "filters") if filters_json else None,
                context=_parse_json(context_json, "context") if context_json else None,
                is_active=not inactive,
            )
            click.echo("Scheduled export created successfully!")
            click.echo(f"ID: {scheduled.id}")
            click.echo(f"Next run: {scheduled.next_run_at.isoformat()}")
        except BulkDataExchangeError as e:
            click.echo(f"Error creating scheduled export: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_create())


@schedule.command('list')
@click.pass_context
def schedule_list(ctx):
    """List scheduled exports"""

    async def _list():
        try:
            await _initialize_pipeline(ctx)
            items = await pipeline.list_scheduled_exports(ctx.obj['actor'], ctx.obj['elevated'])
            if not items:
                click.echo("No scheduled exports found")
                return

            click.echo(f"{'ID':<38} {'Name':<24} {'Module':<20} {'Schedule':<16} {'Active':<7} {'Next run'}")
            click.echo("-" * 130)
            for item in items:
                next_run = item.next_run_at.isoformat() if item.next_run_at else "-"
                click.echo(f"{item.id:<38} {item.name[:23]:<24} {item.module:<20} "
                           f"{item.schedule:<16} {str(item.is_active):<7} {next_run}")
        except BulkDataExchangeError as e:
            click.echo(f"Error listing scheduled exports: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_list())


@schedule.command('activate')
@click.argument('scheduled_id')
@click.pass_context
def schedule_activate(ctx, scheduled_id):
    """Activate a scheduled export"""
    _set_schedule_active(ctx, scheduled_id, True)


@schedule.command('deactivate')
@click.argument('scheduled_id')
@click.pass_context
def schedule_deactivate(ctx, scheduled_id):
    """Deactivate a scheduled export"""
    _set_schedule_active(ctx, scheduled_id, False)


@schedule.command('runs')
@click.argument('scheduled_id')
@click.pass_context
def schedule_runs(ctx, scheduled_id):
    """Show recent runs of a scheduled export"""

    async def _runs():
        try:
            await _initialize_pipeline(ctx)
            runs = await pipeline.list_scheduled_runs(scheduled_id, ctx.obj['actor'], ctx.obj['elevated'])
            if not runs:
                click.echo("No runs yet")
            for run in runs:
                line = f"{run.created_at.isoformat()}  {run.status.value:<10} export={run.export_job_id or '-'}"
                if run.error_message:
                    line += f"  error={run.error_message}"
                click.echo(line)
        except BulkDataExchangeError as e:
            click.echo(f"Error listing runs: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_runs())


# Helper Functions
async def _initialize_pipeline(ctx, start: bool = False, create_schema: bool = False):
    """Initialize the global pipeline instance"""
    global pipeline

    if not pipeline:
        pipeline = DataExchangePipeline(ctx.obj['settings'], create_schema=create_schema)
        if start:
            await pipeline.start()
        else:
            await pipeline.open()


async def _shutdown_pipeline():
    global pipeline

    if pipeline:
        await pipeline.stop()
        pipeline = None


def _set_schedule_active(ctx, scheduled_id: str, is_active: bool):
    async def _toggle():
        try:
            await _initialize_pipeline(ctx)
            scheduled = await pipeline.set_scheduled_export_active(
                scheduled_id, is_active, ctx.obj['actor'], ctx.obj['elevated']
            )
            state = "active" if scheduled.is_active else "inactive"
            click.echo(f"Scheduled export {scheduled.id} is {state}")
        except BulkDataExchangeError as e:
            click.echo(f"Error updating scheduled export: {e.message}", err=True)
            sys.exit(1)
        finally:
            await _shutdown_pipeline()

    asyncio.run(_toggle())


def _parse_json(text: str, name: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON for {name}: {str(e)}")


def _display_job_details(job_info: Dict[str, Any], verbose: bool):
    """Display detailed job information"""
    click.echo(f"Job ID: {job_info['id']}")
    click.echo(f"Module: {job_info['module']}")
    click.echo(f"Status: {job_info['status']}")
    click.echo(f"Created: {job_info['created_at']}")

    if job_info.get('started_at'):
        click.echo(f"Started: {job_info['started_at']}")
    if job_info.get('completed_at'):
        click.echo(f"Completed: {job_info['completed_at']}")

    if 'processed_rows' in job_info:
        click.echo(f"Rows: {job_info['processed_rows']}/{job_info['total_rows']} processed, "
                   f"{job_info['success_rows']} ok, {job_info['error_rows']} failed, "
                   f"{job_info['skipped_rows']} skipped")
    else:
        click.echo(f"Rows: {job_info['total_rows']}")
        if job_info.get('artifact_location'):
            click.echo(f"File: {job_info['artifact_location']}")
        if job_info.get('error_message'):
            click.echo(f"Error: {job_info['error_message']}")

    if verbose:
        click.echo(f"Details: {json.dumps(job_info, indent=2, default=str)}")


def _display_jobs_table(jobs: list):
    """Display jobs in table format"""
    if not jobs:
        click.echo("No jobs found")
        return

    click.echo(f"{'Job ID':<38} {'Module':<20} {'Status':<12} {'Rows':<8} {'Created'}")
    click.echo("-" * 100)

    for job in jobs:
        click.echo(f"{job['id']:<38} {job['module']:<20} {job['status']:<12} "
                   f"{job['total_rows']:<8} {job['created_at']}")


def main():
    """Main CLI entry point"""
    cli()


if __name__ == '__main__':
    main()
