# cli.py
import json
from datetime import timedelta

import click

from errors import QueueError
from models import JobSpec, JobStatus
from orchestrator import Orchestrator, Settings, print_jobs
from storage import Storage


@click.group()
@click.option("--db", "db_path", default="jobs.db", show_default=True, help="Path to the SQLite job database")
@click.pass_context
def cli(ctx, db_path):
    """jobq - a persistent single-node job queue"""
    ctx.obj = {"db_path": db_path}


def _open(ctx):
    try:
        return Storage(ctx.obj["db_path"])
    except QueueError as err:
        raise click.ClickException(str(err)) from err


def _load_jobs_file(path):
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as err:
        raise click.BadParameter(f"cannot read jobs file: {err}", param_hint="--jobs-file") from err
    if not isinstance(data, list):
        raise click.BadParameter("jobs file must hold a JSON list", param_hint="--jobs-file")
    try:
        return [JobSpec.from_dict(entry) for entry in data]
    except ValueError as err:
        raise click.BadParameter(str(err), param_hint="--jobs-file") from err


# ---------------- Run ----------------
@cli.command()
@click.option("--workers", default=None, type=int, help="Number of workers (uses config if set)")
@click.option("--stale-seconds", default=None, type=float, help="Fail running jobs older than this (uses config if set)")
@click.option("--sweep-interval", default=None, type=float, help="Seconds between periodic sweeps, 0 = startup only (uses config if set)")
@click.option("--jobs-file", default=None, type=click.Path(exists=True, dir_okay=False),
              help="JSON list of {command, args} to seed instead of the demo jobs")
@click.option("--keep-queue", is_flag=True, default=False, help="Do not reset the jobs table on startup")
@click.pass_context
def run(ctx, workers, stale_seconds, sweep_interval, jobs_file, keep_queue):
    """Seed the queue and run a worker pool until it is drained"""
    jobs = _load_jobs_file(jobs_file) if jobs_file else None
    with _open(ctx) as db:
        try:
            settings = Settings.resolve(
                db,
                ctx.obj["db_path"],
                workers=workers,
                stale_seconds=stale_seconds,
                sweep_interval=sweep_interval,
                reset_on_start=False if keep_queue else None,
                jobs=jobs,
            )
        except ValueError as err:
            raise click.UsageError(str(err)) from err
    click.echo(f"⚙ workers={settings.workers} stale_seconds={settings.stale_seconds:g} "
               f"sweep_interval={settings.sweep_interval:g} reset_on_start={settings.reset_on_start}")
    status = Orchestrator(settings).run()
    ctx.exit(status)


# ---------------- List ----------------
@cli.command("list")
@click.option("--state", default=None, type=click.Choice([s.value for s in JobStatus]), help="Filter by status")
@click.pass_context
def list_jobs(ctx, state):
    """List jobs in id order"""
    with _open(ctx) as db:
        jobs = db.list_jobs()
    if state:
        jobs = [job for job in jobs if job.status.value == state]
    print_jobs(jobs)


# ---------------- Status ----------------
@cli.command()
@click.pass_context
def status(ctx):
    """Show summary of job states"""
    with _open(ctx) as db:
        counts = db.counts()

    if not any(counts.values()):
        click.echo("No jobs in the system yet.")
        return

    click.echo("📊 Job Status Summary:")
    for state, count in counts.items():
        click.echo(f"  {state.value}: {count}")


@cli.command()
@click.argument("job_id", type=int)
@click.pass_context
def show(ctx, job_id):
    """Show details of a single job"""
    with _open(ctx) as db:
        job = db.get_job(job_id)
    if not job:
        click.echo(f"❌ Job {job_id} not found.")
        ctx.exit(1)

    click.echo(f"🔎 Job {job.id}")
    click.echo(f"  Command: {job.command_line}")
    click.echo(f"  Status: {job.status.value}")
    click.echo(f"  Started: {job.started_at.isoformat() if job.started_at else '-'}")
    click.echo(f"  Finished: {job.finished_at.isoformat() if job.finished_at else '-'}")
    if job.started_at and job.finished_at:
        click.echo(f"  Duration: {(job.finished_at - job.started_at).total_seconds():.3f}s")
    click.echo("  Stdout:")
    click.echo(job.stdout or "(no output)")
    click.echo("  Stderr:")
    click.echo(job.stderr or "(no output)")


# ---------------- Rescue operations ----------------
@cli.command()
@click.option("--older-than-seconds", default=10.0, show_default=True, type=float,
              help="Fail running jobs started more than N seconds ago")
@click.pass_context
def sweep(ctx, older_than_seconds):
    """Mark stale running jobs as failed"""
    with _open(ctx) as db:
        swept = db.sweep_stale(timedelta(seconds=older_than_seconds))
    if not swept:
        click.echo("No stale jobs found.")
        return
    click.echo(f"🔧 Marked {swept} stale job(s) as failed.")


# ---------------- Config management ----------------
@cli.group()
def config():
    """Runtime configuration for the worker pool"""
    pass

@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Set a config key to a value"""
    with _open(ctx) as db:
        db.set_config(key, value)
    click.echo(f"🛠️ Config '{key}' set to '{value}'.")

@config.command("get")
@click.argument("key")
@click.option("--default", default=None, help="Fallback if key not set")
@click.pass_context
def config_get(ctx, key, default):
    """Get a config key"""
    with _open(ctx) as db:
        value = db.get_config(key)
    if value is None:
        if default is not None:
            click.echo(f"{key}={default} (default)")
        else:
            click.echo(f"{key} not set")
        return
    click.echo(f"{key}={value}")

@config.command("list")
@click.pass_context
def config_list(ctx):
    """List all config keys"""
    with _open(ctx) as db:
        rows = db.list_config()
    if not rows:
        click.echo("No config keys set.")
        return
    for key, value, updated_at in rows:
        click.echo(f"{key}={value} (updated_at={updated_at})")


# ---------------- Entrypoint ----------------
if __name__ == "__main__":
    cli()
