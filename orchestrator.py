# orchestrator.py
import signal
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

import click

from errors import QueueError, StoreUnavailable
from models import DEFAULT_JOBS, JobSpec
from runner import ProcessRunner
from storage import Storage
from worker import Worker

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FORCED = 137
# graceful stop exits with 128 + signal number
EXIT_SIGNAL_BASE = 128

FORCED_JOIN_TIMEOUT = 5.0
POLL_SECONDS = 0.2

DEFAULTS = {
    "workers": "3",
    "stale_seconds": "10",
    "sweep_interval": "0",
    "reset_on_start": "true",
}


def _parse_bool(value):
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    db_path: str = "jobs.db"
    workers: int = 3
    stale_seconds: float = 10.0
    sweep_interval: float = 0.0
    reset_on_start: bool = True
    jobs: Optional[Sequence[JobSpec]] = None

    @classmethod
    def resolve(cls, store, db_path, workers=None, stale_seconds=None, sweep_interval=None,
                reset_on_start=None, jobs=None):
        """Fill unset options from the config table, then from DEFAULTS."""
        def pick(value, key):
            if value is not None:
                return value
            return store.get_config(key, default=DEFAULTS[key])

        settings = cls(
            db_path=db_path,
            workers=int(pick(workers, "workers")),
            stale_seconds=float(pick(stale_seconds, "stale_seconds")),
            sweep_interval=float(pick(sweep_interval, "sweep_interval")),
            reset_on_start=_parse_bool(pick(reset_on_start, "reset_on_start")),
            jobs=jobs,
        )
        if settings.workers < 1:
            raise ValueError("workers must be at least 1")
        if settings.stale_seconds <= 0:
            raise ValueError("stale_seconds must be positive")
        if settings.sweep_interval < 0:
            raise ValueError("sweep_interval must not be negative")
        return settings

    @property
    def stale_threshold(self):
        return timedelta(seconds=self.stale_seconds)


def format_job(job):
    started = job.started_at.isoformat(timespec="seconds") if job.started_at else "N/A"
    finished = job.finished_at.isoformat(timespec="seconds") if job.finished_at else "N/A"
    stdout = (job.stdout or "").strip().replace("\n", " ")
    stderr = (job.stderr or "").strip().replace("\n", " ")
    return (f"{job.id:>6} | {job.command_line:<20} | {job.status.value:<8} | "
            f"Started: {started} | Finished: {finished} | Stdout: {stdout} | Stderr: {stderr}")


def print_jobs(jobs):
    if not jobs:
        click.echo("No jobs found in the database.")
        return
    click.echo("Jobs in the database:")
    for job in jobs:
        click.echo(format_job(job))


class Orchestrator:
    """Runs one pass over the queue with a fixed pool of worker threads.

    Shutdown is two-stage. The first SIGINT/SIGTERM stops new claims and lets
    in-flight jobs finish; the second kills the in-flight children, whose jobs
    are then recorded as failed.
    """

    def __init__(self, settings: Settings, runner=None, install_signals=True):
        self.settings = settings
        self.runner = runner or ProcessRunner()
        self.install_signals = install_signals
        self.stop_event = threading.Event()
        self.force_event = threading.Event()
        self.stop_signal = None
        self.workers = []
        self._errors = []
        self._errors_lock = threading.Lock()

    # ---------------- Shutdown ----------------
    def request_shutdown(self, signum=signal.SIGINT):
        """First call drains the pool, the second kills in-flight jobs."""
        if self.stop_signal is None:
            self.stop_signal = signum
            self.stop_event.set()
            click.echo(f"\n🛑 {signal.Signals(signum).name} received. Finishing in-flight jobs ...")
            click.echo("   (send the signal again to force-quit)")
            return
        if not self.force_event.is_set():
            self.force_event.set()
            killed = self.runner.kill_all()
            click.echo(f"\n💥 Forced shutdown, killed {killed} running job(s).")

    def _handle_signal(self, signum, frame):
        self.request_shutdown(signum)

    @contextmanager
    def _signal_handlers(self):
        if not self.install_signals:
            yield
            return
        previous = {sig: signal.signal(sig, self._handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    # ---------------- Run ----------------
    def run(self) -> int:
        try:
            store = Storage(self.settings.db_path)
        except StoreUnavailable as err:
            click.echo(f"❌ {err}", err=True)
            return EXIT_ERROR
        click.echo(f"Database connection established ({self.settings.db_path})")

        final_jobs = None
        try:
            with store:
                # installed before seeding so an early Ctrl+C still stops with 130
                with self._signal_handlers():
                    self._prepare(store)
                    self._run_pool(store)
                if not self.force_event.is_set():
                    final_jobs = store.list_jobs()
            click.echo("Database connection closed")
        except (QueueError, sqlite3.Error) as err:
            click.echo(f"❌ {err}", err=True)
            return EXIT_ERROR

        if final_jobs is not None:
            print_jobs(final_jobs)
        return self.exit_status()

    def _prepare(self, store):
        store.initialize(reset=self.settings.reset_on_start)
        swept = store.sweep_stale(self.settings.stale_threshold)
        click.echo(f"Stale jobs swept: {swept}")
        specs = list(self.settings.jobs) if self.settings.jobs is not None else list(DEFAULT_JOBS)
        if not specs or store.seed(specs):
            click.echo(f"Jobs table seeded with {len(specs)} job(s)")
        else:
            click.echo("Jobs table already seeded")
        print_jobs(store.list_jobs())

    def _run_pool(self, store):
        threads = []
        for i in range(self.settings.workers):
            w = Worker(store, runner=self.runner, worker_id=f"worker-{i+1}", stop_event=self.stop_event)
            t = threading.Thread(target=self._worker_main, args=(w,), name=f"worker-thread-{i+1}", daemon=True)
            self.workers.append(w)
            threads.append((w, t))
            t.start()
        click.echo(f"🚀 Started {len(threads)} worker(s). Press Ctrl+C to stop gracefully.")

        try:
            self._wait_for_workers(store, threads)
        except BaseException:
            # the store closes right after this; no worker or child may outlive it
            self.stop_event.set()
            self.runner.kill_all()
            for _, t in threads:
                t.join(timeout=FORCED_JOIN_TIMEOUT)
            raise

    def _wait_for_workers(self, store, threads):
        next_sweep = self._next_sweep_at()
        for _, t in threads:
            while t.is_alive():
                if self.force_event.is_set():
                    t.join(timeout=FORCED_JOIN_TIMEOUT)
                    break
                t.join(timeout=POLL_SECONDS)
                if next_sweep is not None and time.monotonic() >= next_sweep:
                    swept = store.sweep_stale(self.settings.stale_threshold)
                    if swept:
                        click.echo(f"Stale jobs swept: {swept}")
                    next_sweep = self._next_sweep_at()

    def _worker_main(self, worker):
        try:
            worker.run()
        except Exception as err:
            with self._errors_lock:
                self._errors.append(err)
            # let the other workers finish their current job and stop
            self.stop_event.set()
            click.echo(f"❌ [{worker.worker_id}] {err}", err=True)

    def _next_sweep_at(self):
        if self.settings.sweep_interval <= 0:
            return None
        return time.monotonic() + self.settings.sweep_interval

    @property
    def errors(self):
        with self._errors_lock:
            return list(self._errors)

    def exit_status(self) -> int:
        if self.force_event.is_set():
            return EXIT_FORCED
        if self._errors:
            return EXIT_ERROR
        if self.stop_signal is not None:
            return EXIT_SIGNAL_BASE + int(self.stop_signal)
        return EXIT_OK
