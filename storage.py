# storage.py
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import timedelta

from errors import JobNotFound, StoreUnavailable
from models import Job, JobStatus, to_db_time, utc_now

TIMEOUT_MARKER = "Job timed out"

JOBS_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY,
    command TEXT NOT NULL,
    args TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    started_at DATETIME,
    finished_at DATETIME,
    stdout TEXT,
    stderr TEXT
)
"""

CONFIG_SCHEMA = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class Storage:
    """SQLite-backed job table shared by every worker of one process.

    The single connection runs in autocommit mode; every write is an explicit
    ``BEGIN IMMEDIATE`` transaction. A sqlite3 connection object cannot carry
    two transactions at once, so statements from different threads are
    serialized on ``_lock``.
    """

    def __init__(self, db_path="jobs.db"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            self.conn.row_factory = sqlite3.Row

            # Better concurrency for multiple workers
            self.conn.execute("PRAGMA journal_mode=WAL;")
            self.conn.execute("PRAGMA synchronous=NORMAL;")

            self._init_schema()
        except sqlite3.Error as err:
            raise StoreUnavailable(f"cannot open job store {self.db_path}: {err}") from err

    def _init_schema(self):
        self.conn.execute(JOBS_SCHEMA)
        self.conn.execute(CONFIG_SCHEMA)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @contextmanager
    def _transaction(self):
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    # ---------------- Lifecycle ----------------
    def initialize(self, reset=True):
        """Prepare the jobs table for a run.

        With ``reset`` (the default) the queue is dropped and recreated, so
        nothing survives from a previous run. The config table is kept.
        """
        with self._transaction() as conn:
            if reset:
                conn.execute("DROP TABLE IF EXISTS jobs")
            conn.execute(JOBS_SCHEMA)

    def close(self):
        with self._lock:
            if self.conn is None:
                return
            self.conn.close()
            self.conn = None

    @property
    def closed(self):
        return self.conn is None

    # ---------------- Jobs ----------------
    def seed(self, specs):
        """Insert ``specs`` as pending jobs unless the table already has rows."""
        with self._transaction() as conn:
            count = conn.execute("SELECT count(*) AS c FROM jobs").fetchone()["c"]
            if count > 0:
                return 0
            conn.executemany(
                "INSERT INTO jobs (command, args, status) VALUES (?, ?, 'pending')",
                [(spec.command, json.dumps(list(spec.args))) for spec in specs],
            )
        return len(specs)

    def list_jobs(self):
        with self._lock:
            rows = self.conn.execute("SELECT * FROM jobs ORDER BY id").fetchall()
        return [Job.from_row(row) for row in rows]

    def get_job(self, job_id):
        with self._lock:
            row = self.conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        return Job.from_row(row) if row else None

    def counts(self):
        with self._lock:
            rows = self.conn.execute("SELECT status, COUNT(*) AS c FROM jobs GROUP BY status").fetchall()
        counts = {status: 0 for status in JobStatus}
        for row in rows:
            counts[JobStatus(row["status"])] = row["c"]
        return counts

    def sweep_stale(self, threshold: timedelta, now=None) -> int:
        """Fail every running job started more than ``threshold`` ago."""
        now = now or utc_now()
        cutoff = to_db_time(now - threshold)
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE jobs
                SET status='failed', stderr=?, finished_at=?
                WHERE status='running' AND started_at < ?
                """,
                (TIMEOUT_MARKER, to_db_time(now), cutoff),
            )
            return cur.rowcount

    def claim_next(self, now=None):
        """
        Atomically move the oldest pending job to running and return it.
        Returns None when nothing is pending.
        """
        started_at = to_db_time(now or utc_now())
        with self._transaction() as conn:
            rows = conn.execute(
                """
                UPDATE jobs
                SET status='running', started_at=?
                WHERE id = (
                    SELECT id FROM jobs
                    WHERE status='pending'
                    ORDER BY id ASC
                    LIMIT 1
                )
                RETURNING *
                """,
                (started_at,),
            ).fetchall()
        if not rows:
            return None
        return Job.from_row(rows[0])

    def update(self, job: Job) -> bool:
        """Write back a finished job.

        Returns False when the row already reached a terminal state (swept
        while the job ran); that state is kept. Raises JobNotFound when the
        row is gone.
        """
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE jobs
                SET status=?, finished_at=?, stdout=?, stderr=?
                WHERE id=? AND status='running'
                """,
                (job.status.value, to_db_time(job.finished_at), job.stdout, job.stderr, job.id),
            )
            if cur.rowcount == 1:
                return True
            exists = conn.execute("SELECT 1 FROM jobs WHERE id=?", (job.id,)).fetchone()
            if exists is None:
                raise JobNotFound(job.id)
            return False

    # ---------------- Config helpers ----------------
    def get_config(self, key, default=None):
        with self._lock:
            row = self.conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
        return row["value"] if row else default

    def set_config(self, key, value):
        now = to_db_time(utc_now())
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO config (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, str(value), now))

    def list_config(self):
        with self._lock:
            rows = self.conn.execute("SELECT key, value, updated_at FROM config ORDER BY key").fetchall()
        return [(row["key"], row["value"], row["updated_at"]) for row in rows]
