# worker.py
import uuid
from dataclasses import dataclass

from models import JobStatus, utc_now
from runner import ProcessRunner


@dataclass
class WorkerRunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class Worker:
    def __init__(self, store, runner=None, worker_id=None, stop_event=None):
        self.store = store
        self.runner = runner or ProcessRunner()
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.stop_event = stop_event  # threading.Event() shared by the pool
        self.summary = WorkerRunSummary()

    def run(self):
        """Claim and run jobs one at a time until the queue is empty or stop is requested.

        Job failures end up as ``failed`` rows; store errors propagate.
        """
        self._log("starting")
        while not self._stopping():
            job = self.store.claim_next()
            if job is None:
                self._log("no pending jobs left")
                break
            self._process_job(job)
        self._log(f"stopped (processed={self.summary.processed}, "
                  f"done={self.summary.succeeded}, failed={self.summary.failed})")
        return self.summary

    def _stopping(self):
        return bool(self.stop_event and self.stop_event.is_set())

    def _log(self, message):
        now = utc_now().isoformat(timespec="seconds")
        print(f"[{now}] [{self.worker_id}] {message}", flush=True)

    def _process_job(self, job):
        self._log(f"Job {job.id}: pending → running ({job.command_line})")
        result = self.runner.run(job.command, job.args)
        finished = job.finish(result.exit_code, result.stdout, result.stderr)
        recorded = self.store.update(finished)

        self.summary.processed += 1
        if not recorded:
            # swept as stale while it ran; the stored failure stands
            self.summary.failed += 1
            self._log(f"Job {job.id}: already failed by the stale sweep, "
                      f"result discarded (exit_code={result.exit_code})")
            return
        if finished.status is JobStatus.DONE:
            self.summary.succeeded += 1
        else:
            self.summary.failed += 1
        duration = (finished.finished_at - job.started_at).total_seconds()
        self._log(f"Job {job.id}: running → {finished.status.value} "
                  f"(exit_code={result.exit_code}, duration={duration:.3f}s)")
