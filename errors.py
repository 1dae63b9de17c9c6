# errors.py


class QueueError(Exception):
    """Base class for job queue failures that abort a run."""


class StoreUnavailable(QueueError):
    """The job database could not be opened or created."""


class JobNotFound(QueueError):
    """A write-back targeted a job id that no longer exists."""

    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class MalformedJobRow(QueueError, ValueError):
    """A stored row could not be turned into a Job."""
