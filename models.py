# models.py
import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from errors import MalformedJobRow


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    # fixed width so stored timestamps compare as text
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedJobRow(f"timestamp must be text, got {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace(" ", "T"))
    except ValueError as err:
        raise MalformedJobRow(f"bad timestamp {value!r}") from err
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class JobSpec:
    """A job to enqueue: an executable and its argument vector."""
    command: str
    args: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data) -> "JobSpec":
        if not isinstance(data, dict):
            raise ValueError(f"job entry must be an object, got {data!r}")
        command = data.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ValueError(f"job command must be a non-empty string, got {command!r}")
        args = data.get("args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError(f"job args must be a list of strings, got {args!r}")
        return cls(command=command, args=tuple(args))


DEFAULT_JOBS = (
    JobSpec("echo", ("Hello, World!",)),
    JobSpec("ls", ("-l",)),
    JobSpec("sleep", ("5",)),
    JobSpec("date"),
    JobSpec("uptime"),
)


@dataclass(frozen=True)
class Job:
    id: int
    command: str
    args: Tuple[str, ...] = ()
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Job":
        """Parse a ``jobs`` row, raising MalformedJobRow on anything unexpected."""
        try:
            job_id = row["id"]
            command = row["command"]
            raw_args = row["args"]
            raw_status = row["status"]
            started_at = from_db_time(row["started_at"])
            finished_at = from_db_time(row["finished_at"])
            stdout = row["stdout"]
            stderr = row["stderr"]
        except (KeyError, IndexError) as err:
            raise MalformedJobRow(f"missing column: {err}") from err

        if not isinstance(job_id, int) or isinstance(job_id, bool):
            raise MalformedJobRow(f"job id must be an integer, got {job_id!r}")
        if not isinstance(command, str) or not command:
            raise MalformedJobRow(f"job {job_id}: empty command")
        try:
            args = json.loads(raw_args)
        except (TypeError, ValueError) as err:
            raise MalformedJobRow(f"job {job_id}: args are not JSON: {raw_args!r}") from err
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise MalformedJobRow(f"job {job_id}: args must be a list of strings")
        try:
            status = JobStatus(raw_status)
        except ValueError as err:
            raise MalformedJobRow(f"job {job_id}: unknown status {raw_status!r}") from err
        for name, value in (("stdout", stdout), ("stderr", stderr)):
            if value is not None and not isinstance(value, str):
                raise MalformedJobRow(f"job {job_id}: {name} must be text")

        if (started_at is not None) != (status is not JobStatus.PENDING):
            raise MalformedJobRow(f"job {job_id}: started_at inconsistent with status {status.value}")
        if (finished_at is not None) != status.terminal:
            raise MalformedJobRow(f"job {job_id}: finished_at inconsistent with status {status.value}")

        return cls(
            id=job_id,
            command=command,
            args=tuple(args),
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            stdout=stdout,
            stderr=stderr,
        )

    def finish(self, exit_code: int, stdout: str, stderr: str, now: Optional[datetime] = None) -> "Job":
        """Return the terminal copy of a running job for write-back."""
        return replace(
            self,
            status=JobStatus.DONE if exit_code == 0 else JobStatus.FAILED,
            finished_at=now or utc_now(),
            stdout=stdout,
            stderr=stderr,
        )

    @property
    def command_line(self) -> str:
        return " ".join((self.command,) + self.args)
