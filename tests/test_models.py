from __future__ import annotations

from datetime import datetime, timezone

import pytest

from errors import MalformedJobRow
from models import Job, JobSpec, JobStatus, from_db_time, to_db_time


def _row(**overrides):
    row = {
        "id": 1,
        "command": "echo",
        "args": '["hi"]',
        "status": "pending",
        "started_at": None,
        "finished_at": None,
        "stdout": None,
        "stderr": None,
    }
    row.update(overrides)
    return row


def test_from_row_parses_pending_job() -> None:
    job = Job.from_row(_row())

    assert job.id == 1
    assert job.args == ("hi",)
    assert job.status is JobStatus.PENDING
    assert job.started_at is None
    assert job.command_line == "echo hi"


def test_from_row_parses_terminal_job_timestamps() -> None:
    started = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    finished = datetime(2026, 1, 2, 3, 4, 9, tzinfo=timezone.utc)

    job = Job.from_row(_row(
        status="done",
        started_at=to_db_time(started),
        finished_at=to_db_time(finished),
        stdout="hi\n",
        stderr="",
    ))

    assert job.started_at == started
    assert job.finished_at == finished
    assert job.stdout == "hi\n"


@pytest.mark.parametrize(
    "overrides",
    [
        {"args": "not json"},
        {"args": '{"a": 1}'},
        {"args": "[1, 2]"},
        {"status": "processing"},
        {"command": ""},
        {"id": "7"},
        {"status": "running"},
        {"status": "done", "started_at": "2026-01-01T00:00:00+00:00"},
        {"started_at": "2026-01-01T00:00:00+00:00"},
        {"status": "running", "started_at": "yesterday"},
    ],
)
def test_from_row_rejects_malformed_rows(overrides) -> None:
    with pytest.raises(MalformedJobRow):
        Job.from_row(_row(**overrides))


def test_from_row_rejects_missing_column() -> None:
    row = _row()
    del row["stderr"]

    with pytest.raises(MalformedJobRow):
        Job.from_row(row)


def test_naive_timestamps_are_read_as_utc() -> None:
    assert from_db_time("2026-01-02 03:04:05") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_db_times_compare_as_text() -> None:
    early = to_db_time(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    late = to_db_time(datetime(2026, 1, 2, 3, 4, 5, 500, tzinfo=timezone.utc))

    assert early < late
    assert len(early) == len(late)


def test_finish_maps_exit_code_to_status() -> None:
    running = Job(id=3, command="x", status=JobStatus.RUNNING,
                  started_at=datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert running.finish(0, "out", "").status is JobStatus.DONE
    failed = running.finish(2, "", "boom")
    assert failed.status is JobStatus.FAILED
    assert failed.finished_at is not None
    assert failed.stderr == "boom"
    assert running.status is JobStatus.RUNNING


def test_job_spec_from_dict_validates_entries() -> None:
    assert JobSpec.from_dict({"command": "ls", "args": ["-l"]}) == JobSpec("ls", ("-l",))
    assert JobSpec.from_dict({"command": "date"}) == JobSpec("date")

    for bad in ({"command": ""}, {"args": []}, {"command": "ls", "args": "-l"}, ["ls"]):
        with pytest.raises(ValueError):
            JobSpec.from_dict(bad)
