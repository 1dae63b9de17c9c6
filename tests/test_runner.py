from __future__ import annotations

import sys
import threading
import time

from runner import REFUSED_EXIT, SPAWN_FAILED_EXIT, ProcessRunner


def test_run_captures_stdout_and_exit_code() -> None:
    result = ProcessRunner().run("echo", ["hi"])

    assert result.ok
    assert result.exit_code == 0
    assert "hi" in result.stdout


def test_run_captures_stderr_and_nonzero_exit() -> None:
    code = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"

    result = ProcessRunner().run(sys.executable, ["-c", code])

    assert result.exit_code == 3
    assert not result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_args_are_not_interpreted_by_a_shell() -> None:
    result = ProcessRunner().run("echo", ["$HOME", "a;b"])

    assert result.stdout.strip() == "$HOME a;b"


def test_spawn_failure_is_reported_as_result() -> None:
    result = ProcessRunner().run("definitely-not-a-real-command-xyz", [])

    assert result.exit_code == SPAWN_FAILED_EXIT
    assert result.stdout == ""
    assert result.stderr


def test_kill_all_terminates_running_child() -> None:
    runner = ProcessRunner()
    results = []
    t = threading.Thread(
        target=lambda: results.append(runner.run(sys.executable, ["-c", "import time; time.sleep(30)"]))
    )
    t.start()
    deadline = time.monotonic() + 10
    while runner.live_count == 0 and time.monotonic() < deadline:
        time.sleep(0.02)

    assert runner.kill_all() == 1
    t.join(timeout=10)

    assert not t.is_alive()
    assert results[0].exit_code != 0
    assert runner.live_count == 0


def test_runner_refuses_new_work_after_kill_all() -> None:
    runner = ProcessRunner()
    runner.kill_all()

    result = runner.run("echo", ["late"])

    assert result.exit_code == REFUSED_EXIT
    assert result.stdout == ""


def test_unpassable_argv_is_reported_as_spawn_failure() -> None:
    result = ProcessRunner().run("echo", ["a\x00b"])

    assert result.exit_code == SPAWN_FAILED_EXIT
    assert "null" in result.stderr
