# runner.py
import subprocess
import threading
from dataclasses import dataclass

SPAWN_FAILED_EXIT = 127
REFUSED_EXIT = 137


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner:
    """Runs job commands as child processes and keeps track of the live ones.

    Children start in their own session so a terminal Ctrl+C reaches only the
    queue process; stopping them is up to ``kill_all``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._live = set()
        self._killed = False

    def run(self, command, args=()) -> RunResult:
        argv = [command, *args]
        with self._lock:
            if self._killed:
                return RunResult(REFUSED_EXIT, "", "not started: runner is shutting down")
            try:
                proc = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                    start_new_session=True,
                )
            except (OSError, ValueError) as err:
                # ValueError: argv Popen cannot pass to exec, e.g. an embedded NUL
                return RunResult(SPAWN_FAILED_EXIT, "", str(err))
            self._live.add(proc)

        try:
            stdout, stderr = proc.communicate()
            return RunResult(proc.returncode, stdout or "", stderr or "")
        finally:
            # reached on KeyboardInterrupt or any other error as well
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            with self._lock:
                self._live.discard(proc)

    def kill_all(self) -> int:
        """Kill every running child and refuse to start new ones."""
        with self._lock:
            self._killed = True
            live = list(self._live)
        for proc in live:
            if proc.poll() is None:
                proc.kill()
        return len(live)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)
