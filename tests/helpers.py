from __future__ import annotations

import sys

from models import JobSpec


def py_job(code: str) -> JobSpec:
    """A job that runs a snippet with the current interpreter."""
    return JobSpec(sys.executable, ("-c", code))
