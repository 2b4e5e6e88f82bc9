"""Detect rotate/merge runs started outside deltaq.

Process-table inspection is best effort: a process may start right after
the check. It only backs up the index lock against manual indexer runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import psutil

if TYPE_CHECKING:
    from collections.abc import Iterable

    from deltaq.job import IndexJob

logger = logging.getLogger(__name__)

ROTATE_FLAG = "--rotate"


class RunDetector(Protocol):
    def is_rotating(self, job: IndexJob) -> bool: ...


class NullDetector:
    """Detector that never reports external activity."""

    def is_rotating(self, job: IndexJob) -> bool:
        return False


def _names_rotating_index(cmdline: Iterable[str], names: set[str]) -> bool:
    """True if *cmdline* has one of *names* directly followed by ``--rotate``."""
    # Shell-wrapped commands arrive as one argument, so split again.
    tokens = [token for arg in cmdline for token in arg.split()]
    return any(
        token in names and following == ROTATE_FLAG
        for token, following in zip(tokens, tokens[1:])
    )


class ProcessTableDetector:
    """Look for a live ``indexer ... <index> --rotate`` process."""

    def is_rotating(self, job: IndexJob) -> bool:
        names = {job.name, job.base_name}
        for proc in psutil.process_iter(["pid", "cmdline"]):
            cmdline = proc.info.get("cmdline") or []
            if _names_rotating_index(cmdline, names):
                logger.debug("Process %s is rotating %s: %s", proc.info["pid"], job.name, cmdline)
                return True
        return False
