"""Tests for deltaq.run_detector — external rotate detection."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

from deltaq.job import IndexJob
from deltaq.run_detector import NullDetector, ProcessTableDetector


def _procs(*cmdlines: list[str] | None) -> list[SimpleNamespace]:
    return [
        SimpleNamespace(info={"pid": 100 + i, "cmdline": cmdline})
        for i, cmdline in enumerate(cmdlines)
    ]


class TestProcessTableDetector:
    def test_detects_rotating_delta(self) -> None:
        procs = _procs(
            ["bash"],
            ["indexer", "--config", "sphinx.conf", "articles_delta", "--rotate"],
        )
        with patch("deltaq.run_detector.psutil.process_iter", return_value=procs):
            assert ProcessTableDetector().is_rotating(IndexJob("articles_delta")) is True

    def test_detects_rotating_base(self) -> None:
        procs = _procs(["indexer", "--config", "c", "articles_core", "--rotate"])
        with patch("deltaq.run_detector.psutil.process_iter", return_value=procs):
            assert ProcessTableDetector().is_rotating(IndexJob("articles_delta")) is True

    def test_detects_shell_wrapped_command(self) -> None:
        procs = _procs(["sh", "-c", "indexer --config c articles_core --rotate"])
        with patch("deltaq.run_detector.psutil.process_iter", return_value=procs):
            assert ProcessTableDetector().is_rotating(IndexJob("articles_delta")) is True

    def test_ignores_non_rotating_and_other_indices(self) -> None:
        procs = _procs(
            ["indexer", "--config", "c", "articles_delta"],
            ["indexer", "--config", "c", "users_delta", "--rotate"],
            ["indexer", "--config", "c", "old_articles_core", "--rotate"],
            None,
        )
        with patch("deltaq.run_detector.psutil.process_iter", return_value=procs):
            assert ProcessTableDetector().is_rotating(IndexJob("articles_delta")) is False


def test_null_detector() -> None:
    assert NullDetector().is_rotating(IndexJob("articles_delta")) is False
