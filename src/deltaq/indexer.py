"""Wrapper around the Sphinx ``indexer`` binary."""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Protocol

from deltaq.errors import BuildFailed

if TYPE_CHECKING:
    from deltaq.config import Settings

logger = logging.getLogger(__name__)


class IndexingTool(Protocol):
    def build(self, index: str, *, verbose: bool) -> list[str]: ...

    def merge(self, base: str, delta: str, *, rotate: bool = True) -> list[str]: ...

    def rebuild(self, base: str, *, rotate: bool = True) -> list[str]: ...


class SphinxIndexer:
    """Run ``indexer`` and return its output lines.

    Any launch failure or non-zero exit raises :class:`BuildFailed`; there is
    no partial state, a build either completes or fails.
    """

    def __init__(self, binary: str, config_file: str) -> None:
        self.binary = binary
        self.config_file = config_file

    @classmethod
    def from_settings(cls, settings: Settings) -> SphinxIndexer:
        binary = f"{settings.indexer_bin_path}{settings.indexer_binary}"
        return cls(binary, str(settings.indexer_config_file))

    def _run(self, args: list[str]) -> list[str]:
        command = [self.binary, "--config", self.config_file, *args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise BuildFailed(command, None, str(exc)) from exc

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise BuildFailed(command, result.returncode, output)
        return output.splitlines()

    def build(self, index: str, *, verbose: bool) -> list[str]:
        args = [index] if verbose else ["--quiet", index]
        return self._run(args)

    def merge(self, base: str, delta: str, *, rotate: bool = True) -> list[str]:
        args = ["--merge", base, delta]
        if rotate:
            args.append("--rotate")
        return self._run(args)

    def rebuild(self, base: str, *, rotate: bool = True) -> list[str]:
        args = [base]
        if rotate:
            args.append("--rotate")
        return self._run(args)
