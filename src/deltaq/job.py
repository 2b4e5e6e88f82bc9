"""Index job identity and the names derived from it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from deltaq.errors import InvalidIndex

if TYPE_CHECKING:
    from pathlib import Path

DELTA_SUFFIX = "_delta"
CORE_SUFFIX = "_core"
BASE_INDEX_EXTENSION = ".spl"


@dataclass(frozen=True)
class IndexJob:
    """One delta run for one index, e.g. ``articles_delta``."""

    name: str

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise InvalidIndex("index name must not be empty")

    @property
    def is_delta(self) -> bool:
        return self.name.endswith(DELTA_SUFFIX)

    @property
    def base_name(self) -> str:
        """Core index the delta is merged or rebuilt into (``articles_core``)."""
        if self.is_delta:
            return self.name[: -len(DELTA_SUFFIX)] + CORE_SUFFIX
        return self.name

    @property
    def model_name(self) -> str:
        """Index name without the delta suffix (``articles``)."""
        if self.is_delta:
            return self.name[: -len(DELTA_SUFFIX)]
        return self.name

    def marker_path(self, marker_dir: Path) -> Path:
        """File whose presence forces a full rebuild on the next run."""
        return marker_dir / self.base_name

    def base_index_path(self, indices_location: Path) -> Path:
        """Compiled base index file written by the indexing tool."""
        return indices_location / f"{self.base_name}{BASE_INDEX_EXTENSION}"
